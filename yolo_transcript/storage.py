"""Media storage on S3/MinIO with a local-disk fallback."""
from __future__ import annotations

import io
import logging
from pathlib import Path
from threading import Lock
from typing import BinaryIO, Dict, Optional, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from .config import get_settings

logger = logging.getLogger(__name__)


class MediaStorage:
    """Stores uploaded audio/video before it is handed to the transcription provider."""

    _bucket_state: Dict[Tuple[str, str], bool] = {}
    _bucket_lock = Lock()

    def __init__(self) -> None:
        settings = get_settings()
        self.bucket = settings.s3_bucket_media
        self._endpoint_url = settings.s3_endpoint_url
        self._local_root = Path(settings.storage_dir) / "media"
        self._local_mode = False
        self._client = None

        if settings.s3_endpoint_url or settings.s3_access_key:
            secret = settings.s3_secret_key.get_secret_value() if settings.s3_secret_key else None
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                region_name=settings.s3_region_name,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=secret,
            )
        else:
            self._activate_local_mode()

    @property
    def local_mode(self) -> bool:
        return self._local_mode

    def _activate_local_mode(self, error: Optional[Exception] = None) -> None:
        if error is not None:
            logger.warning(
                "Falling back to local disk storage because the S3 endpoint is unavailable.",
                extra={"endpoint": self._endpoint_url, "error": repr(error)},
            )
        self._local_mode = True
        self._client = None
        self._local_root.mkdir(parents=True, exist_ok=True)

    def _local_path(self, object_name: str) -> Path:
        target = self._local_root.joinpath(*Path(object_name).parts)
        resolved_base = self._local_root.resolve()
        resolved_target = target.resolve()
        if not resolved_target.is_relative_to(resolved_base):
            raise ValueError(f"Path escapes the storage directory: {object_name}")
        resolved_target.parent.mkdir(parents=True, exist_ok=True)
        return resolved_target

    def _rewind(self, fileobj: BinaryIO) -> None:
        try:
            fileobj.seek(0, io.SEEK_SET)
        except (AttributeError, OSError, io.UnsupportedOperation):
            pass

    def ensure_bucket(self) -> None:
        if self._client is None:
            return
        cache_key = (self.bucket, self._endpoint_url or "aws")
        with self._bucket_lock:
            if self._bucket_state.get(cache_key):
                return
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError:
            logger.info("Creating bucket", extra={"bucket": self.bucket})
            try:
                self._client.create_bucket(Bucket=self.bucket)
            except (EndpointConnectionError, BotoCoreError) as exc:  # pragma: no cover - network failure
                self._activate_local_mode(exc)
                return
        except (EndpointConnectionError, BotoCoreError) as exc:  # pragma: no cover - network failure
            self._activate_local_mode(exc)
            return
        with self._bucket_lock:
            self._bucket_state[cache_key] = True

    def upload_media(self, fileobj: BinaryIO, object_name: str, content_type: Optional[str] = None) -> str:
        self._rewind(fileobj)
        if self._local_mode:
            with open(self._local_path(object_name), "wb") as handle:
                handle.write(fileobj.read())
            return object_name
        extra_args = {"ContentType": content_type} if content_type else None
        self._client.upload_fileobj(fileobj, self.bucket, object_name, ExtraArgs=extra_args)
        return object_name

    def delete_media(self, object_name: str) -> None:
        if self._local_mode:
            target = self._local_path(object_name)
            if target.exists():
                target.unlink()
            return
        try:
            self._client.delete_object(Bucket=self.bucket, Key=object_name)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") not in {"NoSuchKey", "404"}:
                raise


def get_media_storage() -> MediaStorage:
    return MediaStorage()
