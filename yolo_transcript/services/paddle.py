"""Paddle Billing helpers: webhook signatures, payload parsing and the REST client."""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

import httpx

from ..config import get_settings
from ..exceptions import ConfigurationError, PaddleAPIError, SignatureVerificationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "paddle-signature"

SANDBOX_API_URL = "https://sandbox-api.paddle.com"
PRODUCTION_API_URL = "https://api.paddle.com"

CREDIT_PACKAGES: dict[str, int] = {
    "Starter": 50,
    "starter": 50,
    "starter pack": 50,
    "starter package": 50,
    "Pro": 100,
    "pro": 100,
    "pro package": 100,
    "professional": 100,
    "Creator": 250,
    "creator": 250,
    "creator package": 250,
    "Power": 500,
    "power": 500,
    "power package": 500,
    "power user": 500,
}
DEFAULT_PACKAGE = "Starter"


@dataclass(frozen=True)
class ResolvedPackage:
    name: str
    credits: int
    matched: str  # exact | partial | default


def parse_signature_header(header: str) -> tuple[str, str]:
    """Split ``ts=<digits>;h1=<hex>`` into its timestamp and hash."""

    parts: dict[str, str] = {}
    for chunk in header.split(";"):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    timestamp = parts.get("ts", "")
    digest = parts.get("h1", "")
    if not timestamp.isdigit() or not digest:
        raise SignatureVerificationError("Malformed signature header")
    return timestamp, digest


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    signed_payload = timestamp.encode("utf-8") + b":" + raw_body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    raw_body: bytes,
    header: Optional[str],
    secret: str,
    *,
    tolerance_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> str:
    """Validate a webhook signature and return its timestamp.

    Raises :class:`SignatureVerificationError` when the header is missing,
    malformed, stale or does not match the HMAC-SHA256 of ``"{ts}:{body}"``.
    """

    if not header:
        raise SignatureVerificationError("Missing signature header")
    timestamp, digest = parse_signature_header(header)
    if tolerance_seconds is not None:
        current = time.time() if now is None else now
        if abs(current - int(timestamp)) > tolerance_seconds:
            raise SignatureVerificationError("Signature timestamp outside tolerance")
    expected = compute_signature(secret, timestamp, raw_body)
    if not hmac.compare_digest(expected, digest.lower()):
        raise SignatureVerificationError("Invalid signature")
    return timestamp


_EMAIL_PATHS: tuple[tuple[str, ...], ...] = (
    ("customer", "email"),
    ("billing_details", "email"),
    ("buyer", "email"),
    ("user", "email"),
    ("email",),
    ("custom_data", "email"),
)


def _dig(data: Any, path: Iterable[str]) -> Any:
    current = data
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _looks_like_email(value: Any) -> bool:
    return isinstance(value, str) and "@" in value


def _search_email(node: Any, depth: int = 0) -> Optional[str]:
    if depth > 8:
        return None
    if isinstance(node, Mapping):
        candidate = node.get("email")
        if _looks_like_email(candidate):
            return candidate
        children: Iterable[Any] = node.values()
    elif isinstance(node, list):
        children = node
    else:
        return None
    for child in children:
        found = _search_email(child, depth + 1)
        if found:
            return found
    return None


def extract_customer_email(data: Mapping[str, Any]) -> Optional[str]:
    """Find the purchaser email in a transaction payload."""

    for path in _EMAIL_PATHS:
        value = _dig(data, path)
        if _looks_like_email(value):
            return value
    for item in data.get("items") or []:
        value = _dig(item, ("customer", "email"))
        if _looks_like_email(value):
            return value
    return _search_email(data)


def extract_package_name(item: Mapping[str, Any]) -> Optional[str]:
    candidates = (
        _dig(item, ("product", "name")),
        _dig(item, ("price", "product_name")),
        item.get("name"),
        item.get("product_name"),
        _dig(item, ("price", "name")),
    )
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    price_id = item.get("price_id") or _dig(item, ("price", "id"))
    if isinstance(price_id, str) and price_id:
        # pri_starter_monthly -> Starter
        parts = [part for part in price_id.split("_") if part]
        if len(parts) > 1:
            return parts[1].capitalize()
        return parts[0].capitalize() if parts else None
    return None


def resolve_package(name: Optional[str]) -> ResolvedPackage:
    if name:
        if name in CREDIT_PACKAGES:
            return ResolvedPackage(name=name, credits=CREDIT_PACKAGES[name], matched="exact")
        lowered = name.lower()
        if lowered in CREDIT_PACKAGES:
            return ResolvedPackage(name=name, credits=CREDIT_PACKAGES[lowered], matched="exact")
        for key, credits in CREDIT_PACKAGES.items():
            key_lower = key.lower()
            if key_lower in lowered or lowered in key_lower:
                return ResolvedPackage(name=name, credits=credits, matched="partial")
    return ResolvedPackage(name=DEFAULT_PACKAGE, credits=CREDIT_PACKAGES[DEFAULT_PACKAGE], matched="default")


def extract_amount(data: Mapping[str, Any]) -> float:
    for value in (data.get("amount"), _dig(data, ("details", "totals", "total"))):
        if value in (None, ""):
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return 0.0


class PaddleClient:
    """Read-only access to Paddle customers and transactions."""

    def __init__(
        self,
        api_key: str,
        environment: str = "sandbox",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Paddle API key not configured")
        base_url = SANDBOX_API_URL if environment == "sandbox" else PRODUCTION_API_URL
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise PaddleAPIError(f"Paddle request failed: {exc}") from exc
        if response.status_code >= 400:
            raise PaddleAPIError(
                f"Paddle API error: {response.status_code}",
                status_code=response.status_code,
                payload=response.text,
            )
        return response.json().get("data")

    def get_customer_by_email(self, email: str) -> Optional[dict[str, Any]]:
        customers = self._get("/customers", params={"email": email}) or []
        return customers[0] if customers else None

    def get_customer_by_id(self, customer_id: str) -> Optional[dict[str, Any]]:
        return self._get(f"/customers/{customer_id}")

    def get_transaction(self, transaction_id: str) -> Optional[dict[str, Any]]:
        return self._get(f"/transactions/{transaction_id}")


def get_paddle_client() -> Optional[PaddleClient]:
    """Return a configured client, or ``None`` when no API key is set."""

    settings = get_settings()
    api_key = settings.active_paddle_api_key()
    if not api_key:
        return None
    return PaddleClient(api_key, settings.paddle_environment, timeout=settings.http_timeout_seconds)
