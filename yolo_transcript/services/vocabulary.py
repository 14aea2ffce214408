"""Custom vocabulary CRUD with the single-default-per-user rule."""
from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models import CustomVocabulary

logger = logging.getLogger(__name__)


class InvalidShareCode(ValueError):
    pass


def clean_terms(terms: Iterable[str]) -> list[str]:
    """Strip blanks and drop duplicates while keeping the original order."""

    seen: set[str] = set()
    cleaned: list[str] = []
    for term in terms:
        value = (term or "").strip()
        if value and value.lower() not in seen:
            seen.add(value.lower())
            cleaned.append(value)
    return cleaned


def list_vocabularies(session: Session, user_id: str) -> list[CustomVocabulary]:
    return (
        session.query(CustomVocabulary)
        .filter(CustomVocabulary.user_id == user_id)
        .order_by(CustomVocabulary.name.asc())
        .all()
    )


def get_vocabulary(session: Session, user_id: str, vocabulary_id: str) -> Optional[CustomVocabulary]:
    return (
        session.query(CustomVocabulary)
        .filter(CustomVocabulary.id == vocabulary_id, CustomVocabulary.user_id == user_id)
        .one_or_none()
    )


def get_default(session: Session, user_id: str) -> Optional[CustomVocabulary]:
    return (
        session.query(CustomVocabulary)
        .filter(CustomVocabulary.user_id == user_id, CustomVocabulary.is_default.is_(True))
        .one_or_none()
    )


def _unset_defaults(session: Session, user_id: str, keep_id: Optional[str] = None) -> None:
    stmt = update(CustomVocabulary).where(
        CustomVocabulary.user_id == user_id,
        CustomVocabulary.is_default.is_(True),
    )
    if keep_id is not None:
        stmt = stmt.where(CustomVocabulary.id != keep_id)
    session.execute(stmt.values(is_default=False).execution_options(synchronize_session="fetch"))
    session.flush()


def create_vocabulary(
    session: Session,
    user_id: str,
    name: str,
    terms: Iterable[str],
    is_default: bool = False,
) -> CustomVocabulary:
    if is_default:
        _unset_defaults(session, user_id)
    vocabulary = CustomVocabulary(
        user_id=user_id,
        name=name.strip(),
        terms=clean_terms(terms),
        is_default=is_default,
    )
    session.add(vocabulary)
    session.flush()
    logger.info("Created vocabulary", extra={"user_id": user_id, "vocabulary_id": vocabulary.id})
    return vocabulary


def update_vocabulary(
    session: Session,
    vocabulary: CustomVocabulary,
    *,
    name: Optional[str] = None,
    terms: Optional[Iterable[str]] = None,
    is_default: Optional[bool] = None,
) -> CustomVocabulary:
    if is_default:
        _unset_defaults(session, vocabulary.user_id, keep_id=vocabulary.id)
    if name is not None:
        vocabulary.name = name.strip()
    if terms is not None:
        vocabulary.terms = clean_terms(terms)
    if is_default is not None:
        vocabulary.is_default = is_default
    session.flush()
    return vocabulary


def delete_vocabulary(session: Session, vocabulary: CustomVocabulary) -> None:
    session.delete(vocabulary)
    session.flush()


def export_code(vocabulary: CustomVocabulary) -> str:
    payload = {"name": vocabulary.name, "terms": list(vocabulary.terms or []), "is_default": bool(vocabulary.is_default)}
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_share_code(code: str) -> dict[str, Any]:
    """Decode and validate a share code produced by :func:`export_code`."""

    try:
        payload = json.loads(base64.b64decode(code.strip(), validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
        raise InvalidShareCode("Invalid vocabulary code") from exc
    if not isinstance(payload, dict):
        raise InvalidShareCode("Invalid vocabulary code")
    name = payload.get("name")
    terms = payload.get("terms")
    if not isinstance(name, str) or not name.strip():
        raise InvalidShareCode("Vocabulary code is missing a name")
    if not isinstance(terms, list) or not clean_terms(str(term) for term in terms):
        raise InvalidShareCode("Vocabulary code has no terms")
    return {"name": name.strip(), "terms": [str(term) for term in terms], "is_default": bool(payload.get("is_default"))}


def import_vocabulary(session: Session, user_id: str, code: str) -> CustomVocabulary:
    payload = decode_share_code(code)
    return create_vocabulary(session, user_id, payload["name"], payload["terms"], payload["is_default"])


def resolve_terms(
    session: Session,
    user_id: str,
    *,
    explicit_terms: Optional[Iterable[str]] = None,
    vocabulary_id: Optional[str] = None,
    use_default: bool = True,
) -> list[str]:
    """Pick the boost terms for a job: explicit list, named vocabulary, then default."""

    if explicit_terms:
        return clean_terms(explicit_terms)
    vocabulary = None
    if vocabulary_id:
        vocabulary = get_vocabulary(session, user_id, vocabulary_id)
    elif use_default:
        vocabulary = get_default(session, user_id)
    return list(vocabulary.terms or []) if vocabulary else []
