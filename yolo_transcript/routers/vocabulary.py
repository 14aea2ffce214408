from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..auth import AuthenticatedUser, get_current_user
from ..database import get_session
from ..models import CustomVocabulary
from ..schemas import VocabularyCreate, VocabularyRead, VocabularyShareCode, VocabularyUpdate
from ..services import vocabulary as vocabulary_service

router = APIRouter(prefix="/api/vocabularies", tags=["vocabularies"])


def _owned(session: Session, user: AuthenticatedUser, vocabulary_id: str) -> CustomVocabulary:
    vocabulary = vocabulary_service.get_vocabulary(session, user.id, vocabulary_id)
    if vocabulary is None:
        raise HTTPException(status_code=404, detail="Vocabulary not found")
    return vocabulary


@router.get("", response_model=List[VocabularyRead])
def list_vocabularies(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> List[VocabularyRead]:
    return [VocabularyRead.model_validate(item) for item in vocabulary_service.list_vocabularies(session, user.id)]


@router.post("", response_model=VocabularyRead, status_code=status.HTTP_201_CREATED)
def create_vocabulary(
    payload: VocabularyCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> VocabularyRead:
    if not vocabulary_service.clean_terms(payload.terms):
        raise HTTPException(status_code=400, detail="At least one term is required")
    vocabulary = vocabulary_service.create_vocabulary(
        session, user.id, payload.name, payload.terms, payload.is_default
    )
    session.commit()
    return VocabularyRead.model_validate(vocabulary)


@router.get("/default", response_model=Optional[VocabularyRead])
def get_default_vocabulary(
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Optional[VocabularyRead]:
    vocabulary = vocabulary_service.get_default(session, user.id)
    return VocabularyRead.model_validate(vocabulary) if vocabulary else None


@router.post("/import", response_model=VocabularyRead, status_code=status.HTTP_201_CREATED)
def import_vocabulary(
    payload: VocabularyShareCode,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> VocabularyRead:
    try:
        vocabulary = vocabulary_service.import_vocabulary(session, user.id, payload.code)
    except vocabulary_service.InvalidShareCode as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    session.commit()
    return VocabularyRead.model_validate(vocabulary)


@router.get("/{vocabulary_id}", response_model=VocabularyRead)
def get_vocabulary(
    vocabulary_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> VocabularyRead:
    return VocabularyRead.model_validate(_owned(session, user, vocabulary_id))


@router.put("/{vocabulary_id}", response_model=VocabularyRead)
def update_vocabulary(
    vocabulary_id: str,
    payload: VocabularyUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> VocabularyRead:
    vocabulary = _owned(session, user, vocabulary_id)
    if payload.terms is not None and not vocabulary_service.clean_terms(payload.terms):
        raise HTTPException(status_code=400, detail="At least one term is required")
    vocabulary_service.update_vocabulary(
        session,
        vocabulary,
        name=payload.name,
        terms=payload.terms,
        is_default=payload.is_default,
    )
    session.commit()
    return VocabularyRead.model_validate(vocabulary)


@router.delete("/{vocabulary_id}")
def delete_vocabulary(
    vocabulary_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> Dict[str, bool]:
    vocabulary_service.delete_vocabulary(session, _owned(session, user, vocabulary_id))
    session.commit()
    return {"success": True}


@router.get("/{vocabulary_id}/export", response_model=VocabularyShareCode)
def export_vocabulary(
    vocabulary_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> VocabularyShareCode:
    return VocabularyShareCode(code=vocabulary_service.export_code(_owned(session, user, vocabulary_id)))
