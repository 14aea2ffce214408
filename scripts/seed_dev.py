#!/usr/bin/env python3
"""Create or update a development account with credits and a default vocabulary.

The script is idempotent: an existing user keeps their password unless
``--reset-password`` is given, and the balance is only topped up to
``--credits`` when it is lower.
"""
from __future__ import annotations

import argparse
from typing import Optional

from yolo_transcript.auth import create_user, get_password_hash
from yolo_transcript.database import get_engine, session_scope
from yolo_transcript.models import Base, User
from yolo_transcript.services import credits as credit_service
from yolo_transcript.services import vocabulary as vocabulary_service

DEFAULT_TERMS = ["AssemblyAI", "Paddle", "Yolo Transcript"]


def _create_or_update_user(email: str, password: str, credits: int, force_reset: bool) -> str:
    with session_scope() as session:
        user: Optional[User] = session.query(User).filter(User.email == email.lower()).one_or_none()
        status = "skipped"
        if user is None:
            user = create_user(session, email, password, full_name="Development User")
            status = "created"
        elif force_reset:
            user.hashed_password = get_password_hash(password)
            status = "password-reset"

        balance = credit_service.get_or_create_credits(session, user.id).credits_balance
        if balance < credits:
            credit_service.add_credits(session, user.id, credits - balance)
            status = "updated" if status == "skipped" else status

        if vocabulary_service.get_default(session, user.id) is None:
            vocabulary_service.create_vocabulary(session, user.id, "Product names", DEFAULT_TERMS, is_default=True)
        return status


def main() -> None:
    parser = argparse.ArgumentParser(description="Create a development user if it does not exist")
    parser.add_argument("--email", default="dev@localhost.dev", help="Account email")
    parser.add_argument("--password", default="devpassword", help="Account password")
    parser.add_argument("--credits", type=int, default=100, help="Minimum credit balance")
    parser.add_argument(
        "--reset-password",
        action="store_true",
        help="Reset the password even when the user already exists",
    )
    args = parser.parse_args()

    engine = get_engine()
    print(f"Using database: {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(bind=engine)
    result = _create_or_update_user(args.email, args.password, args.credits, args.reset_password)

    messages = {
        "created": "User created",
        "password-reset": "Existing user updated and password reset",
        "updated": "Existing user topped up",
        "skipped": "User already exists, nothing changed",
    }
    print(messages.get(result, result))
    print("Email:", args.email)
    if args.reset_password or result in {"created", "password-reset"}:
        print("Password:", args.password)
    else:
        print("Password: (unchanged)")


if __name__ == "__main__":
    main()
