from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
from jose import jwt

from yolo_transcript import auth
from yolo_transcript.config import get_settings
from yolo_transcript.database import session_scope
from yolo_transcript.models import User, UserCredits
from yolo_transcript.services import google


def test_password_hash_roundtrip():
    hashed = auth.get_password_hash("secret-pass")
    assert auth.verify_password("secret-pass", hashed)
    assert not auth.verify_password("wrong", hashed)
    assert not auth.verify_password("secret-pass", None)
    assert not auth.verify_password("secret-pass", "garbage")


def test_create_access_token_contains_subject():
    token = auth.create_access_token({"sub": "123"}, expires_delta=timedelta(minutes=5))
    settings = get_settings()
    payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    assert payload["sub"] == "123"


def test_signup_login_and_me(anonymous_client):
    response = anonymous_client.post(
        "/auth/signup",
        json={"email": "New.User@Example.com", "password": "password123", "full_name": "New User"},
    )
    assert response.status_code == 201
    token = response.json()["access_token"]

    duplicate = anonymous_client.post("/auth/signup", json={"email": "new.user@example.com", "password": "password123"})
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "User already exists"}

    response = anonymous_client.post(
        "/auth/token", data={"username": "new.user@example.com", "password": "password123"}
    )
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"

    bad = anonymous_client.post("/auth/token", data={"username": "new.user@example.com", "password": "nope"})
    assert bad.status_code == 401

    me = anonymous_client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "new.user@example.com"

    status = anonymous_client.get("/api/auth/status", headers={"Authorization": f"Bearer {token}"}).json()
    assert status["has_credits"] is True
    assert status["credits"] == 30


def test_invalid_token_is_rejected(anonymous_client):
    response = anonymous_client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_signup_validates_payload(anonymous_client):
    response = anonymous_client.post("/auth/signup", json={"email": "not-an-email", "password": "short"})
    assert response.status_code == 422
    assert response.json()["error"] == "Invalid request"


def test_google_sign_in_creates_account(anonymous_client, monkeypatch):
    from yolo_transcript.main import app

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == google.TOKEN_ENDPOINT:
            return httpx.Response(200, json={"access_token": "ya29.signin", "expires_in": 3600})
        return httpx.Response(200, json={"email": "Googler@Example.com", "email_verified": True, "name": "G"})

    app.dependency_overrides[google.get_oauth_client] = lambda: google.GoogleOAuthClient(
        "client-id", "client-secret", transport=httpx.MockTransport(handler)
    )
    monkeypatch.setattr(get_settings(), "google_redirect_uri", "https://app.example.com/auth/google/callback")

    url = anonymous_client.get("/auth/google/login").json()["authorization_url"]
    state = parse_qs(urlparse(url).query)["state"][0]

    assert anonymous_client.get("/auth/google/callback", params={"code": "c", "state": "forged"}).status_code == 400
    response = anonymous_client.get("/auth/google/callback", params={"code": "c", "state": state})

    assert response.status_code == 200
    with session_scope() as session:
        created = session.query(User).filter(User.email == "googler@example.com").one()
        assert created.hashed_password is None
        assert session.get(UserCredits, created.id).credits_balance == 30


def test_google_login_requires_redirect_uri(anonymous_client):
    from yolo_transcript.main import app

    app.dependency_overrides[google.get_oauth_client] = lambda: google.GoogleOAuthClient("id", "secret")
    assert anonymous_client.get("/auth/google/login").status_code == 400
