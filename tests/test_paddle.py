from __future__ import annotations

import httpx
import pytest

from yolo_transcript.config import get_settings
from yolo_transcript.exceptions import ConfigurationError, PaddleAPIError
from yolo_transcript.services import paddle


def test_extract_customer_email_checks_known_paths_then_searches():
    assert paddle.extract_customer_email({"customer": {"email": "a@example.com"}}) == "a@example.com"
    assert paddle.extract_customer_email({"billing_details": {"email": "b@example.com"}}) == "b@example.com"
    assert (
        paddle.extract_customer_email({"items": [{"customer": {"email": "c@example.com"}}]}) == "c@example.com"
    )
    nested = {"payments": [{"method": {"owner": {"email": "d@example.com"}}}]}
    assert paddle.extract_customer_email(nested) == "d@example.com"
    assert paddle.extract_customer_email({"customer": {"email": "not-an-email"}}) is None


def test_extract_package_name_prefers_product_then_price_id():
    assert paddle.extract_package_name({"product": {"name": "Creator"}}) == "Creator"
    assert paddle.extract_package_name({"price": {"product_name": "Power User"}}) == "Power User"
    assert paddle.extract_package_name({"price_id": "pri_starter_monthly"}) == "Starter"
    assert paddle.extract_package_name({}) is None


def test_resolve_package_matches_exact_partial_and_default():
    assert paddle.resolve_package("Creator") == paddle.ResolvedPackage("Creator", 250, "exact")
    assert paddle.resolve_package("POWER").credits == 500
    partial = paddle.resolve_package("Pro plan (annual)")
    assert partial.credits == 100
    assert partial.matched == "partial"
    fallback = paddle.resolve_package("mystery")
    assert (fallback.name, fallback.credits, fallback.matched) == ("Starter", 50, "default")
    assert paddle.resolve_package(None).matched == "default"


def test_extract_amount_falls_back_to_totals():
    assert paddle.extract_amount({"amount": "12.5"}) == 12.5
    assert paddle.extract_amount({"details": {"totals": {"total": "900"}}}) == 900.0
    assert paddle.extract_amount({"amount": "n/a"}) == 0.0


def test_paddle_client_reads_data_envelope():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/customers/ctm_1":
            return httpx.Response(200, json={"data": {"id": "ctm_1", "email": "buyer@example.com"}})
        if request.url.path == "/customers":
            return httpx.Response(200, json={"data": []})
        return httpx.Response(404, json={"error": {"code": "not_found"}})

    client = paddle.PaddleClient("pdl_key", "sandbox", transport=httpx.MockTransport(handler))
    try:
        assert client.get_customer_by_id("ctm_1")["email"] == "buyer@example.com"
        assert client.get_customer_by_email("nobody@example.com") is None
        with pytest.raises(PaddleAPIError) as excinfo:
            client.get_transaction("txn_missing")
        assert excinfo.value.status_code == 404
    finally:
        client.close()

    assert seen[0].url.host == "sandbox-api.paddle.com"
    assert seen[0].headers["Authorization"] == "Bearer pdl_key"


def test_paddle_client_requires_api_key():
    with pytest.raises(ConfigurationError):
        paddle.PaddleClient("")


def test_verify_price_matches_configured_ids(anonymous_client, monkeypatch):
    monkeypatch.setattr(get_settings(), "paddle_price_pro", "pri_pro_123")

    response = anonymous_client.get("/api/paddle/verify-price", params={"price_id": "pri_pro_123"})
    body = response.json()
    assert body["is_price_valid"] is True
    assert body["variable_name"] == "PADDLE_PRICE_PRO"
    assert body["is_format_valid"] is True

    response = anonymous_client.get("/api/paddle/verify-price", params={"price_id": "price_unknown"})
    body = response.json()
    assert body["is_price_valid"] is False
    assert body["is_format_valid"] is False

    assert anonymous_client.get("/api/paddle/verify-price").status_code == 400
