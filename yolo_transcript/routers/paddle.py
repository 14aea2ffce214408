from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ..config import get_settings
from ..schemas import PriceVerification

router = APIRouter(prefix="/api/paddle", tags=["paddle"])


@router.get("/verify-price", response_model=PriceVerification)
def verify_price(price_id: Optional[str] = Query(None)) -> PriceVerification:
    """Check a checkout price id against the configured package prices."""

    if not price_id:
        raise HTTPException(status_code=400, detail="Price ID is required")
    settings = get_settings()
    variable_name = None
    for package, configured in settings.paddle_price_ids.items():
        if configured and configured == price_id:
            variable_name = f"PADDLE_PRICE_{package}"
            break
    return PriceVerification(
        price_id=price_id,
        is_price_valid=variable_name is not None,
        environment=settings.paddle_environment,
        client_token_exists=bool(settings.paddle_client_token),
        variable_name=variable_name,
        is_format_valid=price_id.startswith("pri_"),
    )
