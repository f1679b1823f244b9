# CREATE FILE: services/pricing_service/app.py

from fastapi import FastAPI
from pydantic import BaseModel, Field
from typing import Optional
import os

from services.common.errors import PortalError
from services.common.schemas import ActorModel, http_error_for
from services.common.supabase_store import create_store
from utils.config import load_config
from utils.logging import get_logger
from .pricing import PriceResolver

app = FastAPI(title="Pricing Service", version="1.0.0")

logger = get_logger("pricing_service")
config = load_config()

store = create_store()
price_resolver = PriceResolver(store)


class EffectivePriceRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    actor: ActorModel


class EffectivePriceResponse(BaseModel):
    product_id: str
    tier: str
    tier_price: float
    effective_retail_price: float
    effective_topline_price: float
    effective_downline_price: float
    has_override: bool
    override_source: Optional[str] = None


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"ok": True}


@app.post("/resolve-price", response_model=EffectivePriceResponse)
async def resolve_effective_price(request: EffectivePriceRequest):
    """
    Resolve the effective price tiers of a product for the ordering actor.

    Returns every effective tier price plus the tier the actor is charged.
    has_override is set when a price override for the actor, their practice
    or their linked rep replaced at least one tier price.
    """
    actor = request.actor.to_actor()
    with logger.request_context(endpoint="/resolve-price", method="POST", user_id=actor.user_id) as request_id:
        try:
            resolution = await price_resolver.resolve_by_id(request.product_id, actor)
        except PortalError as e:
            logger.warning("Price resolution rejected", error=e, request_id=request_id,
                           product_id=request.product_id)
            raise http_error_for(e)

        logger.info("Price resolved",
                    request_id=request_id,
                    product_id=request.product_id,
                    tier=resolution.tier.value,
                    has_override=resolution.has_override)
        return EffectivePriceResponse(**resolution.as_dict())


@app.get("/config")
async def get_pricing_config():
    """Get current pricing configuration"""
    return config["pricing"]


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8001"))
    uvicorn.run(app, host="0.0.0.0", port=port)
