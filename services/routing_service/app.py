# CREATE FILE: services/routing_service/app.py

from fastapi import FastAPI, Query
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional
import os

from services.common.errors import PortalError, StoreError
from services.common.schemas import http_error_for
from services.common.supabase_store import create_store
from utils.config import load_config
from utils.logging import get_logger
from .routing import RoutingEngine

app = FastAPI(title="Routing Service", version="1.0.0")

logger = get_logger("routing_service")

config = load_config()
routing_config = config["routing"]

store = create_store()
routing_engine = RoutingEngine(store, routing_config)


class RouteOrderRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    destination_state: str = Field(..., description="Two-letter US state code")
    user_topline_rep_id: Optional[str] = None


class RouteOrderResponse(BaseModel):
    pharmacy_id: Optional[str]
    reason: str
    pharmacy_name: Optional[str] = None
    priority: Optional[int] = None
    failure_code: Optional[str] = None
    diagnostics: Optional[Dict[str, Any]] = None


class EligiblePharmacyResponse(BaseModel):
    pharmacy_id: str
    name: str
    priority: int
    has_state_priority: bool


class HealthResponse(BaseModel):
    status: str
    audit_log_enabled: bool
    default_priority: int


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        status="healthy",
        audit_log_enabled=bool(routing_config.get("audit_log_enabled", True)),
        default_priority=routing_config.get("default_priority", 999),
    )


@app.post("/route-order", response_model=RouteOrderResponse)
async def route_order(request: RouteOrderRequest):
    """
    Route one order line to the highest-priority eligible pharmacy.

    A blocked route is a normal 200 response with pharmacy_id null and a
    reason naming the state. Store outages are 503s and are never reported
    as "no pharmacy".
    """
    with logger.request_context(endpoint="/route-order", method="POST") as request_id:
        logger.info("Routing order",
                    request_id=request_id,
                    product_id=request.product_id,
                    destination_state=request.destination_state,
                    rep_scope_id=request.user_topline_rep_id)
        try:
            decision = await routing_engine.route(
                request.product_id,
                request.destination_state,
                request.user_topline_rep_id
            )
        except PortalError as e:
            raise http_error_for(e)

        if routing_config.get("audit_log_enabled", True):
            try:
                await routing_engine.record_decision(decision, request.user_topline_rep_id)
            except StoreError as e:
                logger.error("Failed to write routing audit log", error=e, request_id=request_id)

        logger.business_event("order_routed" if decision.succeeded else "order_routing_blocked",
                              request_id=request_id,
                              product_id=request.product_id,
                              pharmacy_id=decision.pharmacy_id,
                              reason=decision.reason,
                              candidate_count=len(decision.candidates))

        return RouteOrderResponse(
            pharmacy_id=decision.pharmacy_id,
            reason=decision.reason,
            pharmacy_name=decision.pharmacy_name,
            priority=decision.priority,
            failure_code=decision.failure_code.value if decision.failure_code else None,
            diagnostics=decision.diagnostics or None,
        )


@app.get("/eligible-pharmacies", response_model=List[EligiblePharmacyResponse])
async def eligible_pharmacies(product_id: str = Query(..., min_length=1),
                              destination_state: str = Query(...),
                              rep_scope_id: Optional[str] = None):
    """Ordered eligible pharmacies for a product and state, highest priority first"""
    with logger.request_context(endpoint="/eligible-pharmacies", method="GET"):
        try:
            candidates = await routing_engine.eligibility.eligible_pharmacies(
                product_id, destination_state, rep_scope_id
            )
        except PortalError as e:
            raise http_error_for(e)

        return [
            EligiblePharmacyResponse(
                pharmacy_id=c.pharmacy_id,
                name=c.name,
                priority=c.priority,
                has_state_priority=c.has_state_priority
            )
            for c in candidates
        ]


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8002"))
    uvicorn.run(app, host="0.0.0.0", port=port)
