# CREATE FILE: services/cart_service/app.py

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import List, Optional
import os

from services.common.domain import (
    CartLine, OrderDetails, PatientDestination, PracticeDestination
)
from services.common.errors import AdmissionError, PortalError
from services.common.schemas import ActorModel, http_error_for
from services.common.supabase_store import create_store
from services.routing_service.client import create_router
from utils.config import load_config
from utils.logging import get_logger
from .admission import AdmissionFailure, CartAdmission
from .cart import CartLedger

app = FastAPI(title="Cart Service", version="1.0.0")

logger = get_logger("cart_service")
config = load_config()

store = create_store()
router = create_router(store, config["routing"])
admission = CartAdmission(store, router, config["cart"])
ledger = CartLedger(store)


class PatientModel(BaseModel):
    patient_id: str = Field(..., min_length=1)
    patient_name: str
    address_state: Optional[str] = None
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_zip: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class AddToCartRequest(BaseModel):
    cart_owner_id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    quantity: int = 1
    actor: ActorModel
    ship_to_practice: bool = False
    practice_shipping_state: Optional[str] = None
    patient: Optional[PatientModel] = None
    provider_id: Optional[str] = None
    prescription_url: Optional[str] = None
    custom_sig: Optional[str] = None
    custom_dosage: Optional[str] = None
    order_notes: Optional[str] = None
    prescription_method: Optional[str] = None


class CartLineResponse(BaseModel):
    id: str
    cart_id: str
    product_id: str
    quantity: int
    price_snapshot: float
    line_total: float
    destination_state: str
    assigned_pharmacy_id: str
    provider_id: str
    patient_id: Optional[str]
    ship_to_practice: bool
    prescription_url: Optional[str]
    expires_at: str


class CartSummaryResponse(BaseModel):
    owner_id: str
    cart_id: Optional[str]
    lines: List[CartLineResponse]
    item_count: int
    total: float
    expired_line_count: int


class QuantityUpdateRequest(BaseModel):
    quantity: int
    actor: ActorModel


class AdmissionRejected(Exception):
    """Raised at the HTTP boundary to turn an AdmissionFailure into a 422 body"""
    status_code = 422

    def __init__(self, failure: AdmissionFailure):
        self.failure = failure
        super().__init__(failure.message)


@app.exception_handler(AdmissionRejected)
async def admission_rejected_handler(request: Request, exc: AdmissionRejected):
    return JSONResponse(status_code=exc.status_code, content=exc.failure.as_dict())


def actor_from_query(user_id: str = Query(..., min_length=1),
                     role: str = Query(...),
                     practice_id: Optional[str] = None,
                     provider_id: Optional[str] = None,
                     linked_rep_id: Optional[str] = None,
                     topline_rep_id: Optional[str] = None) -> ActorModel:
    """Acting user for requests without a body, sent as query parameters"""
    return ActorModel(
        user_id=user_id,
        role=role,
        practice_id=practice_id,
        provider_id=provider_id,
        linked_rep_id=linked_rep_id,
        topline_rep_id=topline_rep_id,
    )


def line_response(line: CartLine) -> CartLineResponse:
    return CartLineResponse(
        id=line.id,
        cart_id=line.cart_id,
        product_id=line.product_id,
        quantity=line.quantity,
        price_snapshot=float(line.price_snapshot),
        line_total=float(line.line_total),
        destination_state=line.destination_state,
        assigned_pharmacy_id=line.assigned_pharmacy_id,
        provider_id=line.provider_id,
        patient_id=line.patient_id,
        ship_to_practice=line.destination.ship_to_practice,
        prescription_url=line.details.prescription_url,
        expires_at=line.expires_at.isoformat(),
    )


def build_destination(request: AddToCartRequest):
    if request.ship_to_practice:
        if request.patient is not None:
            raise HTTPException(status_code=400, detail="Choose either a patient or ship to practice, not both")
        return PracticeDestination(
            practice_id=request.actor.practice_id or request.cart_owner_id,
            state=request.practice_shipping_state,
        )

    if request.patient is None:
        raise HTTPException(status_code=400, detail="A patient is required unless shipping to the practice")
    patient = request.patient
    return PatientDestination(
        patient_id=patient.patient_id,
        patient_name=patient.patient_name,
        state=patient.address_state,
        street=patient.address_street,
        city=patient.address_city,
        zip_code=patient.address_zip,
        email=patient.email,
        phone=patient.phone,
    )


@app.get("/health")
async def health_check():
    return {"ok": True, "routing_mode": config["routing"].get("mode", "in_process")}


@app.post("/cart/lines", response_model=CartLineResponse, status_code=201)
async def add_cart_line(request: AddToCartRequest):
    """
    Add a product to the owner's cart.

    Returns 201 with the stored line, or 422 with {code, message, field}
    when the addition is blocked (bad quantity, bad address, unknown
    product, no pharmacy serving the destination state, ...). Nothing is
    written on a 422.
    """
    actor = request.actor.to_actor()
    with logger.request_context(endpoint="/cart/lines", method="POST", user_id=actor.user_id,
                                status_code=201) as request_id:
        destination = build_destination(request)
        details = OrderDetails(
            prescription_url=request.prescription_url,
            custom_sig=request.custom_sig,
            custom_dosage=request.custom_dosage,
            order_notes=request.order_notes,
            prescription_method=request.prescription_method,
        )

        try:
            result = await admission.add_to_cart(
                request.cart_owner_id,
                request.product_id,
                request.quantity,
                destination,
                actor,
                provider_id=request.provider_id,
                details=details,
                request_id=request_id
            )
        except PortalError as e:
            logger.warning("Cart addition failed", error=e, request_id=request_id)
            raise http_error_for(e)

        if isinstance(result, AdmissionFailure):
            raise AdmissionRejected(result)
        return line_response(result)


@app.get("/cart/{owner_id}", response_model=CartSummaryResponse)
async def get_cart(owner_id: str, actor_model: ActorModel = Depends(actor_from_query)):
    actor = actor_model.to_actor()
    with logger.request_context(endpoint="/cart/{owner_id}", method="GET", user_id=actor.user_id):
        try:
            summary = await ledger.summary(owner_id, actor)
        except PortalError as e:
            raise http_error_for(e)

        return CartSummaryResponse(
            owner_id=summary.owner_id,
            cart_id=summary.cart_id,
            lines=[line_response(line) for line in summary.lines],
            item_count=summary.item_count,
            total=float(summary.total),
            expired_line_count=summary.expired_line_count,
        )


@app.patch("/cart/{owner_id}/lines/{line_id}", response_model=CartLineResponse)
async def update_cart_line(owner_id: str, line_id: str, request: QuantityUpdateRequest):
    actor = request.actor.to_actor()
    with logger.request_context(endpoint="/cart/{owner_id}/lines/{line_id}", method="PATCH",
                                user_id=actor.user_id):
        try:
            line = await ledger.update_quantity(owner_id, line_id, request.quantity, actor)
        except AdmissionError as e:
            raise AdmissionRejected(AdmissionFailure.from_error(e))
        except PortalError as e:
            raise http_error_for(e)
        return line_response(line)


@app.delete("/cart/{owner_id}/lines/{line_id}", status_code=204)
async def delete_cart_line(owner_id: str, line_id: str,
                           actor_model: ActorModel = Depends(actor_from_query)):
    actor = actor_model.to_actor()
    with logger.request_context(endpoint="/cart/{owner_id}/lines/{line_id}", method="DELETE",
                                user_id=actor.user_id, status_code=204):
        try:
            await ledger.remove_line(owner_id, line_id, actor)
        except PortalError as e:
            raise http_error_for(e)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8003"))
    uvicorn.run(app, host="0.0.0.0", port=port)
