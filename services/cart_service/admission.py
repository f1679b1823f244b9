# CREATE FILE: services/cart_service/admission.py

import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from services.common.domain import (
    ActorContext, CartLine, Destination, OrderDetails, Product, Role
)
from services.common.errors import (
    AdmissionError, CartAccessError, InactiveProductError, InvalidAddressError,
    InvalidQuantityError, InvariantViolationError, MissingProviderError, NotFoundError,
    RoutingTimeoutError
)
from services.common.states import is_valid_state_code, normalize_state_code
from services.common.store import PortalStore
from services.pricing_service.pricing import PriceResolution, PriceResolver
from services.routing_service.routing import RoutingDecision
from utils.logging import get_logger, sanitize_pii

logger = get_logger("cart_service")


class AdmissionFailureCode(str, Enum):
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_ADDRESS = "invalid_address"
    MISSING_PROVIDER = "missing_provider"
    PRODUCT_NOT_FOUND = "product_not_found"
    PRODUCT_INACTIVE = "product_inactive"
    NO_ELIGIBLE_PHARMACY = "no_eligible_pharmacy"
    ROUTING_TIMEOUT = "routing_timeout"


@dataclass(frozen=True)
class AdmissionFailure:
    """A rejected cart addition. message is shown to the user verbatim."""
    code: AdmissionFailureCode
    message: str
    field: Optional[str] = None
    error: Optional[Exception] = None
    routing: Optional[RoutingDecision] = None

    @classmethod
    def from_error(cls, error: AdmissionError) -> "AdmissionFailure":
        return cls(code=AdmissionFailureCode(error.code), message=str(error), field=error.field, error=error)

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "field": self.field}


AdmissionResult = Union[CartLine, AdmissionFailure]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CartAdmission:
    """
    Adds a line to a cart only when it can be fulfilled.

    Input checks run first and never touch the store or the router. The
    product is loaded next, then price resolution and routing run
    concurrently. The line is written in a single insert only after both
    succeed, so a persisted line always carries its resolved price snapshot
    and pharmacy.
    """

    def __init__(self, store: PortalStore, router, config: Dict[str, Any] = None,
                 state_validator: Callable[[str], bool] = is_valid_state_code,
                 clock: Callable[[], datetime] = utc_now):
        config = config or {}
        self.store = store
        self.router = router
        self.price_resolver = PriceResolver(store)
        self.state_validator = state_validator
        self.clock = clock
        self.line_ttl = timedelta(hours=config.get("line_ttl_hours", 24))
        self.routing_timeout = config.get("routing_timeout_seconds", 10)

    # Input checks

    @staticmethod
    def check_quantity(quantity) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantityError(quantity)
        return quantity

    def check_destination(self, destination: Optional[Destination]) -> str:
        if destination is None:
            raise InvalidAddressError("destination")
        state = normalize_state_code(destination.state)
        if state is None:
            raise InvalidAddressError(destination.state_field)
        if not self.state_validator(state):
            raise InvalidAddressError(destination.state_field, state)
        return state

    @staticmethod
    def check_provider(actor: ActorContext, provider_id: Optional[str]) -> str:
        if provider_id:
            return provider_id
        if actor.role == Role.PROVIDER and actor.provider_id:
            return actor.provider_id
        raise MissingProviderError()

    # Lookups

    async def _route(self, product_id: str, state: str, rep_scope_id: Optional[str]) -> RoutingDecision:
        try:
            return await asyncio.wait_for(self.router.route(product_id, state, rep_scope_id),
                                          timeout=self.routing_timeout)
        except asyncio.TimeoutError as e:
            raise RoutingTimeoutError(self.routing_timeout) from e

    async def _lookup(self, product: Product, state: str, actor: ActorContext,
                      request_id: Optional[str] = None):
        """Price and route concurrently; returns the results or the exceptions raised"""
        with logger.operation_context("price_and_route", request_id=request_id):
            return await asyncio.gather(
                self.price_resolver.resolve(product, actor),
                self._route(product.id, state, actor.rep_scope_id),
                return_exceptions=True
            )

    async def add_to_cart(self, cart_owner_id: str, product_id: str, quantity: int,
                          destination: Destination, actor: ActorContext,
                          provider_id: Optional[str] = None,
                          details: Optional[OrderDetails] = None,
                          request_id: str = None) -> AdmissionResult:
        if not actor.may_order_for(cart_owner_id):
            raise CartAccessError(actor.user_id, cart_owner_id)

        try:
            self.check_quantity(quantity)
            state = self.check_destination(destination)
            provider = self.check_provider(actor, provider_id)
        except AdmissionError as e:
            return self._rejected(AdmissionFailure.from_error(e), product_id, request_id)

        product = await self.store.get_product(product_id)
        if product is None:
            error = NotFoundError("Product", product_id)
            return self._rejected(AdmissionFailure(
                AdmissionFailureCode.PRODUCT_NOT_FOUND, str(error), "product_id", error
            ), product_id, request_id)

        price, decision = await self._lookup(product, state, actor, request_id)

        if isinstance(price, InactiveProductError):
            return self._rejected(AdmissionFailure(
                AdmissionFailureCode.PRODUCT_INACTIVE, str(price), "product_id", price
            ), product_id, request_id)
        if isinstance(price, BaseException):
            raise price

        if isinstance(decision, RoutingTimeoutError):
            return self._rejected(AdmissionFailure(
                AdmissionFailureCode.ROUTING_TIMEOUT,
                f"Could not confirm a pharmacy for {product.name} in time. Please try again.",
                error=decision
            ), product_id, request_id)
        if isinstance(decision, BaseException):
            raise decision
        if not decision.succeeded:
            return self._rejected(AdmissionFailure(
                AdmissionFailureCode.NO_ELIGIBLE_PHARMACY,
                f"{product.name} cannot be fulfilled in {state}: {decision.reason}",
                destination.state_field,
                routing=decision
            ), product_id, request_id)

        return await self._commit(cart_owner_id, product, quantity, state, destination,
                                  provider, price, decision, details, request_id)

    async def _commit(self, cart_owner_id: str, product: Product, quantity: int, state: str,
                      destination: Destination, provider_id: str, price: PriceResolution,
                      decision: RoutingDecision, details: Optional[OrderDetails],
                      request_id: Optional[str]) -> CartLine:
        if not decision.pharmacy_id:
            raise InvariantViolationError(f"Refusing to add {product.id} without a routed pharmacy")

        cart = await self.store.get_or_create_cart(cart_owner_id)
        now = self.clock()
        line = CartLine(
            id=str(uuid.uuid4()),
            cart_id=cart.id,
            product_id=product.id,
            quantity=quantity,
            price_snapshot=price.tier_price,
            destination_state=state,
            assigned_pharmacy_id=decision.pharmacy_id,
            destination=destination,
            provider_id=provider_id,
            created_at=now,
            expires_at=now + self.line_ttl,
            details=details or OrderDetails(),
        )
        saved = await self.store.insert_cart_line(cart_owner_id, line)

        logger.business_event("cart_line_added",
                              request_id=request_id,
                              user_id=cart_owner_id,
                              amount=float(saved.line_total),
                              cart_line_id=saved.id,
                              product_id=product.id,
                              pharmacy_id=saved.assigned_pharmacy_id,
                              routing_reason=decision.reason,
                              price_tier=price.tier.value,
                              has_override=price.has_override,
                              destination=sanitize_pii(asdict(destination)))
        return saved

    def _rejected(self, failure: AdmissionFailure, product_id: str,
                  request_id: Optional[str]) -> AdmissionFailure:
        logger.warning("Cart addition blocked",
                       request_id=request_id,
                       product_id=product_id,
                       failure_code=failure.code.value,
                       failure_field=failure.field,
                       failure_message=failure.message)
        return failure
