# CREATE FILE: services/common/errors.py

from typing import Optional


class PortalError(Exception):
    """Base class for errors raised by the routing, pricing and cart core"""


class NotFoundError(PortalError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InactiveProductError(PortalError):
    def __init__(self, product_id: str, product_name: Optional[str] = None):
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f"Product {product_name or product_id} is inactive")


class InvalidStateCodeError(PortalError, ValueError):
    def __init__(self, state_code):
        self.state_code = state_code
        super().__init__(f'Invalid destination state: "{state_code}" must be a 2-letter US state code')


# Input errors: raised before any store or routing call

class AdmissionError(PortalError):
    """An input error that blocks a cart addition; reported, never propagated"""

    code = "admission_error"
    field: Optional[str] = None


class InvalidQuantityError(AdmissionError):
    code = "invalid_quantity"
    field = "quantity"

    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Quantity must be a whole number of at least 1 (got {quantity!r})")


class InvalidAddressError(AdmissionError):
    code = "invalid_address"

    def __init__(self, field: str, state_code=None):
        self.field = field
        self.state_code = state_code
        label = "Practice shipping address" if field == "practice_shipping_state" else "Patient address"
        if state_code:
            message = f'{label} has an invalid state "{state_code}"'
        else:
            message = f"{label} is missing a state"
        super().__init__(message)


class MissingProviderError(AdmissionError):
    code = "missing_provider"
    field = "provider_id"

    def __init__(self):
        super().__init__("A prescribing provider must be selected before adding to cart")


# Infrastructure errors: propagate to the caller

class StoreError(PortalError):
    """The data store could not complete a read or write"""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store operation {operation} failed: {detail}")


class RoutingServiceError(PortalError):
    """The remote routing service returned an unusable response"""


class RoutingTimeoutError(RoutingServiceError):
    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Routing lookup timed out after {timeout_seconds}s")


class CartAccessError(PortalError, PermissionError):
    def __init__(self, actor_id: str, cart_owner_id: str):
        self.actor_id = actor_id
        self.cart_owner_id = cart_owner_id
        super().__init__(f"User {actor_id} may not modify the cart of {cart_owner_id}")


class InvariantViolationError(PortalError):
    """A programming error: the core tried to persist an unfulfillable line"""
