# CREATE FILE: services/cart_service/cart.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from services.common.domain import ActorContext, CartLine
from services.common.errors import CartAccessError
from services.common.store import PortalStore
from .admission import CartAdmission


@dataclass
class CartSummary:
    owner_id: str
    cart_id: Optional[str]
    lines: List[CartLine] = field(default_factory=list)
    expired_line_count: int = 0

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def total(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal('0.00'))


class CartLedger:
    """
    Read and edit an owner's cart on behalf of an actor.

    Every operation checks that the actor may act for the cart owner before
    touching the store. Expired lines never count toward totals.
    """

    def __init__(self, store: PortalStore):
        self.store = store

    @staticmethod
    def check_access(actor: ActorContext, owner_id: str) -> None:
        if not actor.may_order_for(owner_id):
            raise CartAccessError(actor.user_id, owner_id)

    async def summary(self, owner_id: str, actor: ActorContext, now: datetime = None) -> CartSummary:
        self.check_access(actor, owner_id)
        now = now or datetime.now(timezone.utc)
        cart = await self.store.get_cart(owner_id)
        if cart is None:
            return CartSummary(owner_id=owner_id, cart_id=None)

        lines = await self.store.list_cart_lines(cart.id)
        active = [line for line in lines if not line.is_expired(now)]
        return CartSummary(
            owner_id=owner_id,
            cart_id=cart.id,
            lines=active,
            expired_line_count=len(lines) - len(active),
        )

    async def update_quantity(self, owner_id: str, line_id: str, quantity: int,
                              actor: ActorContext) -> CartLine:
        """Change quantity only; the price snapshot and pharmacy stay as admitted"""
        self.check_access(actor, owner_id)
        CartAdmission.check_quantity(quantity)
        return await self.store.update_cart_line_quantity(owner_id, line_id, quantity)

    async def remove_line(self, owner_id: str, line_id: str, actor: ActorContext) -> None:
        self.check_access(actor, owner_id)
        await self.store.delete_cart_line(owner_id, line_id)
