# CREATE FILE: services/pricing_service/pricing.py

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Any, Optional, Tuple

from services.common.domain import ActorContext, PriceOverride, PriceTier, Product, Role
from services.common.errors import InactiveProductError, NotFoundError
from services.common.store import PortalStore

CENTS = Decimal('0.01')

# Every role maps to exactly one list-price tier
TIER_BY_ROLE: Dict[Role, PriceTier] = {
    Role.ADMIN: PriceTier.BASE,
    Role.TOPLINE: PriceTier.TOPLINE,
    Role.DOWNLINE: PriceTier.DOWNLINE,
    Role.PRACTICE: PriceTier.RETAIL,
    Role.PROVIDER: PriceTier.RETAIL,
}

COMMISSION_TIERS = (PriceTier.TOPLINE, PriceTier.DOWNLINE)


def money(value: Decimal) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceResolution:
    product_id: str
    tier: PriceTier
    tier_price: Decimal
    effective_retail_price: Decimal
    effective_topline_price: Decimal
    effective_downline_price: Decimal
    has_override: bool
    override_source: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "tier": self.tier.value,
            "tier_price": float(self.tier_price),
            "effective_retail_price": float(self.effective_retail_price),
            "effective_topline_price": float(self.effective_topline_price),
            "effective_downline_price": float(self.effective_downline_price),
            "has_override": self.has_override,
            "override_source": self.override_source,
        }


def tier_for(product: Product, role: Role) -> PriceTier:
    """List-price tier charged to a role; RX products carry no rep commission tier"""
    tier = TIER_BY_ROLE[role]
    if product.requires_prescription and tier in COMMISSION_TIERS:
        return PriceTier.RETAIL
    return tier


def compute_effective_prices(product: Product, role: Role,
                             override: Optional[PriceOverride] = None,
                             override_source: Optional[str] = None) -> PriceResolution:
    """
    Pure price computation for one product and role.

    Starts from the tier list prices (null tiers fall back to base_price)
    and lets each non-null override field replace the matching effective
    price. Prescription products then collapse topline/downline onto retail,
    so only a retail override can change what any actor pays for them.
    has_override is set only when an applied field reaches a price.
    """
    effective = {
        PriceTier.BASE: product.tier_default(PriceTier.BASE),
        PriceTier.RETAIL: product.tier_default(PriceTier.RETAIL),
        PriceTier.TOPLINE: product.tier_default(PriceTier.TOPLINE),
        PriceTier.DOWNLINE: product.tier_default(PriceTier.DOWNLINE),
    }

    # RX products only carry a retail price; rep-tier override fields never apply
    override_tiers = (PriceTier.RETAIL,) if product.requires_prescription \
        else (PriceTier.RETAIL, PriceTier.TOPLINE, PriceTier.DOWNLINE)

    applied = False
    if override is not None:
        for tier in override_tiers:
            value = override.for_tier(tier)
            if value is not None:
                effective[tier] = value
                applied = True

    if product.requires_prescription:
        effective[PriceTier.TOPLINE] = effective[PriceTier.RETAIL]
        effective[PriceTier.DOWNLINE] = effective[PriceTier.RETAIL]

    tier = tier_for(product, role)
    return PriceResolution(
        product_id=product.id,
        tier=tier,
        tier_price=money(effective[tier]),
        effective_retail_price=money(effective[PriceTier.RETAIL]),
        effective_topline_price=money(effective[PriceTier.TOPLINE]),
        effective_downline_price=money(effective[PriceTier.DOWNLINE]),
        has_override=applied,
        override_source=override_source if applied else None,
    )


class PriceResolver:
    """Resolves the unit price an ordering party pays, honoring per-scope overrides"""

    def __init__(self, store: PortalStore):
        self.store = store

    async def find_override(self, product_id: str, actor: ActorContext) -> Tuple[Optional[PriceOverride], Optional[str]]:
        """First override found for the actor's scopes, most specific scope first"""
        for source, scope_id in actor.override_scopes():
            override = await self.store.get_price_override(product_id, scope_id)
            if override is not None:
                return override, source
        return None, None

    async def resolve(self, product: Product, actor: ActorContext) -> PriceResolution:
        if not product.active:
            raise InactiveProductError(product.id, product.name)

        override, source = await self.find_override(product.id, actor)
        return compute_effective_prices(product, actor.role, override, source)

    async def resolve_by_id(self, product_id: str, actor: ActorContext) -> PriceResolution:
        product = await self.store.get_product(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return await self.resolve(product, actor)
