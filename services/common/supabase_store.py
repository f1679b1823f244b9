# CREATE FILE: services/common/supabase_store.py

import os
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from utils.logging import elapsed_ms, get_logger

from .domain import (
    Cart, CartLine, OrderDetails, PatientDestination, Pharmacy, PharmacyRepAssignment,
    PracticeDestination, PriceOverride, Product, RepProductVisibility, RoutingLogEntry
)
from .errors import CartAccessError, NotFoundError, StoreError
from .store import InMemoryPortalStore, PortalStore

logger = get_logger("portal_store")

PRACTICE_ORDER_NAME = "Practice Order"
IN_MEMORY_ENVIRONMENTS = ("development", "test")


def _decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def product_from_row(row: Dict[str, Any]) -> Product:
    return Product(
        id=row["id"],
        name=row["name"],
        dosage=row.get("dosage"),
        base_price=_decimal(row.get("base_price")) or Decimal("0"),
        topline_price=_decimal(row.get("topline_price")),
        downline_price=_decimal(row.get("downline_price")),
        retail_price=_decimal(row.get("retail_price")),
        requires_prescription=bool(row.get("requires_prescription")),
        active=bool(row.get("active")),
    )


def pharmacy_from_row(row: Dict[str, Any]) -> Pharmacy:
    priority_map = row.get("priority_map")
    return Pharmacy(
        id=row["id"],
        name=row.get("name") or "",
        active=bool(row.get("active")),
        states_serviced=frozenset(row.get("states_serviced") or []),
        # Malformed maps are treated as "no priorities set"
        priority_map=priority_map if isinstance(priority_map, dict) else {},
    )


def override_from_row(row: Dict[str, Any]) -> PriceOverride:
    return PriceOverride(
        product_id=row["product_id"],
        scope_id=row["rep_id"],
        override_topline_price=_decimal(row.get("override_topline_price")),
        override_downline_price=_decimal(row.get("override_downline_price")),
        override_retail_price=_decimal(row.get("override_retail_price")),
        notes=row.get("notes"),
    )


def cart_line_to_row(line: CartLine) -> Dict[str, Any]:
    destination = line.destination
    row = {
        "id": line.id,
        "cart_id": line.cart_id,
        "product_id": line.product_id,
        "quantity": line.quantity,
        "price_snapshot": str(line.price_snapshot),
        "destination_state": line.destination_state,
        "assigned_pharmacy_id": line.assigned_pharmacy_id,
        "provider_id": line.provider_id,
        "ship_to_practice": destination.ship_to_practice,
        "created_at": line.created_at.isoformat(),
        "expires_at": line.expires_at.isoformat(),
        "prescription_url": line.details.prescription_url,
        "custom_sig": line.details.custom_sig,
        "custom_dosage": line.details.custom_dosage,
        "order_notes": line.details.order_notes,
        "prescription_method": line.details.prescription_method,
    }
    if isinstance(destination, PatientDestination):
        row.update({
            "patient_id": destination.patient_id,
            "patient_name": destination.patient_name,
            "patient_email": destination.email,
            "patient_phone": destination.phone,
            "patient_address_street": destination.street,
            "patient_address_city": destination.city,
            "patient_address_state": destination.state,
            "patient_address_zip": destination.zip_code,
        })
    else:
        row.update({
            "patient_id": None,
            "patient_name": PRACTICE_ORDER_NAME,
            "practice_id": destination.practice_id,
        })
    return row


def cart_line_from_row(row: Dict[str, Any]) -> CartLine:
    if row.get("ship_to_practice"):
        destination = PracticeDestination(
            practice_id=row.get("practice_id") or "",
            state=row.get("destination_state"),
        )
    else:
        destination = PatientDestination(
            patient_id=row.get("patient_id") or "",
            patient_name=row.get("patient_name") or "",
            state=row.get("patient_address_state") or row.get("destination_state"),
            street=row.get("patient_address_street"),
            city=row.get("patient_address_city"),
            zip_code=row.get("patient_address_zip"),
            email=row.get("patient_email"),
            phone=row.get("patient_phone"),
        )
    return CartLine(
        id=row["id"],
        cart_id=row["cart_id"],
        product_id=row["product_id"],
        quantity=int(row["quantity"]),
        price_snapshot=_decimal(row["price_snapshot"]),
        destination_state=row["destination_state"],
        assigned_pharmacy_id=row["assigned_pharmacy_id"],
        destination=destination,
        provider_id=row.get("provider_id") or "",
        created_at=_timestamp(row["created_at"]),
        expires_at=_timestamp(row["expires_at"]),
        details=OrderDetails(
            prescription_url=row.get("prescription_url"),
            custom_sig=row.get("custom_sig"),
            custom_dosage=row.get("custom_dosage"),
            order_notes=row.get("order_notes"),
            prescription_method=row.get("prescription_method"),
        ),
    )


class SupabasePortalStore(PortalStore):
    """
    PortalStore backed by the portal's Supabase Postgres tables.

    Uses the service-role key: the catalog tables (product_pharmacies,
    pharmacy_rep_assignments) are not readable through row-level security.
    Cart ownership is checked again here before every cart write.
    """

    def __init__(self, url: str = None, service_key: str = None, client: AsyncClient = None):
        self.url = url or os.getenv("SUPABASE_URL", "")
        self.service_key = service_key or os.getenv("SUPABASE_SERVICE_KEY", "")
        self._client = client

    async def client(self) -> AsyncClient:
        if self._client is None:
            if not self.url or not self.service_key:
                raise StoreError("connect", "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
            self._client = await acreate_client(self.url, self.service_key)
        return self._client

    async def _execute(self, operation: str, table: str, query) -> List[Dict[str, Any]]:
        start_time = time.time()
        try:
            response = await query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error("Store query failed", error=e, operation=operation, table=table)
            raise StoreError(operation, str(e)) from e

        rows = (response.data if response is not None else None) or []
        if isinstance(rows, dict):
            rows = [rows]
        logger.debug("Store query completed",
                     operation=operation,
                     table=table,
                     record_count=len(rows),
                     duration_ms=elapsed_ms(start_time))
        return rows

    async def _table(self, name: str):
        return (await self.client()).table(name)

    # Catalog reads

    async def get_product(self, product_id: str) -> Optional[Product]:
        query = (await self._table("products")).select("*").eq("id", product_id).limit(1)
        rows = await self._execute("get_product", "products", query)
        return product_from_row(rows[0]) if rows else None

    async def list_product_pharmacies(self, product_id: str) -> List[Pharmacy]:
        query = (await self._table("product_pharmacies")).select(
            "pharmacy:pharmacies (id, name, states_serviced, priority_map, active)"
        ).eq("product_id", product_id)
        rows = await self._execute("list_product_pharmacies", "product_pharmacies", query)
        return [pharmacy_from_row(row["pharmacy"]) for row in rows if row.get("pharmacy")]

    async def list_pharmacy_rep_assignments(self, pharmacy_ids: Iterable[str]) -> List[PharmacyRepAssignment]:
        ids = list(pharmacy_ids)
        if not ids:
            return []
        query = (await self._table("pharmacy_rep_assignments")).select(
            "pharmacy_id, topline_rep_id"
        ).in_("pharmacy_id", ids)
        rows = await self._execute("list_pharmacy_rep_assignments", "pharmacy_rep_assignments", query)
        return [PharmacyRepAssignment(row["pharmacy_id"], row["topline_rep_id"]) for row in rows]

    async def get_price_override(self, product_id: str, scope_id: str) -> Optional[PriceOverride]:
        query = (await self._table("rep_product_price_overrides")).select("*") \
            .eq("product_id", product_id).eq("rep_id", scope_id).limit(1)
        rows = await self._execute("get_price_override", "rep_product_price_overrides", query)
        return override_from_row(rows[0]) if rows else None

    async def get_product_visibility(self, topline_rep_id: str, product_id: str) -> Optional[RepProductVisibility]:
        query = (await self._table("rep_product_visibility")).select("topline_rep_id, product_id, visible") \
            .eq("topline_rep_id", topline_rep_id).eq("product_id", product_id).limit(1)
        rows = await self._execute("get_product_visibility", "rep_product_visibility", query)
        if not rows:
            return None
        return RepProductVisibility(rows[0]["topline_rep_id"], rows[0]["product_id"], bool(rows[0]["visible"]))

    async def replace_product_pharmacies(self, product_id: str, pharmacy_ids: Iterable[str]) -> None:
        if await self.get_product(product_id) is None:
            raise NotFoundError("Product", product_id)
        table = await self._table("product_pharmacies")
        await self._execute("delete_product_pharmacies", "product_pharmacies",
                            table.delete().eq("product_id", product_id))
        rows = [{"product_id": product_id, "pharmacy_id": pharmacy_id} for pharmacy_id in pharmacy_ids]
        if rows:
            await self._execute("insert_product_pharmacies", "product_pharmacies", table.insert(rows))
        logger.data_operation("replace_product_pharmacies", table="product_pharmacies",
                              record_count=len(rows), product_id=product_id)

    # Cart

    async def get_cart(self, owner_id: str) -> Optional[Cart]:
        query = (await self._table("cart")).select("id, doctor_id, created_at").eq("doctor_id", owner_id).limit(1)
        rows = await self._execute("get_cart", "cart", query)
        if not rows:
            return None
        return Cart(id=rows[0]["id"], owner_id=rows[0]["doctor_id"], created_at=_timestamp(rows[0]["created_at"]))

    async def create_cart(self, owner_id: str) -> Cart:
        row = {"id": str(uuid.uuid4()), "doctor_id": owner_id,
               "created_at": datetime.now(timezone.utc).isoformat()}
        rows = await self._execute("create_cart", "cart", (await self._table("cart")).insert(row))
        created = rows[0] if rows else row
        logger.data_operation("create_cart", table="cart", record_count=1, cart_id=created["id"])
        return Cart(id=created["id"], owner_id=created["doctor_id"], created_at=_timestamp(created["created_at"]))

    async def _require_owned_cart(self, owner_id: str, cart_id: str) -> None:
        cart = await self.get_cart(owner_id)
        if cart is None or cart.id != cart_id:
            raise CartAccessError(owner_id, cart_id)

    async def insert_cart_line(self, owner_id: str, line: CartLine) -> CartLine:
        self.check_line_invariants(line)
        await self._require_owned_cart(owner_id, line.cart_id)
        await self._execute("insert_cart_line", "cart_lines",
                            (await self._table("cart_lines")).insert(cart_line_to_row(line)))
        logger.data_operation("insert_cart_line", table="cart_lines", record_count=1, cart_line_id=line.id)
        return line

    async def list_cart_lines(self, cart_id: str) -> List[CartLine]:
        query = (await self._table("cart_lines")).select("*").eq("cart_id", cart_id).order("created_at")
        rows = await self._execute("list_cart_lines", "cart_lines", query)
        return [cart_line_from_row(row) for row in rows]

    async def _owned_line(self, owner_id: str, line_id: str) -> CartLine:
        query = (await self._table("cart_lines")).select("*").eq("id", line_id).limit(1)
        rows = await self._execute("get_cart_line", "cart_lines", query)
        if not rows:
            raise NotFoundError("Cart line", line_id)
        line = cart_line_from_row(rows[0])
        await self._require_owned_cart(owner_id, line.cart_id)
        return line

    async def update_cart_line_quantity(self, owner_id: str, line_id: str, quantity: int) -> CartLine:
        line = await self._owned_line(owner_id, line_id)
        table = await self._table("cart_lines")
        await self._execute("update_cart_line_quantity", "cart_lines",
                            table.update({"quantity": quantity}).eq("id", line_id))
        logger.data_operation("update_cart_line_quantity", table="cart_lines", record_count=1, cart_line_id=line_id)
        return replace(line, quantity=quantity)

    async def delete_cart_line(self, owner_id: str, line_id: str) -> None:
        await self._owned_line(owner_id, line_id)
        table = await self._table("cart_lines")
        await self._execute("delete_cart_line", "cart_lines", table.delete().eq("id", line_id))
        logger.data_operation("delete_cart_line", table="cart_lines", record_count=1, cart_line_id=line_id)

    async def record_routing_decision(self, entry: RoutingLogEntry) -> None:
        row = {
            "product_id": entry.product_id,
            "destination_state": entry.destination_state,
            "user_topline_rep_id": entry.rep_scope_id,
            "eligible_pharmacies": entry.eligible_pharmacies,
            "selected_pharmacy_id": entry.selected_pharmacy_id,
            "selected_pharmacy_name": entry.selected_pharmacy_name,
            "selection_reason": entry.selection_reason,
            "priority_used": entry.priority_used,
            "created_at": entry.created_at.isoformat(),
        }
        await self._execute("record_routing_decision", "order_routing_log",
                            (await self._table("order_routing_log")).insert(row))


def create_store() -> PortalStore:
    """Supabase when credentials are configured, in-memory in development only"""
    if os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_SERVICE_KEY"):
        logger.info("Using Supabase portal store")
        return SupabasePortalStore()
    environment = os.getenv("ENVIRONMENT", "development")
    if environment not in IN_MEMORY_ENVIRONMENTS:
        logger.error("Supabase credentials missing", environment=environment)
        raise StoreError("connect", f"SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in {environment}")
    logger.warning("SUPABASE_URL not set, using in-memory portal store", environment=environment)
    return InMemoryPortalStore()
