# CREATE FILE: services/routing_service/client.py

import asyncio
import os
import time
from typing import Dict, Any, Optional

import requests

from services.common.errors import RoutingServiceError, RoutingTimeoutError
from services.common.store import PortalStore
from utils.logging import elapsed_ms, get_logger
from .routing import RoutingDecision, RoutingEngine, RoutingFailureCode

logger = get_logger("routing_client")


class RemoteRoutingClient:
    """Calls a deployed routing service; same route() contract as RoutingEngine"""

    def __init__(self, base_url: str = None, timeout: float = 10, session: requests.Session = None):
        self.base_url = (base_url or os.getenv("ROUTING_SERVICE_URL", "http://localhost:8002")).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        return self.session.post(f"{self.base_url}/route-order", json=payload, timeout=self.timeout)

    async def route(self, product_id: str, destination_state: str,
                    rep_scope_id: Optional[str] = None) -> RoutingDecision:
        payload = {
            "product_id": product_id,
            "destination_state": destination_state,
            "user_topline_rep_id": rep_scope_id,
        }
        start_time = time.time()
        try:
            response = await asyncio.to_thread(self._post, payload)
        except requests.Timeout as e:
            logger.api_call("routing_service", "/route-order", duration_ms=elapsed_ms(start_time),
                            error_type=type(e).__name__)
            raise RoutingTimeoutError(self.timeout) from e
        except requests.RequestException as e:
            logger.api_call("routing_service", "/route-order", duration_ms=elapsed_ms(start_time),
                            error_type=type(e).__name__)
            raise RoutingServiceError(f"Routing service request failed: {e}") from e

        logger.api_call("routing_service", "/route-order", duration_ms=elapsed_ms(start_time),
                        status_code=response.status_code)
        if response.status_code != 200:
            raise RoutingServiceError(f"Routing service returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise RoutingServiceError("Routing service returned invalid JSON") from e
        return self.decision_from_response(product_id, destination_state, body)

    @staticmethod
    def decision_from_response(product_id: str, destination_state: str, body: Dict[str, Any]) -> RoutingDecision:
        reason = body.get("reason") or ""
        if body.get("pharmacy_id"):
            return RoutingDecision(
                product_id=product_id,
                destination_state=destination_state,
                reason=reason,
                pharmacy_id=body["pharmacy_id"],
                pharmacy_name=body.get("pharmacy_name"),
                priority=body.get("priority"),
            )

        try:
            code = RoutingFailureCode(body.get("failure_code") or RoutingFailureCode.NO_ELIGIBLE_PHARMACY)
        except ValueError:
            code = RoutingFailureCode.NO_ELIGIBLE_PHARMACY
        return RoutingDecision.failure(product_id, destination_state, code, reason,
                                       body.get("diagnostics") or {})


def create_router(store: PortalStore, routing_config: Dict[str, Any]):
    """In-process RoutingEngine by default; RemoteRoutingClient when routing.mode is remote"""
    if routing_config.get("mode") == "remote":
        return RemoteRoutingClient(
            base_url=routing_config.get("service_url"),
            timeout=routing_config.get("request_timeout_seconds", 10),
        )
    return RoutingEngine(store, routing_config)
