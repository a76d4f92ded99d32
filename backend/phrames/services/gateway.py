"""
Payment Gateway Client — Cashfree PG order creation over HTTP.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from phrames.config import Settings
from phrames.errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Customer:
    customer_id: str
    email: str = "user@example.com"
    phone: str = "9999999999"    # required by the gateway, not collected


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    session_ref: str


class CashfreeClient:
    """Thin client for ``POST /pg/orders``.

    One attempt per call; retries are left to the caller.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        api_version: str = "2023-08-01",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self._http = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "x-api-version": api_version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        return cls(
            client_id=settings.CASHFREE_CLIENT_ID,
            client_secret=settings.CASHFREE_CLIENT_SECRET,
            base_url=settings.gateway_base_url,
            api_version=settings.CASHFREE_API_VERSION,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def create_order(
        self,
        order_id: str,
        amount: int,
        currency: str,
        customer: Customer,
        return_url: str,
        notify_url: str,
        note: str = "",
    ) -> GatewayOrder:
        """Create a gateway order and return its payment session reference.

        Raises:
            GatewayError: on misconfiguration, transport failure, a non-2xx
                response, or a response without a session id. The exception
                message carries full detail for server logs only.
        """
        if not self.configured:
            raise GatewayError("Cashfree credentials are not configured")

        body = {
            "order_id": order_id,
            "order_amount": amount,
            "order_currency": currency,
            "customer_details": {
                "customer_id": customer.customer_id,
                "customer_email": customer.email,
                "customer_phone": customer.phone,
            },
            "order_meta": {"return_url": return_url, "notify_url": notify_url},
            "order_note": note,
        }
        headers = {"x-client-id": self.client_id, "x-client-secret": self.client_secret}

        try:
            response = self._http.post("/pg/orders", json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Cashfree order %s transport error: %s", order_id, exc)
            raise GatewayError(f"Transport error creating order {order_id}: {exc}", order_id=order_id) from exc

        if response.status_code >= 400:
            logger.error(
                "Cashfree order %s rejected (%s): %s",
                order_id, response.status_code, response.text,
            )
            raise GatewayError(
                f"Gateway rejected order {order_id} with {response.status_code}",
                order_id=order_id,
                response=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error("Cashfree order %s returned an unreadable body: %s", order_id, response.text)
            raise GatewayError(f"Unreadable gateway response for order {order_id}", order_id=order_id)

        session_ref = data.get("payment_session_id")
        if not session_ref:
            logger.error("Cashfree order %s returned no payment_session_id: %s", order_id, data)
            raise GatewayError(f"No payment session id for order {order_id}", order_id=order_id)

        gateway_order_id = str(data.get("cf_order_id") or data.get("order_id") or order_id)
        logger.info("Cashfree order created: %s (cf=%s)", order_id, gateway_order_id)
        return GatewayOrder(gateway_order_id=gateway_order_id, session_ref=session_ref)

    def close(self) -> None:
        self._http.close()
