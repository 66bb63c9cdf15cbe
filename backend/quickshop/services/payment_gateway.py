# Overview: Midtrans Snap client; token issuance and notification signatures.

"""
Midtrans Snap gateway client

WHY: Card data, tokenization and fraud screening stay with the gateway.
We only ask it for a Snap token per order and later verify the
notifications it sends back.

create_app builds one client and stores it in app.extensions; anything
with a matching create_transaction() can stand in for it.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

logger = logging.getLogger(__name__)

SANDBOX_BASE_URL = "https://app.sandbox.midtrans.com"
PRODUCTION_BASE_URL = "https://app.midtrans.com"
SNAP_JS_PATH = "/snap/snap.js"
SNAP_TRANSACTIONS_PATH = "/snap/v1/transactions"


class GatewayError(Exception):
    """Raised when the gateway cannot issue a token (HTTP error, timeout, bad response)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SnapToken:
    token: str
    redirect_url: str | None


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """hex(sha512(order_id + status_code + gross_amount + server_key))"""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature(payload: Mapping[str, Any], server_key: str) -> bool:
    """
    Check a notification's signature_key.

    The fields are hashed exactly as received (gross_amount keeps the
    gateway's "505000.00" formatting).
    """
    supplied = payload.get("signature_key")
    if not supplied or not server_key:
        return False

    expected = compute_signature(
        str(payload.get("order_id", "")),
        str(payload.get("status_code", "")),
        str(payload.get("gross_amount", "")),
        server_key,
    )
    return hmac.compare_digest(expected, str(supplied))


class MidtransGateway:
    def __init__(
        self,
        server_key: str,
        *,
        is_production: bool = False,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self.server_key = server_key
        self.base_url = PRODUCTION_BASE_URL if is_production else SANDBOX_BASE_URL
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MidtransGateway":
        return cls(
            config.get("MIDTRANS_SERVER_KEY", ""),
            is_production=bool(config.get("MIDTRANS_IS_PRODUCTION", False)),
            timeout=float(config.get("GATEWAY_TIMEOUT_SECONDS", 15.0)),
        )

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def create_transaction(
        self,
        *,
        order_number: str,
        gross_amount: int,
        customer: Mapping[str, Any],
        items: list[Mapping[str, Any]],
        finish_url: str | None = None,
    ) -> SnapToken:
        """
        Request a Snap token for an order.

        `items` must already include any synthetic lines (shipping) so that
        sum(price * quantity) == gross_amount, which Midtrans enforces.
        """
        body: dict[str, Any] = {
            "transaction_details": {
                "order_id": order_number,
                "gross_amount": gross_amount,
            },
            "customer_details": {
                "first_name": customer.get("name"),
                "email": customer.get("email"),
                "phone": customer.get("phone"),
            },
            "item_details": [
                {
                    "id": str(item["id"]),
                    "name": str(item["name"])[:50],
                    "price": item["price"],
                    "quantity": item["quantity"],
                }
                for item in items
            ],
        }
        if finish_url:
            body["callbacks"] = {"finish": finish_url}

        try:
            response = self._http().post(
                self.base_url + SNAP_TRANSACTIONS_PATH,
                json=body,
                auth=(self.server_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("Snap token request for %s failed: %s", order_number, exc)
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_error:
            messages = data.get("error_messages") if isinstance(data, dict) else None
            detail = "; ".join(messages) if messages else f"HTTP {response.status_code}"
            logger.warning("Snap token request for %s rejected: %s", order_number, detail)
            raise GatewayError(f"Failed to create payment: {detail}", status_code=response.status_code)

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise GatewayError("Payment gateway returned no token", status_code=response.status_code)

        return SnapToken(token=token, redirect_url=data.get("redirect_url"))
