# Overview: Server cart mirror clients used by the cart store.

"""
Cart remotes

The store only needs two calls: read the signed-in user's persisted cart
and overwrite it. Anything with that shape works (tests use an in-memory
fake). Remotes raise CartSyncError for every failure they can recover
from so the store can log it and carry on.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .items import CartItem

logger = logging.getLogger(__name__)

CART_PATH = "/api/cart"


class CartSyncError(Exception):
    """Raised when the server cart could not be read or written."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CartRemote(Protocol):
    def fetch_cart(self) -> list[CartItem]:
        ...

    def replace_cart(self, items: list[CartItem]) -> None:
        ...


class HttpCartRemote:
    """
    Talks to GET/PUT/DELETE /api/cart with the shopper's bearer token.

    The token identifies the user; call set_token() on login and logout.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    def set_token(self, token: str | None) -> None:
        self.token = token

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _request(self, method: str, json: dict | None = None) -> httpx.Response:
        if not self.token:
            raise CartSyncError("Not signed in")
        try:
            response = self._http().request(
                method,
                self.base_url + CART_PATH,
                json=json,
                headers={"Authorization": f"Bearer {self.token}", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise CartSyncError(f"Cart server unreachable: {exc}") from exc

        if response.is_error:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            raise CartSyncError(detail or f"HTTP {response.status_code}", status_code=response.status_code)
        return response

    def fetch_cart(self) -> list[CartItem]:
        response = self._request("GET")
        try:
            return [CartItem.from_dict(d) for d in response.json().get("items", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise CartSyncError(f"Malformed cart response: {exc}") from exc

    def replace_cart(self, items: list[CartItem]) -> None:
        if not items:
            self._request("DELETE")
            return
        self._request("PUT", json={
            "items": [{"product_id": item.id, "quantity": item.quantity} for item in items],
        })
