"""HTTP client for the shop-workflow platform API.

Every transport or HTTP failure is translated into a ``PlaybookError``
subclass here, so the failure class is attached once, at the boundary,
and never re-derived downstream:

    | Condition                       | Raised                     |
    |---------------------------------|----------------------------|
    | httpx.TimeoutException          | PlatformTimeoutError       |
    | httpx.RequestError (other)      | PlatformNetworkError       |
    | HTTP 401 / 403                  | AuthenticationError        |
    | HTTP 404                        | NotFoundError              |
    | HTTP 5xx                        | PlatformUnavailableError   |
    | body is not JSON                | ResponseParseError         |

Responses are wrapped in a ``{"response": ...}`` envelope; errors carry an
``{"error": ...}`` body.
"""

from __future__ import annotations

from typing import Any

import httpx

from repairflow.backends.base import ShopPlatform
from repairflow.core.config import ShopApiConfig
from repairflow.core.constants import TRUNCATE_ERROR_MESSAGE_CHARS
from repairflow.core.errors import (
    AuthenticationError,
    FailureClass,
    NotFoundError,
    PlatformNetworkError,
    PlatformTimeoutError,
    PlatformUnavailableError,
    PlaybookError,
    ResponseParseError,
)
from repairflow.core.logging import get_logger
from repairflow.playbook.models import Vehicle
from repairflow.session import Session

_logger = get_logger("backend.shop_api")

_CUSTOMER_SEARCH_PATH = "/customers/list"
_CUSTOMER_SEARCH_PARAMS = {
    "limit": 10,
    "skip": 0,
    "sort": "fullName",
    "order": 1,
    "activeStatus": "true",
}


class ShopApiClient(ShopPlatform):
    """Async client for the shop-workflow platform REST API.

    The underlying ``httpx.AsyncClient`` is created lazily and reused for
    connection pooling. Use as an async context manager, or call ``close()``.
    """

    def __init__(
        self,
        base_url: str = "https://api.myautoleap.com/api/v1",
        app_origin: str = "https://app.myautoleap.com",
        timeout_seconds: float = 30.0,
        export_path: str = "/estimates/{estimate_id}/pdf",
        session: Session | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API root, including the version prefix.
            app_origin: Web app origin sent as Origin/Referer.
            timeout_seconds: Per-request timeout.
            export_path: Path template for the document export.
            session: Session to authorize requests with; set by authenticate().
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.app_origin = app_origin.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.export_path = export_path
        self._session = session
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(
        cls,
        config: ShopApiConfig,
        session: Session | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ShopApiClient:
        return cls(
            base_url=config.base_url,
            app_origin=config.app_origin,
            timeout_seconds=config.timeout_seconds,
            export_path=config.export_path,
            session=session,
            transport=transport,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={
                    "Accept": "application/json, text/plain, */*",
                    "Origin": self.app_origin,
                    "Referer": self.app_origin + "/",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> ShopApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        if self._session is None:
            raise AuthenticationError("No session: authenticate() must be called first")

        client = await self._get_client()
        headers = {"Authorization": self._session.authorization}
        try:
            response = await client.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as e:
            raise PlatformTimeoutError(
                f"{method} {path} timed out after {self.timeout_seconds}s"
            ) from e
        except httpx.RequestError as e:
            raise PlatformNetworkError(f"{method} {path} failed: {e}") from e

        _logger.debug(
            "shop_api.response",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        self._raise_for_status(method, path, response)
        return response

    @staticmethod
    def _raise_for_status(method: str, path: str, response: httpx.Response) -> None:
        status = response.status_code
        if response.is_success:
            return

        detail = response.text[:TRUNCATE_ERROR_MESSAGE_CHARS]
        message = f"{method} {path} returned HTTP {status}: {detail}"
        if status in (401, 403):
            raise AuthenticationError(message)
        if status == 404:
            raise NotFoundError(message)
        if status >= 500:
            raise PlatformUnavailableError(message)
        raise PlaybookError(message, failure_class=FailureClass.UNKNOWN)

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self._send(method, path, json=json, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise ResponseParseError(
                f"{method} {path} returned a non-JSON body: "
                f"{response.text[:TRUNCATE_ERROR_MESSAGE_CHARS]}"
            ) from e

    @staticmethod
    def _unwrap(body: Any, what: str) -> dict[str, Any]:
        """Return ``body["response"]`` when it is a record with an ``_id``."""
        record = body.get("response") if isinstance(body, dict) else None
        if isinstance(record, dict) and record.get("_id"):
            return record
        error = body.get("error") if isinstance(body, dict) else body
        raise ResponseParseError(f"Failed to {what}: {error!r}")

    # =========================================================================
    # ShopPlatform
    # =========================================================================

    async def authenticate(self, session: Session) -> None:
        """Adopt ``session`` and verify it with a minimal authorized read."""
        self._session = session
        await self._request_json("GET", "/estimates", params={"limit": 1, "skip": 0})
        _logger.info("shop_api.authenticated")

    async def search_customer(self, query: str) -> dict[str, Any] | None:
        body = await self._request_json(
            "PUT",
            _CUSTOMER_SEARCH_PATH,
            params=_CUSTOMER_SEARCH_PARAMS,
            json={
                "multiInvoiceDateRange": [],
                "multiRoDateRange": [],
                "language": [],
                "search": query,
            },
        )
        response = body.get("response") if isinstance(body, dict) else None
        records = response.get("records") if isinstance(response, dict) else None
        if not records:
            return None
        first: dict[str, Any] = records[0]
        return first

    async def create_customer(
        self,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        email: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"firstName": first_name, "lastName": last_name}
        if phone:
            payload["phone"] = phone
        if email:
            payload["email"] = email
        body = await self._request_json("POST", "/customers", json=payload)
        return self._unwrap(body, "create customer")

    async def create_vehicle(self, customer_id: str, vehicle: Vehicle) -> dict[str, Any]:
        payload: dict[str, Any] = {"customerId": customer_id}
        if vehicle.year:
            payload["year"] = vehicle.year
        if vehicle.make:
            payload["make"] = vehicle.make
        if vehicle.model:
            payload["model"] = vehicle.model
        if vehicle.vin:
            payload["VIN"] = vehicle.vin
        body = await self._request_json("POST", "/vehicles", json=payload)
        return self._unwrap(body, "create vehicle")

    async def create_estimate(
        self, customer_id: str, vehicle_id: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"customer": {"customerId": customer_id}}
        if vehicle_id:
            payload["vehicle"] = {"vehicleId": vehicle_id}
        body = await self._request_json("POST", "/estimates", json=payload)
        return self._unwrap(body, "create estimate")

    async def get_estimate(self, estimate_id: str) -> dict[str, Any] | None:
        body = await self._request_json("GET", f"/estimates/{estimate_id}")
        record = body.get("response") if isinstance(body, dict) else None
        return record if isinstance(record, dict) else None

    async def export_document(self, estimate_id: str) -> bytes:
        path = self.export_path.format(estimate_id=estimate_id)
        response = await self._send("GET", path)
        if not response.content:
            raise ResponseParseError(f"GET {path} returned an empty document")
        return response.content


__all__ = ["ShopApiClient"]
