"""HTTP client for the remote receipt service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from receiptsync.models import RemoteReceipt, RemoteReceiptList

if TYPE_CHECKING:
    from receiptsync.models import ReceiptUpdateRequest

logger = logging.getLogger(__name__)

SESSION_COOKIE = "sessionid"


class ReceiptAPIError(Exception):
    """Raised when a remote call fails or returns an undecodable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReceiptAPIClient:
    """Async client for the receipt upload, list, update and delete endpoints.

    The server uses session-cookie auth; when a session token is configured it
    is attached as the ``sessionid`` cookie on every request.
    """

    def __init__(
        self,
        base_url: str,
        session_token: str | None = None,
        timeout: float = 30.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API base URL, e.g. https://host/api
            session_token: Optional session cookie value
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        cookies = {SESSION_COOKIE: session_token} if session_token else None
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/",
            headers={"Accept": "application/json"},
            cookies=cookies,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ReceiptAPIClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        expect_body: bool = True,
    ) -> Any:  # noqa: ANN401
        """Make an HTTP request and decode the JSON body.

        Raises:
            ReceiptAPIError: On transport errors, non-2xx statuses or bad JSON
        """
        try:
            response = await self._client.request(
                method=method,
                url=endpoint,
                json=json,
                files=files,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("Receipt API error: %s", e.response.text)
            msg = f"API request failed: {e}"
            raise ReceiptAPIError(msg, status_code=e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error("Request error: %s", e)
            msg = f"Request failed: {e}"
            raise ReceiptAPIError(msg) from e

        if not expect_body or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON from {endpoint}: {e}"
            raise ReceiptAPIError(msg, status_code=response.status_code) from e

    async def upload_receipt(
        self, content: bytes, filename: str = "receipt.pdf"
    ) -> RemoteReceipt:
        """Upload a document; the server parses it and returns its record."""
        content_type = (
            "application/pdf" if filename.lower().endswith(".pdf") else "image/png"
        )
        data = await self._request(
            "POST",
            "receipts/upload/",
            files={"receipt_file": (filename, content, content_type)},
        )
        # Some deployments wrap the created record in {"receipt": {...}}
        if isinstance(data, dict) and isinstance(data.get("receipt"), dict):
            data = data["receipt"]
        receipt = self._decode(RemoteReceipt, data, "receipts/upload/")
        logger.info(
            "Uploaded receipt",
            extra={"receipt_number": receipt.transaction_number, "file_name": filename},
        )
        return receipt

    async def list_receipts(self) -> list[RemoteReceipt]:
        """Fetch the full remote receipt list."""
        data = await self._request("GET", "receipts/")
        # Accept a bare array as well as the {"receipts": [...]} envelope
        if isinstance(data, list):
            data = {"receipts": data}
        envelope = self._decode(RemoteReceiptList, data, "receipts/")
        logger.info("Fetched %d remote receipts", len(envelope.receipts))
        return envelope.receipts

    async def update_receipt(
        self, receipt_number: str, request: ReceiptUpdateRequest
    ) -> RemoteReceipt | None:
        """Push user edits for one receipt.

        Returns the server's echo when it sends one. A successful status does
        not guarantee the server applied every field.
        """
        endpoint = f"receipts/{receipt_number}/"
        data = await self._request(
            "PATCH", endpoint, json=request.model_dump(mode="json", exclude_none=True)
        )
        if data is None:
            return None
        return self._decode(RemoteReceipt, data, endpoint)

    async def delete_receipt(self, receipt_number: str) -> None:
        """Delete a receipt on the server."""
        await self._request(
            "DELETE", f"receipts/{receipt_number}/", expect_body=False
        )
        logger.info("Deleted remote receipt %s", receipt_number)

    def _decode(self, model: Any, data: Any, endpoint: str) -> Any:  # noqa: ANN401
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error("Unexpected response shape from %s: %s", endpoint, e)
            msg = f"Could not decode response from {endpoint}"
            raise ReceiptAPIError(msg) from e
