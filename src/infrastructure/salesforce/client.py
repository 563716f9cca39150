"""Salesforce REST query client."""

import logging
from typing import Any

import httpx

from src.config.settings import Settings

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """Raised when the record store rejects or fails a query."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class SalesforceClient:
    """
    Read-only SOQL client over the Salesforce REST API.

    Usage:
        async with SalesforceClient(settings) as client:
            records = await client.query("SELECT Id FROM Account LIMIT 10")

    Queries run with the forwarded session token when one is given, so the
    store applies the caller's own sharing and field-level security.
    """

    def __init__(self, settings: Settings, access_token: str | None = None):
        """Initialize the client.

        Args:
            settings: Application settings with the instance URL and API version
            access_token: Caller session token (falls back to settings)
        """
        self.settings = settings
        self._access_token = access_token or settings.salesforce_access_token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "SalesforceClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self.settings.salesforce_instance_url:
                raise RecordStoreError("salesforce_instance_url is not configured in settings")
            self._client = httpx.AsyncClient(
                base_url=self.settings.salesforce_instance_url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(self.settings.salesforce_timeout),
            )
        return self._client

    async def query(self, soql: str) -> list[dict[str, Any]]:
        """
        Execute a SOQL query and return all records.

        Follows nextRecordsUrl until the result set is exhausted and strips
        the per-record `attributes` metadata.

        Raises:
            RecordStoreError: on HTTP errors, transport failures or timeouts
        """
        client = self._get_client()
        path = f"/services/data/v{self.settings.salesforce_api_version}/query"
        records: list[dict[str, Any]] = []

        try:
            response = await client.get(path, params={"q": soql})
            while True:
                payload = self._check(response)
                records.extend(_strip_attributes(r) for r in payload.get("records", []))
                next_url = payload.get("nextRecordsUrl")
                if payload.get("done", True) or not next_url:
                    break
                response = await client.get(next_url)
        except httpx.TimeoutException as e:
            logger.error(f"Record store query timed out: {e}")
            raise RecordStoreError("Record store query timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Record store transport error: {e}", exc_info=True)
            raise RecordStoreError(f"Record store unavailable: {e}") from e

        logger.info(f"Record store returned {len(records)} record(s)")
        return records

    @staticmethod
    def _check(response: httpx.Response) -> dict[str, Any]:
        if response.is_success:
            try:
                payload = response.json()
            except ValueError as e:
                logger.error(f"Record store returned a non-JSON body (HTTP {response.status_code})")
                raise RecordStoreError("Record store returned a non-JSON response") from e
            if not isinstance(payload, dict):
                logger.error(f"Record store returned an unexpected {type(payload).__name__} body")
                raise RecordStoreError("Record store returned an unexpected response shape")
            return payload

        message = f"Record store returned HTTP {response.status_code}"
        error_code = None
        try:
            body = response.json()
        except ValueError:
            # Gateways and maintenance pages answer with HTML
            body = None
        if isinstance(body, list) and body and isinstance(body[0], dict):
            message = body[0].get("message", message)
            error_code = body[0].get("errorCode")
        logger.error(f"Record store query failed: {error_code or ''} {message}")
        raise RecordStoreError(message, error_code)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _strip_attributes(record: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    for key, value in record.items():
        if key == "attributes":
            continue
        cleaned[key] = _strip_attributes(value) if isinstance(value, dict) else value
    return cleaned
