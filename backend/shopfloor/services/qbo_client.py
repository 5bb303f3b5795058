# Overview: Thin httpx wrapper for the QuickBooks Online accounting API.

from __future__ import annotations

import logging
from typing import Optional

import httpx
from flask import current_app

from ..errors import AuthenticationError, QuickBooksApiError, QuickBooksConnectionError
from .concurrency import RetryPolicy
from .qbo_token_service import QuickBooksTokenManager, get_token_manager

logger = logging.getLogger(__name__)


MINOR_VERSION = 65
QUERY_PAGE_SIZE = 1000
EXTENSION_KEY = "shopfloor.qbo_client"


class QuickBooksClient:
    """
    Authenticated reads against /v3/company/{realm}.

    ERROR MAPPING:
    - timeout / transport failure, HTTP 429, HTTP 5xx -> QuickBooksConnectionError (retried)
    - HTTP 401 / 403                                  -> AuthenticationError
    - other HTTP errors                               -> QuickBooksApiError with the Fault text
    """

    def __init__(
        self,
        token_manager: QuickBooksTokenManager,
        *,
        http_client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.token_manager = token_manager
        self.timeout = timeout if timeout is not None else token_manager.timeout
        self.http_client = http_client or token_manager.http_client
        self.retry_policy = retry_policy or token_manager.retry_policy

    def _company_url(self, path: str) -> str:
        realm_id = self.token_manager.company_id()
        return f"{self.token_manager.api_base_url}/v3/company/{realm_id}/{path.lstrip('/')}"

    def _send(self, method: str, path: str, params: Optional[dict] = None) -> dict:
        access_token = self.token_manager.get_valid_access_token()
        query = {"minorversion": MINOR_VERSION}
        query.update(params or {})
        try:
            response = self.http_client.request(
                method,
                self._company_url(path),
                params=query,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise QuickBooksConnectionError(f"QuickBooks request timed out: {exc}")
        except httpx.TransportError as exc:
            raise QuickBooksConnectionError(f"Could not reach QuickBooks: {exc}")

        if response.status_code in (401, 403):
            raise AuthenticationError(
                "QuickBooks rejected the access token",
                suggestions=["Reconnect to QuickBooks"],
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise QuickBooksConnectionError(f"QuickBooks unavailable (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise QuickBooksApiError(_fault_message(response), http_status=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise QuickBooksApiError("QuickBooks returned a non-JSON response", http_status=response.status_code)

    def request(self, method: str, path: str, params: Optional[dict] = None) -> dict:
        return self.retry_policy.run(
            lambda: self._send(method, path, params),
            label=f"QuickBooks {method} {path}",
        )

    def get_entity(self, entity: str, entity_id: str) -> dict:
        data = self.request("GET", f"{entity.lower()}/{entity_id}")
        payload = data.get(entity)
        if not isinstance(payload, dict):
            raise QuickBooksApiError(f"QuickBooks response did not contain a {entity}")
        return payload

    def query(self, statement: str, entity: str) -> list[dict]:
        data = self.request("GET", "query", {"query": statement})
        return list((data.get("QueryResponse") or {}).get(entity) or [])

    def query_all(self, entity: str, *, where: Optional[str] = None, page_size: int = QUERY_PAGE_SIZE) -> list[dict]:
        """Page through SELECT * FROM <entity> using STARTPOSITION/MAXRESULTS."""
        results: list[dict] = []
        start = 1
        while True:
            statement = f"SELECT * FROM {entity}"
            if where:
                statement += f" WHERE {where}"
            statement += f" STARTPOSITION {start} MAXRESULTS {page_size}"
            page = self.query(statement, entity)
            results.extend(page)
            if len(page) < page_size:
                return results
            start += page_size


def _fault_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"QuickBooks API error (HTTP {response.status_code})"
    errors = ((body or {}).get("Fault") or {}).get("Error") or []
    if errors and isinstance(errors[0], dict):
        first = errors[0]
        message = first.get("Message") or "QuickBooks API error"
        detail = first.get("Detail")
        return f"{message}: {detail}" if detail else message
    return f"QuickBooks API error (HTTP {response.status_code})"


def get_client() -> QuickBooksClient:
    client = current_app.extensions.get(EXTENSION_KEY)
    if client is None:
        client = QuickBooksClient(get_token_manager())
        current_app.extensions[EXTENSION_KEY] = client
    return client
