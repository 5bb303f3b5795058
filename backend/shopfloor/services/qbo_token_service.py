# Overview: Service-layer operations for the QuickBooks OAuth token lifecycle.

"""
QuickBooks Token Manager

================================================================================
PURPOSE: Single owner of the company-wide QuickBooks Online OAuth credential
================================================================================

STATE MACHINE (per company / realm):
    DISCONNECTED -> CONNECTED -> REFRESHING -> CONNECTED
                                REFRESHING -> DISCONNECTED (refresh rejected)

RULES:
1. get_valid_access_token() never returns a token inside the near-expiry
   threshold (60s by default); it refreshes first.
2. A refresh that Intuit rejects (invalid_grant, revoked app, expired refresh
   token) deletes the stored row and raises ReauthorizationRequired. Retrying
   a provably dead credential is pointless; reconnecting creates a fresh row.
3. A network failure or timeout that survives the retry policy raises
   QuickBooksConnectionError (retryable) and keeps the row: the refresh token
   may still be good.
4. get_connection_status() never mutates and never exposes raw tokens.

CONCURRENCY:
- Concurrent refreshes are tolerated; the last write to the row wins (Intuit
  keeps the previous refresh token valid for a grace window after rotation).
- A per-realm in-process lock narrows the window so one worker usually
  performs the refresh and the others reuse its result.
================================================================================
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx
from flask import current_app

from ..errors import AuthenticationError, QuickBooksConnectionError, ReauthorizationRequired, ValidationError
from ..extensions import db
from ..models import QuickbooksToken
from ..time_utils import expires_in, utcnow
from .concurrency import RetryPolicy
from .sync_log import SyncEventLog, get_sync_log

logger = logging.getLogger(__name__)


AUTHORIZATION_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
ACCOUNTING_SCOPE = "com.intuit.quickbooks.accounting"

API_BASE_URLS = {
    "sandbox": "https://sandbox-quickbooks.api.intuit.com",
    "production": "https://quickbooks.api.intuit.com",
}

DEFAULT_REFRESH_THRESHOLD_SECONDS = 60
DEFAULT_TIMEOUT_SECONDS = 30.0
# Intuit defaults when a token response omits lifetimes.
DEFAULT_ACCESS_TOKEN_LIFETIME = 3600
DEFAULT_REFRESH_TOKEN_LIFETIME = 8726400

EXTENSION_KEY = "shopfloor.qbo_token_manager"


class QuickBooksTokenManager:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str = "",
        environment: str = "sandbox",
        refresh_threshold_seconds: int = DEFAULT_REFRESH_THRESHOLD_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.Client] = None,
        event_log: Optional[SyncEventLog] = None,
    ):
        if environment not in API_BASE_URLS:
            raise ValueError(f"Unknown QuickBooks environment '{environment}'")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.environment = environment
        self.refresh_threshold_seconds = refresh_threshold_seconds
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.http_client = http_client or httpx.Client(timeout=timeout)
        self._event_log = event_log
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config, *, http_client: Optional[httpx.Client] = None, event_log: Optional[SyncEventLog] = None) -> "QuickBooksTokenManager":
        return cls(
            client_id=config.get("QBO_CLIENT_ID", ""),
            client_secret=config.get("QBO_CLIENT_SECRET", ""),
            redirect_uri=config.get("QBO_REDIRECT_URI", ""),
            environment=config.get("QBO_ENVIRONMENT", "sandbox"),
            refresh_threshold_seconds=config.get("QBO_REFRESH_THRESHOLD_SECONDS", DEFAULT_REFRESH_THRESHOLD_SECONDS),
            timeout=config.get("QBO_REQUEST_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            retry_policy=RetryPolicy(
                max_attempts=config.get("QBO_RETRY_ATTEMPTS", 3),
                backoff_base=config.get("QBO_RETRY_BACKOFF", 0.5),
            ),
            http_client=http_client,
            event_log=event_log,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def event_log(self) -> SyncEventLog:
        return self._event_log or get_sync_log()

    @property
    def api_base_url(self) -> str:
        return API_BASE_URLS[self.environment]

    def current_token(self) -> Optional[QuickbooksToken]:
        return db.session.query(QuickbooksToken).order_by(QuickbooksToken.id.desc()).first()

    def is_connected(self) -> bool:
        token = self.current_token()
        return token is not None and token.refresh_token_expires_at > utcnow()

    def company_id(self) -> str:
        token = self.current_token()
        if token is None:
            raise ReauthorizationRequired("QuickBooks is not connected. Please connect to QuickBooks.")
        return token.realm_id

    def get_connection_status(self) -> dict:
        token = self.current_token()
        if token is None:
            return {
                "connected": False,
                "companyId": None,
                "connectedAt": None,
                "accessTokenExpiresAt": None,
                "refreshTokenExpiresAt": None,
                "lastRefreshedAt": None,
                "environment": self.environment,
            }
        status = token.to_status_dict()
        status["connected"] = token.refresh_token_expires_at > utcnow()
        status["environment"] = self.environment
        return status

    def _is_fresh(self, token: QuickbooksToken) -> bool:
        remaining = (token.access_token_expires_at - utcnow()).total_seconds()
        return remaining > self.refresh_threshold_seconds

    # ------------------------------------------------------------------
    # Token access / refresh
    # ------------------------------------------------------------------

    def get_valid_access_token(self) -> str:
        """
        Return an access token with more than the threshold left, refreshing
        first when needed.

        Raises:
            ReauthorizationRequired: not connected, refresh token expired, or
                refresh rejected (stored row deleted)
            QuickBooksConnectionError: refresh could not reach Intuit
        """
        token = self.current_token()
        if token is None:
            raise ReauthorizationRequired("QuickBooks is not connected. Please connect to QuickBooks.")

        if token.refresh_token_expires_at <= utcnow():
            self._invalidate(token, reason="refresh token expired")
            raise ReauthorizationRequired()

        if self._is_fresh(token):
            return token.access_token

        with self._lock_for(token.realm_id):
            # Another worker may have refreshed while we waited.
            db.session.refresh(token)
            if self._is_fresh(token):
                return token.access_token
            return self._refresh(token)

    def refresh_if_needed(self) -> dict:
        """Health-job hook: make sure the stored token is usable, report status."""
        self.get_valid_access_token()
        return self.get_connection_status()

    def _lock_for(self, realm_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(realm_id, threading.Lock())

    def _refresh(self, token: QuickbooksToken) -> str:
        """
        Exchange the refresh token for a new token set.

        RULES:
        - Intuit rejected the refresh (4xx, or a 200 without a usable token
          set): the row is deleted and ReauthorizationRequired is raised.
        - Intuit could not be reached (network, timeout, 429, 5xx after the
          retry policy): the row is KEPT and QuickBooksConnectionError is
          raised. Deliberate deviation: not every refresh failure
          invalidates the connection. The next call retries with the same
          refresh token.
        """
        realm_id = token.realm_id
        logger.info("Refreshing QuickBooks access token for realm %s", realm_id)
        try:
            payload = self.retry_policy.run(
                lambda: self._token_request({
                    "grant_type": "refresh_token",
                    "refresh_token": token.refresh_token,
                }),
                label="QuickBooks token refresh",
            )
            self._apply_token_payload(token, payload)
        except QuickBooksConnectionError as exc:
            self.event_log.error("token", "Token refresh could not reach QuickBooks", realmId=realm_id, error=exc.message)
            raise
        except AuthenticationError as exc:
            self._invalidate(token, reason=exc.message)
            raise ReauthorizationRequired(
                "QuickBooks token refresh failed. Please reconnect to QuickBooks.",
                details={"reason": exc.message},
            )

        token.last_refreshed_at = utcnow()
        db.session.commit()

        self.event_log.info("token", "Access token refreshed", realmId=realm_id)
        return token.access_token

    def _invalidate(self, token: QuickbooksToken, *, reason: str) -> None:
        realm_id = token.realm_id
        db.session.delete(token)
        db.session.commit()
        logger.warning("QuickBooks token for realm %s removed: %s", realm_id, reason)
        self.event_log.error("token", "Stored token removed; reconnection required", realmId=realm_id, reason=reason)

    def _token_request(self, data: dict) -> dict:
        try:
            response = self.http_client.post(
                TOKEN_URL,
                data=data,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise QuickBooksConnectionError(f"QuickBooks token request timed out: {exc}")
        except httpx.TransportError as exc:
            raise QuickBooksConnectionError(f"Could not reach QuickBooks token endpoint: {exc}")

        if response.status_code >= 500 or response.status_code == 429:
            raise QuickBooksConnectionError(f"QuickBooks token endpoint unavailable (HTTP {response.status_code})")
        if response.status_code >= 400:
            raise AuthenticationError(_oauth_error_message(response))
        try:
            payload = response.json()
        except ValueError:
            raise AuthenticationError("QuickBooks token endpoint returned an unreadable response")
        if not isinstance(payload, dict):
            raise AuthenticationError("QuickBooks token endpoint returned an unexpected response")
        return payload

    def _apply_token_payload(self, token: QuickbooksToken, payload: dict) -> None:
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthenticationError("QuickBooks token response is missing access_token")
        now = utcnow()
        token.access_token = access_token
        # Intuit rotates refresh tokens; keep the old one if none was sent.
        token.refresh_token = payload.get("refresh_token") or token.refresh_token
        token.token_type = payload.get("token_type") or token.token_type or "bearer"
        token.access_token_expires_at = expires_in(
            payload.get("expires_in", DEFAULT_ACCESS_TOKEN_LIFETIME), now=now
        )
        if payload.get("x_refresh_token_expires_in") is not None or token.refresh_token_expires_at is None:
            token.refresh_token_expires_at = expires_in(
                payload.get("x_refresh_token_expires_in", DEFAULT_REFRESH_TOKEN_LIFETIME), now=now
            )

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        if not self.client_id:
            raise ValidationError("QBO_CLIENT_ID is not configured")
        return str(httpx.URL(AUTHORIZATION_URL, params={
            "client_id": self.client_id,
            "response_type": "code",
            "scope": ACCOUNTING_SCOPE,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }))

    def store_tokens(self, payload: dict, *, realm_id: str, user_id: Optional[int] = None) -> QuickbooksToken:
        """Upsert the token set for a realm (OAuth callback)."""
        if not realm_id:
            raise ValidationError("realmId is required")
        if not payload.get("refresh_token"):
            raise ValidationError("Token payload is missing refresh_token")

        token = db.session.query(QuickbooksToken).filter_by(realm_id=realm_id).first()
        now = utcnow()
        if token is None:
            token = QuickbooksToken(realm_id=realm_id, connected_at=now)
            db.session.add(token)
        else:
            token.connected_at = now
            token.refresh_token_expires_at = None
        token.connected_by_user_id = user_id
        token.last_refreshed_at = None
        self._apply_token_payload(token, payload)
        db.session.commit()

        logger.info("QuickBooks connected for realm %s", realm_id)
        self.event_log.info("token", "QuickBooks connected", realmId=realm_id)
        return token

    def exchange_code(self, *, code: str, realm_id: str, user_id: Optional[int] = None) -> QuickbooksToken:
        if not code:
            raise ValidationError("Authorization code is required")
        payload = self.retry_policy.run(
            lambda: self._token_request({
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }),
            label="QuickBooks code exchange",
        )
        return self.store_tokens(payload, realm_id=realm_id, user_id=user_id)

    def disconnect(self) -> bool:
        """
        Revoke at Intuit (best effort) and delete the stored token set.

        Returns False when there was nothing to disconnect.
        """
        token = self.current_token()
        if token is None:
            return False

        try:
            response = self.http_client.post(
                REVOKE_URL,
                json={"token": token.refresh_token},
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                logger.warning("QuickBooks token revoke returned HTTP %s", response.status_code)
        except httpx.HTTPError as exc:
            logger.warning("QuickBooks token revoke failed: %s", exc)

        realm_id = token.realm_id
        db.session.delete(token)
        db.session.commit()
        self.event_log.info("token", "QuickBooks disconnected", realmId=realm_id)
        return True


def _oauth_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    description = body.get("error_description") if isinstance(body, dict) else None
    parts = [p for p in (error, description) if p]
    detail = ": ".join(parts) if parts else f"HTTP {response.status_code}"
    return f"QuickBooks rejected the token request ({detail})"


def get_token_manager() -> QuickBooksTokenManager:
    manager = current_app.extensions.get(EXTENSION_KEY)
    if manager is None:
        manager = QuickBooksTokenManager.from_config(current_app.config)
        current_app.extensions[EXTENSION_KEY] = manager
    return manager
