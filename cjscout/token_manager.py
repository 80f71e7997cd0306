"""Access token cache with refresh, issuance cool-down and shared persistence."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .errors import ConfigurationError, UpstreamError
from .models import Credential

LOGGER = logging.getLogger(__name__)

# Upstream defaults when the payload carries no expiry dates
ACCESS_TOKEN_TTL = 15 * 24 * 3600
REFRESH_TOKEN_TTL = 180 * 24 * 3600
AUTH_COOLDOWN_SECONDS = 300
SAFETY_MARGIN_SECONDS = 60


def _parse_expiry(value: Any, fallback: float) -> float:
    if value in (None, ""):
        return fallback
    if isinstance(value, (int, float)):
        # epoch milliseconds from some endpoints
        return float(value) / 1000 if value > 1e11 else float(value)
    try:
        return datetime.fromisoformat(str(value)).timestamp()
    except ValueError:
        return fallback


class TokenManager:
    """Hands out the upstream access token.

    ``auth_api`` provides ``get_access_token(api_key)`` and
    ``refresh_access_token(refresh_token)``, both returning the raw ``data``
    payload. ``store`` provides ``load()`` / ``save(credential)``.
    """

    def __init__(
        self,
        auth_api,
        store,
        api_key: Optional[str],
        cooldown_seconds: float = AUTH_COOLDOWN_SECONDS,
        safety_margin: float = SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.auth_api = auth_api
        self.store = store
        self.api_key = api_key
        self.cooldown_seconds = cooldown_seconds
        self.safety_margin = safety_margin
        self._clock = clock
        self._lock = threading.Lock()
        self._credential: Optional[Credential] = None
        self._rejected_token = ""

    def get_token(self) -> str:
        with self._lock:
            now = self._clock()
            credential = self._current(now)
            if credential.is_valid(now, self.safety_margin):
                return credential.access_token

            cooled_down = now - credential.last_auth_call_at >= self.cooldown_seconds

            if cooled_down and credential.can_refresh(now):
                try:
                    return self._refresh(credential, now)
                except UpstreamError as e:
                    LOGGER.warning("Token refresh failed, requesting a new token: %s", e)

            if cooled_down:
                try:
                    return self._issue(now)
                except UpstreamError as e:
                    if credential.access_token:
                        LOGGER.warning("Token issuance failed, using stale token: %s", e)
                        return credential.access_token
                    raise ConfigurationError(f"Could not obtain access token: {e}") from e

            if credential.access_token:
                LOGGER.warning("Token expired but auth cool-down active, using stale token")
                return credential.access_token

            wait = self.cooldown_seconds - (now - credential.last_auth_call_at)
            raise ConfigurationError(
                f"No access token available; auth cool-down ends in {int(wait)}s"
            )

    def invalidate(self, token: str) -> None:
        """Mark ``token`` as rejected so the next get_token re-issues."""
        with self._lock:
            self._rejected_token = token
            if self._credential and self._credential.access_token == token:
                self._credential.access_expiry = 0.0

    def _current(self, now: float) -> Credential:
        credential = self._credential
        if credential is None or not credential.is_valid(now, self.safety_margin):
            stored = self.store.load()
            if stored is not None:
                if stored.access_token and stored.access_token == self._rejected_token:
                    stored.access_expiry = 0.0
                if credential is None or stored.last_auth_call_at >= credential.last_auth_call_at:
                    credential = stored
        if credential is None:
            credential = Credential()
        self._credential = credential
        return credential

    def _refresh(self, credential: Credential, now: float) -> str:
        LOGGER.info("Refreshing access token")
        credential.last_auth_call_at = now
        data = self.auth_api.refresh_access_token(credential.refresh_token)
        return self._accept(data, now, fallback_refresh=credential.refresh_token)

    def _issue(self, now: float) -> str:
        if not self.api_key:
            raise ConfigurationError("CJ_API_KEY is not set")
        LOGGER.info("Requesting new access token")
        if self._credential is not None:
            self._credential.last_auth_call_at = now
        data = self.auth_api.get_access_token(self.api_key)
        return self._accept(data, now)

    def _accept(self, data: Dict[str, Any], now: float, fallback_refresh: str = "") -> str:
        token = (data or {}).get("accessToken")
        if not token:
            raise UpstreamError("auth response carried no access token")
        credential = Credential(
            access_token=str(token),
            access_expiry=_parse_expiry(data.get("accessTokenExpiryDate"), now + ACCESS_TOKEN_TTL),
            refresh_token=str(data.get("refreshToken") or fallback_refresh),
            refresh_expiry=_parse_expiry(data.get("refreshTokenExpiryDate"), now + REFRESH_TOKEN_TTL),
            last_auth_call_at=now,
        )
        self._credential = credential
        self.store.save(credential)
        return credential.access_token
