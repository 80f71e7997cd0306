"""CJ Dropshipping API client.

Returns the raw ``data`` member of each response. Mapping the loosely typed
payloads into the internal models is the job of the crawler and enricher.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from .errors import AuthenticationError, RateLimitError, UpstreamError

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://developers.cjdropshipping.com/api2.0/v1"

RATE_LIMIT_CODES = {1600200, 429}
AUTH_ERROR_CODES = {1600001, 1600003, 401}
RATE_LIMIT_MARKERS = ("too many requests", "qps limit", "rate limit")


class CJClient:
    """Thin requests-based client for the CJ product, stock and logistics APIs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 20.0,
        rate_limiter=None,
        acquire_timeout: Optional[float] = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("CJ_API_BASE") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.acquire_timeout = acquire_timeout
        self.session = session or requests.Session()
        self.token_manager = None

    def bind_token_manager(self, token_manager) -> None:
        self.token_manager = token_manager

    # --- authentication -------------------------------------------------

    def get_access_token(self, api_key: str) -> Dict[str, Any]:
        return self._send("POST", "/authentication/getAccessToken", json={"apiKey": api_key})

    def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        return self._send(
            "POST", "/authentication/refreshAccessToken", json={"refreshToken": refresh_token}
        )

    # --- catalog --------------------------------------------------------

    def list_by_category(self, category_id: str, page: int, page_size: int = 50) -> Dict[str, Any]:
        params = {
            "categoryId": category_id,
            "page": page,
            "size": min(page_size, 100),
            "features": "enable_category",
        }
        return self._authed("GET", "/product/listV2", params=params) or {}

    def search_by_keyword(self, keyword: str, page_size: int = 10) -> Dict[str, Any]:
        params = {
            "keyWord": keyword,
            "page": 1,
            "size": page_size,
            "features": "enable_description,enable_category",
        }
        return self._authed("GET", "/product/listV2", params=params) or {}

    def get_product_detail(self, product_id: str) -> Dict[str, Any]:
        return self._authed("GET", "/product/query", params={"pid": product_id}) or {}

    def get_variants(self, product_id: str) -> Any:
        return self._authed("GET", "/product/variant/query", params={"pid": product_id})

    def get_product_comments(self, product_id: str, page_size: int = 50) -> Dict[str, Any]:
        params = {"pid": product_id, "pageNum": 1, "pageSize": page_size}
        return self._authed("GET", "/product/productComments", params=params) or {}

    # --- throttled endpoints -------------------------------------------

    def get_inventory(self, product_id: str) -> Dict[str, Any]:
        self._throttle()
        return self._authed("GET", "/product/stock/getInventoryByPid", params={"pid": product_id}) or {}

    def get_variant_inventory(self, product_id: str) -> Any:
        self._throttle()
        return self._authed("GET", "/product/stock/queryByPid", params={"pid": product_id})

    def freight_calculate(
        self, variant_id: str, destination_country: str, quantity: int = 1, origin_country: str = "CN"
    ) -> List[Dict[str, Any]]:
        self._throttle()
        payload = {
            "startCountryCode": origin_country,
            "endCountryCode": destination_country,
            "products": [{"vid": variant_id, "quantity": quantity}],
        }
        return self._authed("POST", "/logistic/freightCalculate", json=payload) or []

    # --- transport ------------------------------------------------------

    def _throttle(self) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire(timeout=self.acquire_timeout)

    def _authed(self, method: str, path: str, **kwargs) -> Any:
        if self.token_manager is None:
            raise AuthenticationError("no token manager bound to CJClient")
        token = self.token_manager.get_token()
        try:
            return self._send(method, path, token=token, **kwargs)
        except AuthenticationError:
            LOGGER.warning("Access token rejected on %s, re-issuing and retrying once", path)
            self.token_manager.invalidate(token)
            token = self.token_manager.get_token()
            return self._send(method, path, token=token, **kwargs)

    def _send(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Any:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["CJ-Access-Token"] = token
        url = f"{self.base_url}{path}"
        LOGGER.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(f"{method} {path} failed: {e}") from e

        text = response.text or ""
        if response.status_code == 429 or (response.status_code >= 400 and _mentions_rate_limit(text)):
            raise RateLimitError(f"rate limited on {path}", status_code=response.status_code, code=429)
        if response.status_code == 401:
            raise AuthenticationError(f"unauthorized on {path}", status_code=401)
        if response.status_code >= 400:
            raise UpstreamError(
                f"{path} returned HTTP {response.status_code}: {text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(f"malformed payload from {path}") from e
        if not isinstance(body, dict):
            raise UpstreamError(f"unexpected payload type from {path}")

        return _unwrap(body, path)


def _mentions_rate_limit(text: str) -> bool:
    lowered = text[:500].lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def _unwrap(body: Dict[str, Any], path: str) -> Any:
    code = body.get("code")
    message = str(body.get("message") or "")
    try:
        code = int(code) if code is not None else 200
    except (TypeError, ValueError):
        code = 0
    if code in RATE_LIMIT_CODES or (code != 200 and _mentions_rate_limit(message)):
        raise RateLimitError(f"{path}: {message or 'rate limited'}", code=code)
    if code in AUTH_ERROR_CODES:
        raise AuthenticationError(f"{path}: {message or 'auth failed'}", code=code)
    if code != 200 or body.get("result") is False:
        raise UpstreamError(f"{path}: CJ error {code} {message}".strip(), code=code)
    return body.get("data")
