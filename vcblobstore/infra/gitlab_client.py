"""
GitLab API client infrastructure for vcblobstore.

Provides a clean abstraction over GitLab REST access:
- Authenticates every call with a private token
- Borrows HTTP sessions from a bounded, blocking pool
- Inspects the remaining-quota header after every call
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import requests

from ..context import OperationContext, check_context
from ..errors import ConfigError, NetworkError, ProtocolError, RateLimitHeaderError
from .client_pool import ClientPool, PooledSession, DEFAULT_POOL_SIZE, DEFAULT_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://gitlab.com/api/v4"

RATE_LIMIT_REMAINING_HEADER = "RateLimit-Remaining"
DEFAULT_RATE_LIMIT_LOW_WATER = 5


@dataclass
class RateLimitStatus:
    """Remaining request quota reported by the last response."""
    remaining: int
    low_water: int = DEFAULT_RATE_LIMIT_LOW_WATER

    @property
    def is_low(self) -> bool:
        """Check if the quota dropped below the low-water mark."""
        return self.remaining < self.low_water


def parse_rate_limit(
    headers: Mapping[str, str],
    low_water: int = DEFAULT_RATE_LIMIT_LOW_WATER,
) -> Optional[RateLimitStatus]:
    """
    Read the remaining quota from response headers.

    Returns:
        RateLimitStatus, or None if the header is absent

    Raises:
        RateLimitHeaderError: If the header is present but not an integer
    """
    raw = headers.get(RATE_LIMIT_REMAINING_HEADER)
    if raw is None or raw == "":
        return None
    try:
        remaining = int(raw)
    except ValueError:
        logger.debug(f"Response headers with malformed quota: {dict(headers)}")
        raise RateLimitHeaderError(RATE_LIMIT_REMAINING_HEADER, raw)
    return RateLimitStatus(remaining=remaining, low_water=low_water)


class GitLabClient:
    """
    GitLab API client sharing a pool of HTTP sessions.

    Example:
        client = GitLabClient(token)
        response = client.request("GET", "/namespaces", params={"owned_only": "true"})
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_BASE_URL,
        pool: Optional[ClientPool[requests.Session]] = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        rate_limit_low_water: int = DEFAULT_RATE_LIMIT_LOW_WATER,
    ):
        """
        Initialize GitLabClient.

        Args:
            access_token: GitLab private token
            base_url: API root, e.g. https://gitlab.com/api/v4
            pool: Session pool to use (built from pool_size/request_timeout if None)
            pool_size: Number of pooled sessions
            request_timeout: Per-request timeout in seconds
            rate_limit_low_water: Warn when fewer requests than this remain
        """
        if not access_token:
            raise ConfigError("No API token for GitLab repository")
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.rate_limit_low_water = rate_limit_low_water
        self.pool: ClientPool[requests.Session] = pool or ClientPool(
            lambda: PooledSession(timeout=request_timeout), size=pool_size
        )
        self._rate_limit_status: Optional[RateLimitStatus] = None

    @property
    def rate_limit_status(self) -> Optional[RateLimitStatus]:
        """Quota reported by the most recent response, if any."""
        return self._rate_limit_status

    def _update_rate_limit_from_headers(self, headers: Mapping[str, str], path: str) -> None:
        status = parse_rate_limit(headers, self.rate_limit_low_water)
        if status is None:
            return
        self._rate_limit_status = status
        if status.is_low:
            logger.warning(
                f"GitLab API rate limit low: {status.remaining} requests remaining (after {path})"
            )

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        ctx: Optional[OperationContext] = None,
    ) -> requests.Response:
        """
        Send an authenticated request with a pooled session.

        Args:
            method: HTTP method
            path: API path below base_url, already URL-escaped
            params: Query parameters
            json: JSON request body
            ctx: Checked before the request; its deadline caps the timeout

        Returns:
            The response, whatever its status code

        Raises:
            NetworkError: If the request could not be executed
            RateLimitHeaderError: If the quota header is malformed
        """
        check_context(ctx, f"{method} {path}")
        url = f"{self.base_url}{path}"
        headers = {
            "Content-Type": "application/json",
            "PRIVATE-TOKEN": self.access_token,
        }

        kwargs: Dict[str, Any] = {"params": params, "headers": headers}
        if json is not None:
            kwargs["json"] = json
        if ctx is not None and ctx.remaining() is not None:
            kwargs["timeout"] = max(0.001, min(self.request_timeout, ctx.remaining()))

        with self.pool.acquire(ctx) as session:
            logger.debug(f"Sending {method} {path}")
            try:
                response = session.request(method, url, **kwargs)
            except requests.RequestException as e:
                raise NetworkError(f"Failed to execute request {method} {path}: {e}") from e

        self._update_rate_limit_from_headers(response.headers, path)
        return response

    def get_json(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        ctx: Optional[OperationContext] = None,
        what: str = "resource",
    ) -> Any:
        """
        GET path and decode a 200 response as JSON.

        Raises:
            ProtocolError: On any other status or an undecodable body
        """
        response = self.request("GET", path, params=params, ctx=ctx)
        if response.status_code != 200:
            raise ProtocolError(f"Failed to get {what}", response.status_code, response.text)
        return decode_json(response, what)

    def get_namespace_id(self, namespace_path: str, ctx: Optional[OperationContext] = None) -> int:
        """
        Resolve an owned namespace path to its numeric id.

        Raises:
            ConfigError: If no owned namespace has that path
        """
        namespaces = self.get_json(
            "/namespaces",
            params={"owned_only": "true", "per_page": 100},
            ctx=ctx,
            what="GitLab namespaces",
        )
        for info in namespaces:
            if info.get("path") == namespace_path:
                return int(info["id"])
        raise ConfigError(f"No namespace found with path {namespace_path}")

    def close(self) -> None:
        self.pool.close()


def decode_json(response: requests.Response, what: str) -> Any:
    """Decode a response body, mapping malformed JSON to ProtocolError."""
    try:
        return response.json()
    except ValueError as e:
        raise ProtocolError(f"Failed to decode {what} response: {e}") from e
