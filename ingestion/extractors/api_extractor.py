"""
Rate-limited fetcher for the GlobalKZ API.

This module wraps single GET requests with:
- Round-robin proxy selection through ProxyPool
- A bounded retry loop with exponential backoff for timeouts, resets and 5xx
- 429 handling: forced proxy rotation plus a cooldown sleep
- A small inter-request delay after each success

Failures are returned as tagged FetchResult values instead of raised, so the
controller decides what a failed element means for its window.
"""

import asyncio
import enum
import httpx
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional
from core.config import settings
from ingestion.proxy_pool import ProxyPool, Route
import logging

logger = logging.getLogger(__name__)

USER_AGENT = "kz-records-ingestion/1.0"


class FetchOutcome(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass(frozen=True)
class FetchRequest:
    """
    One GET against the API.

    Attributes:
        resource: Resource kind ("records", "bans", ...)
        path: Path relative to the API base URL
        params: Query parameters (limit/offset for paged resources)
        element: Cursor element this request stands for (record id or offset)
    """
    resource: str
    path: str
    params: Dict[str, Any] = field(default_factory=dict)
    element: Optional[int] = None


@dataclass
class FetchResult:
    request: FetchRequest
    outcome: FetchOutcome
    payload: Any = None
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == FetchOutcome.OK


@dataclass
class FetchStats:
    """Counters shared by every fetch of a run"""
    api_calls: int = 0
    rate_limit_hits: int = 0
    retries: int = 0
    timeouts: int = 0
    errors: int = 0
    not_found: int = 0


def default_client_factory(route: Route, timeout: float) -> httpx.AsyncClient:
    """One client per route so each proxy keeps its own connection pool"""
    return httpx.AsyncClient(
        proxy=route.url,
        timeout=timeout,
        headers={"Accept": "application/json", "User-Agent": USER_AGENT},
    )


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class RateLimitedFetcher:
    """
    Fetch single API resources through a ProxyPool.

    Attributes:
        max_attempts: Attempts per request, retries included (default: MAX_RETRIES)
        retry_delay: Base of the exponential backoff in seconds
        rate_limit_cooldown: Sleep after a 429 in seconds
        request_delay: Delay after a successful request; divided by the
            pool size when several proxies share the load
    """

    def __init__(
        self,
        pool: ProxyPool,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        rate_limit_cooldown: Optional[float] = None,
        request_delay: Optional[float] = None,
        client_factory: Callable[[Route, float], httpx.AsyncClient] = default_client_factory,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        stats: Optional[FetchStats] = None
    ):
        self.pool = pool
        self.base_url = (base_url or settings.GOKZ_API_URL).rstrip("/")
        self.timeout = settings.REQUEST_TIMEOUT if timeout is None else timeout
        self.max_attempts = max(1, settings.MAX_RETRIES if max_attempts is None else max_attempts)
        self.retry_delay = settings.RETRY_DELAY if retry_delay is None else retry_delay
        self.rate_limit_cooldown = (
            settings.RATE_LIMIT_COOLDOWN if rate_limit_cooldown is None else rate_limit_cooldown
        )
        self.request_delay = settings.REQUEST_DELAY if request_delay is None else request_delay
        self.stats = stats or FetchStats()

        self._client_factory = client_factory
        self._sleep = sleep
        self._clients: Dict[Route, httpx.AsyncClient] = {}

    @property
    def success_delay(self) -> float:
        if self.pool.is_parallel:
            return self.request_delay / self.pool.size
        return self.request_delay

    def backoff(self, attempt: int) -> float:
        return self.retry_delay * (2 ** (attempt - 1))

    def _client(self, route: Route) -> httpx.AsyncClient:
        client = self._clients.get(route)
        if client is None:
            client = self._client_factory(route, self.timeout)
            self._clients[route] = client
        return client

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    async def __aenter__(self) -> "RateLimitedFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def fetch(self, request: FetchRequest) -> FetchResult:
        """
        Fetch one resource.

        Returns:
            FetchResult tagged OK (payload set), NOT_FOUND, RATE_LIMITED
            (429 on every attempt) or ERROR (retries exhausted, other 4xx,
            or an unparseable body)
        """
        url = f"{self.base_url}/{request.path.lstrip('/')}"
        status_code: Optional[int] = None
        last_error: Optional[str] = None

        for attempt in range(1, self.max_attempts + 1):
            route = self.pool.next()
            client = self._client(route)
            self.stats.api_calls += 1
            has_next = attempt < self.max_attempts

            try:
                response = await client.get(url, params=request.params or None, timeout=self.timeout)
            except httpx.TimeoutException as e:
                self.stats.timeouts += 1
                last_error = f"timeout via {route}: {type(e).__name__}"
            except httpx.RequestError as e:
                # Resets, proxy failures, undecodable bodies and redirect loops
                last_error = f"request error via {route}: {type(e).__name__}: {e}"
            else:
                status_code = response.status_code

                if status_code == 404:
                    self.stats.not_found += 1
                    return FetchResult(request, FetchOutcome.NOT_FOUND, status_code=404, attempts=attempt)

                if status_code == 429:
                    self.pool.force_rotate(route)
                    self.stats.rate_limit_hits += 1
                    if not has_next:
                        logger.warning(f"Rate limited on {request.path} after {attempt} attempts")
                        return FetchResult(
                            request, FetchOutcome.RATE_LIMITED,
                            status_code=429, attempts=attempt, error="rate limited"
                        )
                    wait = max(self.rate_limit_cooldown, _retry_after(response) or 0.0)
                    logger.warning(
                        f"Rate limited (429) on {request.path} via {route}. "
                        f"Rotating proxy, retrying in {wait:.0f}s (attempt {attempt}/{self.max_attempts})"
                    )
                    self.stats.retries += 1
                    await self._sleep(wait)
                    continue

                if status_code >= 500:
                    last_error = f"server error {status_code}"
                elif status_code >= 400:
                    self.stats.errors += 1
                    logger.error(f"Request {request.path} failed with HTTP {status_code}, not retrying")
                    return FetchResult(
                        request, FetchOutcome.ERROR,
                        status_code=status_code, attempts=attempt, error=f"HTTP {status_code}"
                    )
                else:
                    try:
                        payload = response.json()
                    except ValueError as e:
                        self.stats.errors += 1
                        logger.error(f"Invalid JSON from {request.path}: {e}")
                        return FetchResult(
                            request, FetchOutcome.ERROR,
                            status_code=status_code, attempts=attempt, error="invalid JSON"
                        )
                    if self.success_delay > 0:
                        await self._sleep(self.success_delay)
                    return FetchResult(
                        request, FetchOutcome.OK,
                        payload=payload, status_code=status_code, attempts=attempt
                    )

            # Timeout, reset or 5xx
            self.pool.force_rotate(route)
            if not has_next:
                break
            delay = self.backoff(attempt)
            logger.warning(
                f"{last_error} on {request.path}. "
                f"Retrying in {delay:.1f}s (attempt {attempt}/{self.max_attempts})"
            )
            self.stats.retries += 1
            await self._sleep(delay)

        self.stats.errors += 1
        logger.error(f"Giving up on {request.path} after {self.max_attempts} attempts: {last_error}")
        return FetchResult(
            request, FetchOutcome.ERROR,
            status_code=status_code, attempts=self.max_attempts, error=last_error
        )
