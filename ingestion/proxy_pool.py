"""
Round-robin pool of egress routes for outbound API requests
"""

from dataclasses import dataclass
from threading import Lock
from typing import Iterable, List, Optional
from core.config import settings
from core.logging import mask_url
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Route:
    """One egress path; url None means a direct connection"""
    url: Optional[str] = None

    @property
    def is_direct(self) -> bool:
        return self.url is None

    def __str__(self) -> str:
        return mask_url(self.url)


DIRECT_ROUTE = Route(None)


class ProxyPool:
    """
    Rotation policy over configured proxies.

    - next() hands out routes in round-robin order and is safe to call once
      per request from concurrent fetch tasks
    - force_rotate() moves the pointer off a route that just failed with a
      timeout, reset or 429
    - An empty pool always returns DIRECT_ROUTE
    """

    def __init__(self, urls: Optional[Iterable[str]] = None):
        routes: List[Route] = []
        for url in urls or []:
            url = (url or "").strip()
            if url and Route(url) not in routes:
                routes.append(Route(url))

        self._routes = routes
        self._index = 0
        self._lock = Lock()
        self.rotations = 0

        if routes:
            logger.info(f"Proxy pool: {len(routes)} routes ({', '.join(str(r) for r in routes)})")
        else:
            logger.info("Proxy pool empty, using direct connection")

    @classmethod
    def from_settings(cls) -> "ProxyPool":
        return cls(settings.proxy_urls)

    @property
    def routes(self) -> List[Route]:
        return list(self._routes) or [DIRECT_ROUTE]

    @property
    def size(self) -> int:
        """Number of distinct routes, the direct connection counting as one"""
        return max(1, len(self._routes))

    @property
    def is_parallel(self) -> bool:
        """Fan-out is only worth it with at least two egress paths"""
        return len(self._routes) >= 2

    @property
    def position(self) -> int:
        return self._index

    def next(self) -> Route:
        with self._lock:
            if not self._routes:
                return DIRECT_ROUTE
            route = self._routes[self._index % len(self._routes)]
            self._index = (self._index + 1) % len(self._routes)
            return route

    def force_rotate(self, failed: Optional[Route] = None) -> None:
        """
        Advance the rotation pointer one step outside the normal cycle.

        When the step lands on the failing route, which happens with two
        routes because next() has already moved past it, the pointer steps
        once more so that route is not retried straight away.
        """
        with self._lock:
            self.rotations += 1
            if self._routes:
                self._index = (self._index + 1) % len(self._routes)
                if len(self._routes) > 1 and self._routes[self._index] == failed:
                    self._index = (self._index + 1) % len(self._routes)
        logger.debug(f"Forced proxy rotation away from {failed or 'current route'} ({self.rotations} total)")
