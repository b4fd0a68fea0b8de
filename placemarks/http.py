"""HTTP client with retry/backoff, request budgeting and async wrappers."""
from __future__ import annotations

import asyncio
import functools
import json
import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUEST_KINDS = ("catalog", "provider")


class NetworkFailure(RuntimeError):
    """Timeout, connectivity or server error on a single round trip."""


class RateLimitOrQuotaExceeded(NetworkFailure):
    pass


class BudgetExceededError(RateLimitOrQuotaExceeded):
    pass


class MalformedResponse(ValueError):
    pass


class InvariantViolation(RuntimeError):
    pass


@dataclass
class RequestMetrics:
    network_catalog: int = 0
    network_provider: int = 0
    failures_catalog: int = 0
    failures_provider: int = 0
    stale_drops_catalog: int = 0
    stale_drops_provider: int = 0

    @property
    def catalog_count(self) -> int:
        return self.network_catalog

    @property
    def provider_count(self) -> int:
        return self.network_provider

    def _bump(self, prefix: str, kind: str) -> None:
        if kind not in REQUEST_KINDS:
            raise ValueError(f"Unknown request kind: {kind}")
        attr = f"{prefix}_{kind}"
        setattr(self, attr, getattr(self, attr) + 1)

    def inc_network(self, kind: str) -> None:
        self._bump("network", kind)

    def inc_failure(self, kind: str) -> None:
        self._bump("failures", kind)

    def inc_stale_drop(self, kind: str) -> None:
        self._bump("stale_drops", kind)


class RequestBudget:
    def __init__(
        self,
        max_catalog: int,
        max_provider: int,
        on_consume: Optional[Callable[[str, int, int], None]] = None,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.max_catalog = max_catalog
        self.max_provider = max_provider
        self.on_consume = on_consume
        self.metrics = metrics
        self._catalog_count = 0
        self._provider_count = 0

    @property
    def catalog_count(self) -> int:
        if self.metrics is not None:
            return int(self.metrics.network_catalog)
        return self._catalog_count

    @property
    def provider_count(self) -> int:
        if self.metrics is not None:
            return int(self.metrics.network_provider)
        return self._provider_count

    def consume(self, kind: str) -> None:
        if kind == "catalog":
            if self.catalog_count >= self.max_catalog:
                raise BudgetExceededError(
                    f"Catalog request budget exceeded: {self.catalog_count} >= {self.max_catalog}"
                )
            if self.metrics is not None:
                self.metrics.inc_network("catalog")
            else:
                self._catalog_count += 1
        elif kind == "provider":
            if self.provider_count >= self.max_provider:
                raise BudgetExceededError(
                    f"Provider request budget exceeded: {self.provider_count} >= {self.max_provider}"
                )
            if self.metrics is not None:
                self.metrics.inc_network("provider")
            else:
                self._provider_count += 1
        else:
            raise ValueError(f"Unknown budget kind: {kind}")
        if self.on_consume:
            self.on_consume(kind, self.catalog_count, self.provider_count)


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking call in the loop's default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


class HttpClient:
    def __init__(
        self,
        timeout: int = 15,
        retry_max: int = 1,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        default_params: Optional[Dict[str, Any]] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.default_params = dict(default_params or {})
        self.default_headers = dict(default_headers or {})
        # requests.Session is not documented as thread-safe; async calls run on executor threads.
        self.session_factory: Callable[[], Any] = requests.Session
        self._local = threading.local()
        self._sessions: List[Any] = []
        self._sessions_lock = threading.Lock()

    @property
    def session(self) -> Any:
        """Session owned by the calling thread."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = self.session_factory()
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def close(self) -> None:
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()

    def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return self._request("GET", url, params=params, extra_headers=extra_headers)

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return self._request("POST", url, params=params, body=body, extra_headers=extra_headers)

    async def aget_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return await run_blocking(self.get_json, url, params=params, extra_headers=extra_headers)

    async def apost_json(
        self,
        url: str,
        body: Dict[str, Any],
        params: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return await run_blocking(
            self.post_json, url, body, params=params, extra_headers=extra_headers
        )

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        headers.update(self.default_headers)
        if extra_headers:
            headers.update(extra_headers)
        query = dict(self.default_params)
        if params:
            query.update({k: v for k, v in params.items() if v is not None})

        payload = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            payload = json.dumps(body)

        for attempt in range(1, self.retry_max + 1):
            try:
                if method == "GET":
                    resp = self.session.get(url, params=query, headers=headers, timeout=self.timeout)
                else:
                    resp = self.session.post(
                        url, data=payload, params=query, headers=headers, timeout=self.timeout
                    )
            except requests.RequestException as exc:
                if attempt >= self.retry_max:
                    raise NetworkFailure(f"{method} {url} failed: {exc}") from exc
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                try:
                    return resp.json()
                except ValueError as exc:
                    logger.error("Non-JSON response from %s", url)
                    raise MalformedResponse(f"Non-JSON response from {url}") from exc

            if status in (429, 500, 502, 503, 504):
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    if status == 429:
                        raise RateLimitOrQuotaExceeded(f"HTTP 429 from {url}")
                    raise NetworkFailure(f"HTTP {status} from {url}")
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            raise NetworkFailure(f"HTTP {status} from {url}")

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        time.sleep(delay)
        return True
