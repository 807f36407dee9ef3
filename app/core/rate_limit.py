"""Rate limiting policies, admission guard and ASGI middleware.

This module wires the rate limiting adapter into the HTTP layer.

Rate limiting strategy:
- Two policies: a lenient general policy for all traffic and a strict auth
  policy for authentication paths that refunds successful (2xx) requests.
- Keys are the client address, or "<address>:<user_id>" when an identity was
  resolved earlier in the middleware chain.
- Exempt paths (e.g. /health) never touch any window.
- The most specific policy is evaluated first and can deny before the general
  policy is consulted; when it allows, the general policy still counts.

The ``RateLimitGuard`` owning all window stores is created by the application
factory and stored on ``app.state``; nothing here is process-global.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from app.adapters.rate_limit.in_memory import InMemoryWindowRateLimiter
from app.core.config import RateLimitSettings
from app.core.errors import AppError, ErrorKind
from app.core.exception_handlers import app_error_record, build_error_response

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Too many requests, please try again later"


def parse_path_list(paths: str | None) -> tuple[str, ...]:
    """Parse comma-separated paths, preserving order and dropping duplicates.

    Examples:
        >>> parse_path_list("/auth, /login ,/auth")
        ('/auth', '/login')
        >>> parse_path_list(None)
        ()
    """
    if not paths:
        return ()
    parsed: dict[str, None] = {}
    for path in paths.split(","):
        path = path.strip()
        if path:
            parsed[path] = None
    return tuple(parsed)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Quota applied to the paths it matches.

    Attributes:
        name: Policy label used in logs.
        max_requests: Requests allowed per window.
        window_ms: Window duration in milliseconds.
        skip_successful_requests: Refund requests answered with a 2xx status.
        path_prefixes: Paths guarded by this policy; empty means every path.
    """

    name: str
    max_requests: int
    window_ms: int
    skip_successful_requests: bool = False
    path_prefixes: tuple[str, ...] = ()

    def applies_to(self, path: str) -> bool:
        if not self.path_prefixes:
            return True
        for prefix in self.path_prefixes:
            base = prefix.rstrip("/")
            if path == prefix or path == base or path.startswith(base + "/"):
                return True
        return False

    @property
    def specificity(self) -> int:
        return max((len(prefix) for prefix in self.path_prefixes), default=0)


@dataclass(frozen=True)
class Grant:
    """One policy's verdict for a request."""

    policy: RateLimitPolicy
    limiter: AbstractRateLimiter
    result: RateLimitResult


@dataclass
class Admission:
    """Outcome of evaluating every applicable policy for one request."""

    key: str
    grants: list[Grant] = field(default_factory=list)
    denial: Grant | None = None

    @property
    def allowed(self) -> bool:
        return self.denial is None

    def most_constrained(self) -> Grant | None:
        if self.denial is not None:
            return self.denial
        return min(self.grants, key=lambda grant: grant.result.remaining, default=None)

    def to_error(self) -> AppError:
        retry_after = 0
        if self.denial is not None:
            retry_after = self.denial.result.retry_after_seconds or 0
        return AppError(ErrorKind.RATE_LIMITED, RATE_LIMITED_MESSAGE, retry_after=retry_after)


class RateLimitGuard:
    """Owns one window store per policy and evaluates them in order."""

    def __init__(
        self,
        policies: Iterable[RateLimitPolicy],
        *,
        exempt_paths: Iterable[str] = (),
        clock: Callable[[], float] = time.monotonic,
        limiter_factory: Callable[[RateLimitPolicy], AbstractRateLimiter] | None = None,
    ) -> None:
        self.clock = clock
        self._exempt_paths = frozenset(exempt_paths)
        factory = limiter_factory or self._in_memory_limiter
        # Most specific first; sorted() is stable so ties keep configuration order.
        ordered = sorted(policies, key=lambda policy: policy.specificity, reverse=True)
        self._policies: list[tuple[RateLimitPolicy, AbstractRateLimiter]] = [
            (policy, factory(policy)) for policy in ordered
        ]
        self._cleanup_task: asyncio.Task[None] | None = None

    def _in_memory_limiter(self, policy: RateLimitPolicy) -> AbstractRateLimiter:
        return InMemoryWindowRateLimiter(
            limit=policy.max_requests,
            window_ms=policy.window_ms,
            clock=self.clock,
        )

    @property
    def policies(self) -> Sequence[RateLimitPolicy]:
        return [policy for policy, _ in self._policies]

    def limiter_for(self, name: str) -> AbstractRateLimiter:
        for policy, limiter in self._policies:
            if policy.name == name:
                return limiter
        raise KeyError(name)

    def is_exempt(self, path: str) -> bool:
        return path in self._exempt_paths

    def admit(self, key: str, path: str) -> Admission:
        """Count the request against every policy matching ``path``.

        Stops at the first denial; less specific policies are then not
        consulted and their counters do not move.
        """
        admission = Admission(key=key)
        for policy, limiter in self._policies:
            if not policy.applies_to(path):
                continue
            grant = Grant(policy=policy, limiter=limiter, result=limiter.consume(key))
            if not grant.result.allowed:
                admission.denial = grant
                return admission
            admission.grants.append(grant)
        return admission

    def settle(self, admission: Admission, status_code: int) -> None:
        """Refund skip-successful grants once a response completed with 2xx."""
        if not 200 <= status_code < 300:
            return
        for grant in admission.grants:
            if grant.policy.skip_successful_requests:
                grant.limiter.release(admission.key, grant.result.window_start)

    def seconds_until(self, moment: float) -> int:
        return max(0, int(math.ceil(moment - self.clock())))

    def evict_expired(self) -> int:
        return sum(limiter.evict_expired() for _, limiter in self._policies)

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            evicted = self.evict_expired()
            if evicted:
                logger.debug("rate_limit.evicted", extra={"evicted": evicted})

    def start_cleanup(self, interval_seconds: float) -> None:
        """Start periodic eviction of idle windows on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(interval_seconds), name="rate-limit-cleanup"
            )

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


def build_rate_limit_guard(
    cfg: RateLimitSettings, *, clock: Callable[[], float] = time.monotonic
) -> RateLimitGuard:
    """Create the general and auth policies from settings."""

    policies = [
        RateLimitPolicy(
            name="general",
            max_requests=cfg.max_requests,
            window_ms=cfg.window_ms,
        )
    ]
    auth_paths = parse_path_list(cfg.auth_paths)
    if auth_paths:
        policies.append(
            RateLimitPolicy(
                name="auth",
                max_requests=cfg.auth_max_requests,
                window_ms=cfg.auth_window_ms,
                skip_successful_requests=True,
                path_prefixes=auth_paths,
            )
        )
    return RateLimitGuard(policies, exempt_paths=parse_path_list(cfg.exempt_paths), clock=clock)


def _client_address(request: Request, *, trust_forwarded_for: bool) -> str:
    if trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def build_rate_limit_key(request: Request, *, trust_forwarded_for: bool = False) -> str:
    """Build the limiter key for the current request.

    Authenticated callers get their own quota even when they share an address
    (NAT, proxies); anonymous callers are bounded by address alone.
    """

    address = _client_address(request, trust_forwarded_for=trust_forwarded_for)
    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return f"{address}:{user_id}"
    return address


def _hash_limiter_key(key: str) -> str:
    """Hash the rate limit key for logging without exposing client identity."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class RateLimitMiddleware:
    """ASGI middleware enforcing a ``RateLimitGuard``.

    Denied requests get the 429 response directly, before any route runs.
    Allowed requests are settled only after the final body chunk was sent, so
    failed, cancelled or disconnected requests keep their count.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        guard: RateLimitGuard,
        include_headers: bool = True,
        trust_forwarded_for: bool = False,
    ) -> None:
        self.app = app
        self.guard = guard
        self.include_headers = include_headers
        self.trust_forwarded_for = trust_forwarded_for

    def _headers_for(self, grant: Grant) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(grant.result.limit),
            "RateLimit-Remaining": str(grant.result.remaining),
            "RateLimit-Reset": str(self.guard.seconds_until(grant.result.reset_at)),
        }

    async def _reject(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        request: Request,
        admission: Admission,
        denial: Grant,
    ) -> None:
        error = admission.to_error()
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "policy": denial.policy.name,
                "key_hash": _hash_limiter_key(admission.key),
                "limit": denial.result.limit,
                "window_ms": denial.policy.window_ms,
                "retry_after_s": error.retry_after,
                "request_path": request.url.path,
                "request_method": request.method,
            },
        )
        response = build_error_response(app_error_record(error))
        if self.include_headers:
            response.headers.update(self._headers_for(denial))
        await response(scope, receive, send)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path
        if self.guard.is_exempt(path):
            await self.app(scope, receive, send)
            return

        key = build_rate_limit_key(request, trust_forwarded_for=self.trust_forwarded_for)
        admission = self.guard.admit(key, path)
        if admission.denial is not None:
            await self._reject(scope, receive, send, request, admission, admission.denial)
            return

        header_grant = admission.most_constrained() if self.include_headers else None
        status_code: int | None = None
        completed = False

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, completed
            if message["type"] == "http.response.start":
                status_code = message["status"]
                if header_grant is not None:
                    headers = MutableHeaders(scope=message)
                    for name, value in self._headers_for(header_grant).items():
                        headers[name] = value
            await send(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                completed = True

        await self.app(scope, receive, send_wrapper)

        if completed and status_code is not None:
            self.guard.settle(admission, status_code)
