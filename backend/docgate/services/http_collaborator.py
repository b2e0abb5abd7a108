"""
DocGate Backend - HTTP Collaborator
===================================

What:  Forwards an admitted request to the document service that owns a
       route group, and turns its answer into a CollaboratorReply.
How:   One shared httpx.AsyncClient per process. Requests go to
       <base_url>/<group>/<subpath>. Idempotent methods are retried with
       tenacity on transport errors and 502/503/504; every method is guarded
       by a circuit breaker.
Who:   Built by the app factory for each route group when
       COLLABORATOR_BASE_URL is set.

Resilience Strategy:
    1. Tenacity retry (exponential backoff + jitter), GET/HEAD/PUT/DELETE only
    2. Circuit breaker per collaborator, fails fast while upstream is down
    3. Per-request timeout from settings.collaborator_timeout

Upstream 4xx answers are domain answers ("template not found") and are
passed through untouched. Upstream 5xx after retries, transport failures and
an open circuit all raise CollaboratorError.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docgate.exceptions import CircuitBreakerOpenError, CollaboratorError
from docgate.routing import ROUTE_GROUPS
from docgate.services.collaborator_base import (
    Collaborator,
    CollaboratorCall,
    CollaboratorReply,
    UnconfiguredCollaborator,
)

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE", "OPTIONS"})
TRANSIENT_STATUSES = frozenset({502, 503, 504})

# Request headers the document service needs; everything else stays here
FORWARDED_REQUEST_HEADERS = ("accept", "accept-language", "authorization", "user-agent")
# Response headers worth handing back to the client
FORWARDED_RESPONSE_HEADERS = ("content-disposition", "cache-control", "etag", "last-modified", "location")


class _TransientUpstreamError(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"upstream answered {status_code}")
        self.status_code = status_code


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    CLOSED → OPEN after `failure_threshold` consecutive failures;
    OPEN → HALF_OPEN once `recovery_timeout` has elapsed (one trial call);
    HALF_OPEN → CLOSED on success, back to OPEN on failure.

    State changes happen under a lock so concurrent requests see one
    consistent transition.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.opened_at: Optional[float] = None
        self._clock = clock
        self._lock = threading.Lock()

    def before_call(self) -> None:
        """Raise CircuitBreakerOpenError while the circuit is open."""
        with self._lock:
            if self.state != self.OPEN:
                return
            elapsed = self._clock() - (self.opened_at or 0.0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker for %s half-open after %.1fs", self.name, elapsed)
                self.state = self.HALF_OPEN
                return
            remaining = max(1, int(self.recovery_timeout - elapsed))
        raise CircuitBreakerOpenError(self.name, recovery_time=remaining)

    def record_success(self) -> None:
        with self._lock:
            if self.state == self.HALF_OPEN:
                logger.info("Circuit breaker for %s closed (upstream recovered)", self.name)
            self.failure_count = 0
            self.state = self.CLOSED
            self.opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state != self.OPEN:
                    logger.warning(
                        "Circuit breaker for %s opening after %d consecutive failures",
                        self.name,
                        self.failure_count,
                    )
                self.state = self.OPEN
                self.opened_at = self._clock()


# ══════════════════════════════════════════════════════════════════════════
# HTTP Collaborator
# ══════════════════════════════════════════════════════════════════════════

class HttpCollaborator(Collaborator):
    def __init__(
        self,
        name: str,
        base_url: str,
        client: httpx.AsyncClient,
        timeout: float = 30.0,
        max_attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 5.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.circuit_breaker = breaker or CircuitBreaker(name)

    async def aclose(self) -> None:
        await self.client.aclose()

    def url_for(self, call: CollaboratorCall) -> str:
        url = f"{self.base_url}/{self.name}"
        subpath = call.subpath.strip("/")
        if subpath:
            url = f"{url}/{subpath}"
        return url

    async def handle(self, call: CollaboratorCall) -> CollaboratorReply:
        self.circuit_breaker.before_call()

        attempts = self.max_attempts if call.method in IDEMPOTENT_METHODS else 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(
                initial=self.min_wait,
                max=self.max_wait,
                jitter=min(1.0, self.max_wait),
            ),
            retry=retry_if_exception_type((httpx.TransportError, _TransientUpstreamError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        started = time.perf_counter()
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send(call)
                    if response.status_code in TRANSIENT_STATUSES:
                        raise _TransientUpstreamError(response.status_code)
        except _TransientUpstreamError as e:
            self.circuit_breaker.record_failure()
            raise CollaboratorError(
                self.name,
                message=f"{self.name} service answered {e.status_code}",
                context={"status": e.status_code, "attempts": attempts},
            ) from e
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            raise CollaboratorError(
                self.name,
                message=f"{self.name} service unreachable: {e}",
                context={"error_type": type(e).__name__, "attempts": attempts},
            ) from e

        duration_ms = (time.perf_counter() - started) * 1000
        if response.status_code >= 500:
            self.circuit_breaker.record_failure()
            raise CollaboratorError(
                self.name,
                message=f"{self.name} service answered {response.status_code}",
                context={"status": response.status_code},
            )

        self.circuit_breaker.record_success()
        logger.info(
            "[%s] %s %s -> %d in %.0fms",
            call.request_id,
            call.method,
            self.url_for(call),
            response.status_code,
            duration_ms,
        )
        return self._to_reply(response)

    async def _send(self, call: CollaboratorCall) -> httpx.Response:
        headers: Dict[str, str] = {
            key: value for key, value in call.headers.items() if key.lower() in FORWARDED_REQUEST_HEADERS
        }
        if call.request_id:
            headers["X-Request-ID"] = call.request_id

        kwargs = {}
        if call.files:
            kwargs["files"] = [
                (f.field_name, (f.filename or "upload", f.content, f.media_type)) for f in call.files
            ]
            if call.form:
                kwargs["data"] = call.form
        elif call.form is not None:
            kwargs["data"] = call.form
        elif call.json is not None:
            kwargs["json"] = call.json
        elif call.body:
            kwargs["content"] = call.body
            if "content-type" in call.headers:
                headers["Content-Type"] = call.headers["content-type"]

        url = self.url_for(call)
        if call.query:
            url = f"{url}?{call.query}"

        return await self.client.request(
            call.method,
            url,
            headers=headers,
            timeout=self.timeout,
            **kwargs,
        )

    @staticmethod
    def _to_reply(response: httpx.Response) -> CollaboratorReply:
        media_type = response.headers.get("content-type")
        content = response.content
        if media_type and media_type.split(";", 1)[0].strip().endswith("json") and content:
            try:
                content = response.json()
            except ValueError:
                logger.warning("Upstream declared JSON but sent an unparseable body")
        headers = {
            key: response.headers[key] for key in FORWARDED_RESPONSE_HEADERS if key in response.headers
        }
        return CollaboratorReply(
            status_code=response.status_code,
            content=content,
            media_type=media_type,
            headers=headers,
        )


def build_collaborators(settings, client: Optional[httpx.AsyncClient] = None) -> Dict[str, Collaborator]:
    """
    One collaborator per route group: HTTP forwarding when a base URL is
    configured, UnconfiguredCollaborator otherwise.
    """
    if not settings.collaborator_base_url:
        return {group.name: UnconfiguredCollaborator(group.name) for group in ROUTE_GROUPS}

    client = client or httpx.AsyncClient(
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        trust_env=False,
    )
    return {
        group.name: HttpCollaborator(
            name=group.name,
            base_url=settings.collaborator_base_url,
            client=client,
            timeout=settings.collaborator_timeout,
            max_attempts=settings.retry_max_attempts,
            min_wait=settings.retry_min_wait,
            max_wait=settings.retry_max_wait,
            breaker=CircuitBreaker(
                group.name,
                failure_threshold=settings.cb_failure_threshold,
                recovery_timeout=settings.cb_recovery_timeout,
            ),
        )
        for group in ROUTE_GROUPS
    }
