"""
Base gateway for external providers (risk model, payment gateway).

A gateway tries its primary provider and then an optional fallback, each
attempt bounded by ``timeout_seconds``. Per-provider health is tracked and
a provider that keeps failing is skipped until its breaker cools down.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar
import asyncio
import logging
import time

from revcycle.core.enums import ProviderStatus

logger = logging.getLogger(__name__)

TRequest = TypeVar("TRequest")
TResponse = TypeVar("TResponse")
TProvider = TypeVar("TProvider", bound=Enum)


class GatewayError(Exception):
    """Base exception for gateway errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.original_error = original_error


class ProviderUnavailableError(GatewayError):
    """Provider could not be reached or is not configured."""


class ProviderTimeoutError(GatewayError):
    """Provider did not answer within its budget."""


class ProviderRateLimitError(GatewayError):
    """Provider asked us to back off (HTTP 429)."""


@dataclass
class GatewayConfig:
    """Provider selection and failure policy for one gateway."""

    primary_provider: str
    fallback_provider: Optional[str] = None
    timeout_seconds: float = 30.0
    rate_limit_retries: int = 1
    rate_limit_backoff_seconds: float = 0.5
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown_seconds: float = 60.0


@dataclass
class GatewayResult(Generic[TResponse]):
    """Outcome of ``BaseGateway.execute``; never raised, always returned."""

    success: bool
    data: Optional[TResponse] = None
    error: Optional[str] = None
    timed_out: bool = False
    provider_used: Optional[str] = None
    fallback_used: bool = False
    latency_ms: float = 0.0


@dataclass
class ProviderHealth:
    """Rolling health of one provider."""

    status: ProviderStatus = ProviderStatus.UNKNOWN
    consecutive_failures: int = 0
    request_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_latency_ms: Optional[float] = None
    _open_until: Optional[float] = None

    @property
    def is_circuit_open(self) -> bool:
        return self._open_until is not None and time.monotonic() < self._open_until

    def record_success(self, latency_ms: float) -> None:
        self.request_count += 1
        self.consecutive_failures = 0
        self.last_latency_ms = latency_ms
        self._open_until = None
        self.status = ProviderStatus.HEALTHY

    def record_failure(
        self, error: str, circuit_breaker_threshold: int, timeout_seconds: float
    ) -> None:
        """Count a failure; open the breaker for ``timeout_seconds`` at the threshold."""
        self.request_count += 1
        self.error_count += 1
        self.consecutive_failures += 1
        self.last_error = error

        if self.consecutive_failures >= circuit_breaker_threshold:
            self._open_until = time.monotonic() + timeout_seconds
            self.status = ProviderStatus.UNHEALTHY
        elif self.consecutive_failures * 2 >= circuit_breaker_threshold:
            self.status = ProviderStatus.DEGRADED


class BaseGateway(ABC, Generic[TRequest, TResponse, TProvider]):
    """
    Primary/fallback provider gateway.

    Subclasses name themselves, map provider strings to their enum and
    perform one request against one provider.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config
        self._health: dict[str, ProviderHealth] = {}

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        """Name of this gateway for logging."""

    @abstractmethod
    async def _execute_request(self, request: TRequest, provider: TProvider) -> TResponse:
        """Perform one request against ``provider``."""

    @abstractmethod
    def _parse_provider(self, provider_str: str) -> TProvider:
        """Map a configured provider name to the gateway's enum."""

    def get_provider_status(self, provider: str) -> ProviderHealth:
        return self._health.setdefault(provider, ProviderHealth())

    def get_all_status(self) -> dict[str, ProviderHealth]:
        return dict(self._health)

    def _candidates(self) -> list[tuple[str, bool]]:
        candidates = [(self.config.primary_provider, False)]
        if self.config.fallback_provider:
            candidates.append((self.config.fallback_provider, True))
        return candidates

    async def execute(self, request: TRequest) -> GatewayResult[TResponse]:
        """
        Run ``request`` on the first provider that answers in time.

        Provider failures do not raise; the returned result carries the
        joined error text and whether any attempt timed out.
        """
        started = time.perf_counter()
        result = GatewayResult[TResponse](success=False)
        errors: list[str] = []

        for name, is_fallback in self._candidates():
            health = self.get_provider_status(name)
            if health.is_circuit_open:
                logger.info(f"{self.gateway_name}: {name} circuit open, skipping")
                errors.append(f"{name}: circuit open")
                continue

            try:
                response = await asyncio.wait_for(
                    self._attempt(request, self._parse_provider(name)),
                    timeout=self.config.timeout_seconds,
                )
            except (asyncio.TimeoutError, ProviderTimeoutError):
                message = f"Timeout after {self.config.timeout_seconds}s"
                self._fail(health, message)
                result.timed_out = True
                errors.append(f"{name}: {message}")
                logger.warning(f"{self.gateway_name}: {name} timed out")
                continue
            except Exception as e:
                self._fail(health, str(e))
                errors.append(f"{name}: {e}")
                logger.warning(f"{self.gateway_name}: {name} failed: {e}")
                continue

            elapsed_ms = (time.perf_counter() - started) * 1000
            health.record_success(elapsed_ms)
            result.success = True
            result.data = response
            result.provider_used = name
            result.fallback_used = is_fallback
            result.latency_ms = elapsed_ms
            return result

        result.error = "; ".join(errors) or "No provider available"
        result.latency_ms = (time.perf_counter() - started) * 1000
        return result

    def _fail(self, health: ProviderHealth, error: str) -> None:
        health.record_failure(
            error,
            self.config.circuit_breaker_threshold,
            self.config.circuit_breaker_cooldown_seconds,
        )

    async def _attempt(self, request: TRequest, provider: TProvider) -> TResponse:
        """One provider call, backing off and retrying only on 429."""
        backoff = self.config.rate_limit_backoff_seconds
        attempts = max(self.config.rate_limit_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                return await self._execute_request(request, provider)
            except ProviderRateLimitError:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"{self.gateway_name}: rate limited, retry {attempt}/{attempts - 1} "
                    f"in {backoff:.1f}s"
                )
                await asyncio.sleep(backoff)
                backoff *= 2
        raise GatewayError("No attempt made")

    async def close(self) -> None:
        logger.info(f"{self.gateway_name} gateway closed")
