"""ReadinessGate — poll the capability registry until a provider is usable.

Two modes share one loop:

    any-ready    wait_until_ready()                      before exploration
    named        wait_until_ready(required_provider="X") before tracker posting

Fixed interval between polls, no backoff, bounded attempts. Timing out is a
normal outcome reported through ReadinessResult — the gate never raises, and a
registry call that fails counts as an empty snapshot for that attempt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from repolens.research.models import ProviderInfo, ReadinessResult
from repolens.tools.capabilities import CapabilityRegistry

logger = structlog.get_logger().bind(component="research.readiness")


class ReadinessGate:
    """Parameterized polling primitive over a CapabilityRegistry.

    Args:
        registry: Source of the ``{id → ProviderInfo}`` snapshot.
        sleep:    Awaitable sleep (inject a no-op in tests).
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._sleep = sleep

    async def _snapshot(self) -> dict[str, ProviderInfo]:
        try:
            return await self._registry.providers()
        except Exception as exc:
            logger.warning("readiness_snapshot_failed", error=str(exc))
            return {}

    async def wait_until_ready(
        self,
        required_provider: str | None = None,
        max_attempts: int = 30,
        interval: float = 1.0,
    ) -> ReadinessResult:
        """Poll until a matching provider reports ``ready`` or attempts run out."""
        max_attempts = max(1, max_attempts)
        wanted = required_provider.lower() if required_provider else None
        providers: dict[str, ProviderInfo] = {}
        match: ProviderInfo | None = None

        for attempt in range(1, max_attempts + 1):
            providers = await self._snapshot()

            if wanted is None:
                match = next((p for p in providers.values() if p.is_ready), None)
            else:
                named = [p for p in providers.values() if p.name.lower() == wanted]
                # A ready duplicate wins over a stale entry with the same name.
                match = next((p for p in named if p.is_ready), named[0] if named else None)

            if match is not None and match.is_ready:
                logger.info(
                    "provider_ready",
                    provider=match.name,
                    provider_id=match.id,
                    attempt=attempt,
                )
                return ReadinessResult(
                    ready=True,
                    reason=f"Provider '{match.name}' ready",
                    attempts=attempt,
                    provider_count=len(providers),
                    provider_id=match.id,
                    provider_name=match.name,
                    last_state=match.state,
                )

            logger.debug(
                "provider_not_ready",
                attempt=attempt,
                max_attempts=max_attempts,
                required=required_provider,
                providers=len(providers),
            )
            if attempt < max_attempts:
                await self._sleep(interval)

        result = self._timeout_result(required_provider, max_attempts, providers, match)
        logger.warning(
            "readiness_timeout",
            required=required_provider,
            attempts=max_attempts,
            reason=result.reason,
        )
        return result

    @staticmethod
    def _timeout_result(
        required_provider: str | None,
        attempts: int,
        providers: dict[str, ProviderInfo],
        match: ProviderInfo | None,
    ) -> ReadinessResult:
        if required_provider is None:
            if not providers:
                reason = f"No capability providers registered after {attempts} attempts"
                last_state = None
            else:
                last_state = ", ".join(p.state for p in providers.values())
                reason = (
                    f"No provider ready after {attempts} attempts, "
                    f"last state={last_state}"
                )
        elif match is None:
            reason = f"Provider '{required_provider}' not found after {attempts} attempts"
            last_state = None
        else:
            last_state = match.state
            reason = (
                f"Provider '{required_provider}' present but not ready after "
                f"{attempts} attempts, last state={last_state}"
            )

        return ReadinessResult(
            ready=False,
            reason=reason,
            attempts=attempts,
            provider_count=len(providers),
            provider_id=match.id if match else None,
            provider_name=match.name if match else None,
            last_state=last_state,
        )
