import asyncio
import logging

from .errors import ChainExhausted, FailureCategory, StrategyFailure
from .models import RenderAttempt
from .settings import TimeoutPolicy
from .strategies import RenderRequest, RenderStrategy

logger = logging.getLogger(__name__)


class RenderChain:
    """Tries strategies one after another and stops at the first success.

    Strategies never run in parallel. Each gets its own time slice from the
    TimeoutPolicy so a slow backend cannot starve the ones after it.
    """

    def __init__(self, strategies: list[RenderStrategy], policy: TimeoutPolicy | None = None) -> None:
        if not strategies:
            raise ValueError("a render chain needs at least one strategy")
        self._strategies = list(strategies)
        self._policy = policy or TimeoutPolicy()

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._strategies]

    async def render_with_fallback(self, request: RenderRequest, *, deadline: float | None = None) -> RenderAttempt:
        """Return the first successful attempt or raise ChainExhausted.

        ``deadline`` is in event-loop time; without one, slices are not
        capped by a job budget.
        """
        loop = asyncio.get_running_loop()
        names = self.names
        failures: list[StrategyFailure] = []
        for i, strategy in enumerate(self._strategies):
            remaining = float("inf") if deadline is None else deadline - loop.time()
            if remaining <= 0:
                failures.append(StrategyFailure(
                    strategy.name, FailureCategory.TIMEOUT, "job time budget exhausted before this strategy could run",
                ))
                continue
            timeout = self._policy.slice_for(strategy.name, request.size_bytes, remaining, names[i + 1:])
            logger.info("job %s: trying %s (%.1fs slice)", request.job_id, strategy.name, timeout)
            attempt = await strategy.attempt(request, timeout=timeout)
            if attempt.ok:
                logger.info(
                    "job %s: %s succeeded in %.2fs -> %s",
                    request.job_id, strategy.name, attempt.elapsed, attempt.artifact_path,
                )
                return attempt
            error = attempt.error
            if not isinstance(error, StrategyFailure):
                error = StrategyFailure(strategy.name, FailureCategory.RENDER_ERROR, str(error))
            failures.append(error)

        exhausted = ChainExhausted(failures)
        logger.error("job %s: %s", request.job_id, exhausted)
        raise exhausted
