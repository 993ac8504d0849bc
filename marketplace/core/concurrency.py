import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from marketplace.core.config import settings
from marketplace.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_conflict(label: str) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        logger.warning(
            "%s: concurrent update detected, retrying (attempt %d failed)",
            label, retry_state.attempt_number
        )
    return log


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    label: str,
    retries: Optional[int] = None
) -> T:
    """
    Run a read-modify-write, re-running it when the store reports a conflict.

    ``operation`` must re-read everything it depends on each time it is
    called. After ``retries`` extra attempts the ConflictError propagates.
    """
    if retries is None:
        retries = settings.CONFLICT_RETRIES
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ConflictError),
        stop=stop_after_attempt(retries + 1),
        before_sleep=_log_conflict(label),
        reraise=True,
    ):
        with attempt:
            return await operation()
