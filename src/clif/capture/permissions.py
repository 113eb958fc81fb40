"""Screen-recording permission gate with bounded exponential backoff."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import Final

from ..errors import PermissionDeniedError

_LOGGER = logging.getLogger(__name__)

DEFAULT_ATTEMPTS: Final[int] = 3
DEFAULT_BACKOFF_FACTOR: Final[float] = 0.5
DEFAULT_MAX_DELAY: Final[float] = 4.0


class PermissionProbe:
    """Retry a boolean permission check a bounded number of times."""

    def __init__(
        self,
        check: Callable[[], bool],
        *,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleeper: Callable[[float], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Store the check and its retry policy."""
        self.check = check
        self.attempts = max(1, attempts)
        self.backoff_factor = max(0.0, backoff_factor)
        self.max_delay = max(0.0, max_delay)
        self.logger = logger or _LOGGER
        self._sleep = sleeper or time.sleep

    def wait_for_permission(self) -> bool:
        """Return ``True`` as soon as the check passes, ``False`` once attempts run out."""
        for attempt in range(self.attempts):
            if self.check():
                return True
            if attempt + 1 >= self.attempts:
                break
            delay = self._retry_delay(attempt)
            self.logger.info(
                "permission.retry",
                extra={"attempt": attempt, "retry_after": delay},
            )
            self._sleep(delay)
        self.logger.warning("permission.denied", extra={"attempts": self.attempts})
        return False

    def require(self) -> None:
        """Raise :class:`PermissionDeniedError` unless permission is granted."""
        if not self.wait_for_permission():
            raise PermissionDeniedError(
                "Screen recording permission has not been granted; enable it in system settings"
            )

    def _retry_delay(self, attempt: int) -> float:
        """Compute the exponential backoff delay with jitter, capped at ``max_delay``."""
        jitter = random.uniform(0.5, 1.5)
        return float(min(self.max_delay, self.backoff_factor * (2**attempt) * jitter))


__all__ = ["PermissionProbe"]
