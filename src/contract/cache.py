"""Single-flight, compile-once cache of validators.

Validators are keyed by ``(route, content type, direction)``. The first
caller of an uncached key compiles it; concurrent callers of the same key
wait for that compilation and share its result. A failed compilation is
kept as the permanent outcome for its key: the contract is malformed and
compiling again would fail again.

The cache is guarded by a ``threading.Lock`` so it is safe both for event
loop concurrency and for handlers running in a thread pool.
"""

import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from loguru import logger

from src.contract.preprocessor import Direction
from src.core.exceptions import ConfigurationError

NO_CONTENT = "none"


@dataclass(frozen=True, slots=True)
class CacheKey:
    """Identity of a compiled validator.

    Attributes:
        route: Route identity; for responses suffixed with the status key.
        content_type: Media type of the validated content, or ``"none"``.
        direction: Request or response.
    """

    route: str
    content_type: str
    direction: Direction

    def __str__(self) -> str:
        return f"{self.direction} {self.route} [{self.content_type}]"


class ValidatorCache:
    """Compile-once map from ``CacheKey`` to compiled validators."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[CacheKey, Future[Any]] = {}
        self.builds = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_or_build[T](self, key: CacheKey, build: Callable[[], T]) -> T:
        """Return the validator for a key, compiling it on first use.

        Args:
            key: Cache key.
            build: Compiles the validator; called at most once per key.

        Returns:
            T: The compiled validator.

        Raises:
            ConfigurationError: If compilation failed, now or on an earlier call.
        """
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if future is None:
                future = Future()
                self._entries[key] = future
                self.builds += 1

        if not owner:
            return future.result()

        try:
            validator = build()
        except ConfigurationError as e:
            logger.error("Validator compilation failed for {}: {}", key, e.message)
            future.set_exception(e)
            raise
        except Exception as e:
            error = ConfigurationError(f"Validator compilation failed for {key}: {e}", cause=e)
            logger.error("Validator compilation failed for {}: {}", key, e)
            future.set_exception(error)
            raise error from e
        except BaseException as e:
            # Interrupted rather than failed; let the next caller compile again
            with self._lock:
                self._entries.pop(key, None)
            future.set_exception(e)
            raise

        logger.debug("Compiled validator for {}", key)
        future.set_result(validator)
        return validator
