"""Best-effort coordinate resolution under a hard time budget."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from weatheralert.location.providers import LocationProvider
from weatheralert.models.forecast import Coordinate

logger = logging.getLogger(__name__)


class LocationResolver:
    """Permission -> last known fix -> fresh fix (deadline) -> fallback.

    resolve() never raises.
    """

    def __init__(
        self,
        provider: LocationProvider,
        fallback: Coordinate,
        fix_timeout: float = 4.0,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.provider = provider
        self.fallback = fallback
        self.fix_timeout = fix_timeout
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="location-fix"
        )
        self._pending: Future | None = None

    def resolve(self) -> Coordinate:
        try:
            granted = self.provider.request_permission()
        except Exception:
            logger.exception("Location permission request failed")
            granted = False

        if not granted:
            logger.warning("Location permission denied, using fallback %s", self.fallback)
            return self.fallback

        coord = self._last_known()
        fresh = self._fresh_fix()
        if fresh is not None:
            coord = fresh
            try:
                self.provider.remember(fresh)
            except Exception:
                logger.warning("Could not persist last position", exc_info=True)

        if coord is None:
            logger.warning("No position available, using fallback %s", self.fallback)
            return self.fallback
        return coord

    def _last_known(self) -> Coordinate | None:
        try:
            return self.provider.last_known_position()
        except Exception:
            logger.warning("Last known position unavailable", exc_info=True)
            return None

    def _fresh_fix(self) -> Coordinate | None:
        # A fix abandoned by an earlier cycle may still be running; its late
        # result is never read.
        if self._pending is not None and not self._pending.done():
            logger.debug("Previous position fix still in flight, abandoning it")
        future = self._executor.submit(self.provider.current_position)
        self._pending = future
        try:
            return future.result(timeout=self.fix_timeout)
        except TimeoutError:
            logger.warning("Position fix timed out after %.1fs", self.fix_timeout)
            return None
        except Exception as e:
            logger.warning("Position fix failed: %s", e)
            return None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
