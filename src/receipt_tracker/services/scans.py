import hashlib
import itertools
from dataclasses import dataclass

from receipt_tracker.errors import ScanInProgressError
from receipt_tracker.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScanAttempt:
    client_id: str
    attempt_id: int
    digest: str


def image_digest(image: bytes | str) -> str:
    payload = image.encode("utf-8") if isinstance(image, str) else image
    return hashlib.sha256(payload).hexdigest()


class ScanTracker:
    """Tracks the one current analysis attempt per browser session.

    Starting a new upload supersedes the previous attempt, so a result that
    arrives late for an abandoned image is discarded instead of displayed.
    Re-analyzing the image that is still in flight is refused.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: dict[str, ScanAttempt] = {}
        self._in_flight: set[int] = set()

    def begin(self, client_id: str, image: bytes | str) -> ScanAttempt:
        digest = image_digest(image)
        current = self._current.get(client_id)
        if current and current.digest == digest and current.attempt_id in self._in_flight:
            raise ScanInProgressError(f"Scan already running for client {client_id}")

        attempt = ScanAttempt(client_id=client_id, attempt_id=next(self._counter), digest=digest)
        if current and current.attempt_id in self._in_flight:
            logger.info(
                "[SCAN] Attempt %s superseded by %s for client %s.",
                current.attempt_id,
                attempt.attempt_id,
                client_id,
            )
        self._current[client_id] = attempt
        self._in_flight.add(attempt.attempt_id)
        return attempt

    def is_current(self, attempt: ScanAttempt) -> bool:
        current = self._current.get(attempt.client_id)
        return current is not None and current.attempt_id == attempt.attempt_id

    def finish(self, attempt: ScanAttempt) -> bool:
        """Mark ``attempt`` done; True when its result may still be applied."""
        self._in_flight.discard(attempt.attempt_id)
        if self.is_current(attempt):
            del self._current[attempt.client_id]
            return True
        logger.info("[SCAN] Discarding stale result of attempt %s.", attempt.attempt_id)
        return False

    def reset(self, client_id: str) -> None:
        attempt = self._current.pop(client_id, None)
        if attempt:
            self._in_flight.discard(attempt.attempt_id)

    @property
    def active_sessions(self) -> int:
        return len(self._current)
