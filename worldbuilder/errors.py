"""Error kinds raised by the generation pipeline and the run-level report."""

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class WorldBuilderError(Exception):
    """Base class for every error the pipeline raises."""

    kind = "error"
    fatal = False


class InvalidBoundsError(WorldBuilderError):
    """Bounding box is degenerate or would produce an oversized grid."""

    kind = "invalid_bounds"
    fatal = True


class TerrainUnavailableError(WorldBuilderError):
    """Terrain is enabled but no elevation source produced usable data."""

    kind = "terrain_unavailable"
    fatal = True


class RemoteFetchError(WorldBuilderError):
    """A remote request failed.

    ``retryable`` is False for responses that will not improve on retry
    (authentication failures, malformed requests).  ``permanent`` is set once
    the retry policy has been exhausted.
    """

    kind = "remote_fetch"

    def __init__(self, message, *, retryable=True, permanent=False, status=None):
        super().__init__(message)
        self.retryable = retryable
        self.permanent = permanent
        self.status = status


class RasterizationTimeout(WorldBuilderError):
    """Flood fill exceeded its step, cell or wall-clock budget."""

    kind = "rasterization_timeout"


class AttributeValidationError(WorldBuilderError):
    """A single attribute value was malformed and has been discarded."""

    kind = "attribute_validation"

    def __init__(self, field_name, value, reason):
        super().__init__(f"{field_name}={value!r}: {reason}")
        self.field_name = field_name
        self.value = value


class OverlapConflict(WorldBuilderError):
    """A feature collided with cells already owned by a higher-priority one."""

    kind = "overlap_conflict"


@dataclass
class RunReport:
    """Aggregated outcome of one generation run.

    Recovered errors are counted per kind; nothing is dropped without
    incrementing a counter here.  Safe to update from worker threads.
    """

    errors: Counter = field(default_factory=Counter)
    warnings: list = field(default_factory=list)
    features_seen: int = 0
    features_emitted: int = 0
    features_dropped: int = 0
    tiles_fetched: int = 0
    tiles_failed: int = 0
    elevation_source: str = "flat"
    max_warnings: int = 200
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False,
                                  compare=False)

    def record(self, exc: WorldBuilderError, context: str = "") -> None:
        """Count a recovered error and keep its message for the summary."""
        message = f"{context}: {exc}" if context else str(exc)
        with self._lock:
            self.errors[exc.kind] += 1
            if len(self.warnings) < self.max_warnings:
                self.warnings.append(message)
        logger.warning(message)

    def count(self, key: str, n: int = 1) -> None:
        with self._lock:
            setattr(self, key, getattr(self, key) + n)

    def summary(self) -> dict:
        return {
            "features_seen": self.features_seen,
            "features_emitted": self.features_emitted,
            "features_dropped": self.features_dropped,
            "tiles_fetched": self.tiles_fetched,
            "tiles_failed": self.tiles_failed,
            "elevation_source": self.elevation_source,
            "errors": dict(self.errors),
        }
