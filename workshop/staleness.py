"""
Staleness tracking for cached app records.

The file watcher reports every change; the tracker remembers, per app
directory, when it was last touched. Cache lookups compare that time with
the creation time of the cached entry to decide whether a fresh compute is
forced regardless of TTL.
"""

import time
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .cache import CacheEntry
from .shared.logger import get_logger

logger = get_logger(__name__)


class StalenessTracker:
    """Maps directory path -> last modification time.

    Entries are only ever added or updated; the map lives as long as the
    process does.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._modified_times: Dict[str, float] = {}

    def record_touched(self, directory: Union[str, Path]) -> None:
        self._modified_times[str(directory)] = self._clock()

    def last_touched(self, directory: Union[str, Path]) -> Optional[float]:
        return self._modified_times.get(str(directory))

    def is_stale(self, directory: Union[str, Path], entry: Optional[CacheEntry]) -> Optional[bool]:
        """Whether the cached entry for ``directory`` must be recomputed.

        Returns True when there is no entry or the directory changed after
        the entry was created, and None ("defer to TTL") otherwise.
        """
        if not Path(directory).is_absolute():
            raise ValueError(f"Trying to get staleness for non-absolute path: {directory}")
        if entry is None:
            return True
        modified = self._modified_times.get(str(directory))
        if modified is None:
            return None
        if modified > entry.metadata.created_time:
            logger.debug("%s changed since its cache entry was created", directory)
            return True
        return None

    def is_any_stale(self, entry: Optional[CacheEntry]) -> Optional[bool]:
        """Same as :meth:`is_stale` using the most recent change anywhere."""
        if entry is None:
            return True
        if not self._modified_times:
            return None
        latest = max(self._modified_times.values())
        return True if latest > entry.metadata.created_time else None
