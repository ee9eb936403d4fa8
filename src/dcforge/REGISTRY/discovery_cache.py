# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
In-memory cache for discovery results.
Entries expire after a TTL and only one fetch per key runs at a time.
"""

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)

_MISSING = object()


class SystemClock:
    """Wall clock in UTC. Tests substitute a controllable clock with the same now()."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass
class CacheEntry:
    """A cached value and when it stops being fresh."""
    value: Any
    stored_at: datetime
    expires_at: datetime


class DiscoveryCache:
    """
    TTL cache keyed by (source, tag).

    Reads of fresh entries take no lock. Writers for the same key are
    serialised: concurrent callers of get_or_load share one in-flight load.
    """

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Optional[Any] = None):
        """
        Initialize the cache.

        Args:
            ttl: How long an entry stays fresh. Defaults to 24 hours
            clock: Object with a now() method returning an aware datetime
        """
        self.ttl = ttl
        self.clock = clock or SystemClock()
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._inflight: Dict[Hashable, Future] = {}
        self._lock = threading.Lock()

    def _fresh(self, key: Hashable) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        if self.clock.now() >= entry.expires_at:
            return _MISSING
        return entry.value

    def get(self, key: Hashable) -> Optional[Any]:
        """
        Get a fresh cached value.

        Args:
            key: Cache key

        Returns:
            The value, or None when absent or expired
        """
        value = self._fresh(key)
        return None if value is _MISSING else value

    def put(self, key: Hashable, value: Any) -> None:
        now = self.clock.now()
        self._entries[key] = CacheEntry(value=value, stored_at=now, expires_at=now + self.ttl)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when key is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every key matching predicate. Returns how many were dropped."""
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Any],
        cache_if: Optional[Callable[[Any], bool]] = None,
        force: bool = False,
    ) -> Any:
        """
        Return the cached value or run loader once for all concurrent callers.

        Args:
            key: Cache key
            loader: Produces the value on a miss
            cache_if: Decides whether a loaded value is stored; failures should not be
            force: Skip the cached value and load again

        Returns:
            The cached or freshly loaded value
        """
        if not force:
            value = self._fresh(key)
            if value is not _MISSING:
                return value

        with self._lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                if not force:
                    value = self._fresh(key)
                    if value is not _MISSING:
                        return value
                future = Future()
                self._inflight[key] = future

        if not owner:
            logger.debug("Waiting for in-flight load of %s", key)
            return future.result()

        try:
            value = loader()
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(e)
            raise

        if cache_if is None or cache_if(value):
            self.put(key, value)
        with self._lock:
            self._inflight.pop(key, None)
        future.set_result(value)
        return value
