"""Ordered index of pending job ids.

Jobs are ranked by priority (highest first), then by the time they entered
the queue (oldest first). Entries live in a single list kept sorted with
``bisect`` so rank lookups are O(log n).
"""

import itertools
from bisect import bisect_left, insort
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from app.jobs.models import JobPriority

_Key = Tuple[int, float, int, str]


class PriorityIndex:
    """Pending jobs ordered by (priority desc, enqueued_at asc)."""

    def __init__(self):
        self._entries: List[_Key] = []
        self._keys: Dict[str, _Key] = {}
        self._tiers: Counter = Counter()
        self._seq = itertools.count()

    def push(self, job_id: str, priority: JobPriority, enqueued_at: datetime) -> None:
        if job_id in self._keys:
            raise KeyError(f"Job {job_id} is already indexed")
        # The sequence number keeps FIFO order for identical timestamps.
        key = (-int(priority), enqueued_at.timestamp(), next(self._seq), job_id)
        insort(self._entries, key)
        self._keys[job_id] = key
        self._tiers[JobPriority(priority)] += 1

    def remove(self, job_id: str) -> bool:
        key = self._keys.pop(job_id, None)
        if key is None:
            return False
        i = bisect_left(self._entries, key)
        del self._entries[i]
        self._tiers[JobPriority(-key[0])] -= 1
        return True

    def pop(self) -> Optional[str]:
        """Remove and return the highest-ranked job id."""
        if not self._entries:
            return None
        key = self._entries.pop(0)
        del self._keys[key[3]]
        self._tiers[JobPriority(-key[0])] -= 1
        return key[3]

    def peek(self, n: int = 1) -> List[str]:
        return [key[3] for key in self._entries[:n]]

    def position(self, job_id: str) -> int:
        """1-based rank among pending jobs, or 0 if the job is not indexed."""
        key = self._keys.get(job_id)
        if key is None:
            return 0
        return bisect_left(self._entries, key) + 1

    def tier_counts(self) -> Dict[JobPriority, int]:
        return {priority: self._tiers[priority] for priority in JobPriority}

    def clear(self) -> None:
        self._entries.clear()
        self._keys.clear()
        self._tiers.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._keys
