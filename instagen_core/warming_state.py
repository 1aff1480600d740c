"""Per-user cache warming state.

Each user moves through UNSTARTED -> WARMING -> READY independently for the
competitor and trending caches. Ready flags only ever go from False to True;
the only way back is to remove the state and create a new one.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Sequence, Union

from .logger import get_logger

logger = get_logger()


class CacheType(str, Enum):
    """The two caches a user can wait on."""
    COMPETITOR = "competitor"
    TRENDING = "trending"

    @classmethod
    def coerce(cls, value: Union["CacheType", str]) -> "CacheType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            raise ValueError(
                f"Unknown cache type {value!r}; expected one of {[t.value for t in cls]}"
            ) from exc


CacheTypeLike = Union[CacheType, str]


class WarmingTask:
    """Handle on an in-flight background warming operation."""

    __slots__ = ("cache_type", "_task")

    def __init__(self, cache_type: CacheType, task: asyncio.Future) -> None:
        self.cache_type = cache_type
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def task(self) -> asyncio.Future:
        return self._task

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait up to ``timeout`` seconds for the task to finish.

        The task is never cancelled and its exception, if any, is not raised
        here; the task keeps running after a timeout.

        Returns:
            True if the task finished within the timeout
        """
        if self._task.done():
            return True
        done, _pending = await asyncio.wait({self._task}, timeout=timeout)
        return self._task in done

    def __repr__(self) -> str:
        return f"WarmingTask(cache_type={self.cache_type.value!r}, done={self.done})"


@dataclass
class WarmingState:
    """Snapshot of one warming pass for a user."""
    user_id: str
    niche: str
    competitors: tuple[str, ...] = ()
    competitor_posts_ready: bool = False
    trending_posts_ready: bool = False
    is_warming: bool = True
    pending_tasks: dict[CacheType, WarmingTask] = field(default_factory=dict)
    started_at: float = field(default_factory=time.time)

    def is_ready(self, cache_type: CacheTypeLike) -> bool:
        if CacheType.coerce(cache_type) is CacheType.COMPETITOR:
            return self.competitor_posts_ready
        return self.trending_posts_ready

    def mark_ready(self, cache_type: CacheTypeLike) -> None:
        if CacheType.coerce(cache_type) is CacheType.COMPETITOR:
            self.competitor_posts_ready = True
        else:
            self.trending_posts_ready = True

    def is_type_warming(self, cache_type: CacheTypeLike) -> bool:
        cache_type = CacheType.coerce(cache_type)
        return (
            self.is_warming
            and not self.is_ready(cache_type)
            and cache_type in self.pending_tasks
        )

    def finish(self) -> None:
        self.is_warming = False


class WarmingStateTracker:
    """Registry of warming states, one per user, held only in memory."""

    def __init__(self) -> None:
        self._states: dict[str, WarmingState] = {}

    def create(
        self,
        user_id: str,
        niche: str,
        competitors: Sequence[str] = (),
        started_at: Optional[float] = None,
    ) -> WarmingState:
        """Register a warming state, or return the one already registered."""
        existing = self._states.get(user_id)
        if existing is not None:
            logger.debug(f"Warming state already registered for user {user_id}")
            return existing

        state = WarmingState(user_id=user_id, niche=niche, competitors=tuple(competitors))
        if started_at is not None:
            state.started_at = started_at
        self._states[user_id] = state
        return state

    def get(self, user_id: str) -> Optional[WarmingState]:
        return self._states.get(user_id)

    def mark_ready(self, user_id: str, cache_type: CacheTypeLike) -> None:
        state = self._states.get(user_id)
        if state is not None:
            state.mark_ready(cache_type)

    def is_ready(self, user_id: str, cache_type: CacheTypeLike) -> bool:
        state = self._states.get(user_id)
        return state is not None and state.is_ready(cache_type)

    def is_warming(self, user_id: str, cache_type: CacheTypeLike) -> bool:
        state = self._states.get(user_id)
        return state is not None and state.is_type_warming(cache_type)

    def remove(self, user_id: str) -> bool:
        """Discard all state for a user. Returns True if any existed."""
        return self._states.pop(user_id, None) is not None

    def active_user_ids(self) -> list[str]:
        return [user_id for user_id, state in self._states.items() if state.is_warming]

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._states

    def __iter__(self) -> Iterator[WarmingState]:
        return iter(list(self._states.values()))
