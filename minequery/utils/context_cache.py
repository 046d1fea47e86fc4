from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

DEFAULT_TTL_SEC = 300.0


@dataclass
class QuickContext:
    user_id: str
    last_intent: str
    last_question: str
    last_answer: Optional[str] = None
    last_parameters: Dict[str, Any] = field(default_factory=dict)
    route_taken: Optional[str] = None
    timestamp: float = 0.0

    def as_turn(self) -> Dict[str, Any]:
        return {
            "question": self.last_question,
            "intent": self.last_intent,
            "parameters": dict(self.last_parameters),
            "answer": self.last_answer,
            "route": self.route_taken,
        }


class QuickContextCache:
    """Per-user last-turn context with read-time TTL expiry.

    Writes for the same user are last-write-wins: two concurrent turns for one
    user both write, and the later ``set`` replaces the other's context.
    Distinct users never interfere.
    """

    def __init__(self, ttl_sec: float = DEFAULT_TTL_SEC, clock: Optional[Callable[[], float]] = None) -> None:
        self.ttl_sec = ttl_sec
        self._clock = clock or time.monotonic
        self._cache: Dict[str, QuickContext] = {}

    def set(self, user_id: str, last_intent: str, last_question: str, last_answer: Optional[str] = None,
            last_parameters: Optional[Dict[str, Any]] = None, route_taken: Optional[str] = None) -> QuickContext:
        ctx = QuickContext(
            user_id=user_id,
            last_intent=last_intent,
            last_question=last_question,
            last_answer=last_answer,
            last_parameters=dict(last_parameters or {}),
            route_taken=route_taken,
            timestamp=self._clock(),
        )
        self._cache[user_id] = ctx
        return ctx

    def get(self, user_id: str) -> Optional[QuickContext]:
        ctx = self._cache.get(user_id)
        if ctx is None:
            return None
        if self._clock() - ctx.timestamp > self.ttl_sec:
            self._cache.pop(user_id, None)
            return None
        return ctx

    def has(self, user_id: str) -> bool:
        return self.get(user_id) is not None

    def clear(self, user_id: str) -> None:
        self._cache.pop(user_id, None)

    def clear_all(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
