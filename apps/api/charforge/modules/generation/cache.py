from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from charforge.modules.characters.systems import GameSystem

KIND_CHARACTER = "character"
KIND_WITH_NPCS = "with_npcs"
KIND_SUGGESTIONS = "suggestions"


@dataclass(frozen=True)
class CacheKey:
    kind: str
    system: GameSystem
    prompt: str = ""
    include_npcs: bool = False


class GenerationCache:
    """
    In-memory cache of successful generations, keyed on the exact request tuple.

    Entries never expire; they are dropped only by invalidate()/clear().
    Failures are never stored. Values are deep-copied in and out so callers
    cannot mutate a cached result.
    """

    def __init__(self) -> None:
        self._entries: Dict[CacheKey, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            if key not in self._entries:
                return None
            return copy.deepcopy(self._entries[key])

    def put(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = copy.deepcopy(value)

    def invalidate(self, key: CacheKey) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            n = len(self._entries)
            self._entries.clear()
            return n

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
