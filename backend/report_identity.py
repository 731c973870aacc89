"""
Local identifiers for entities created before the first save.

Ids look like "local-18c3f2a9b1e40000-0001-9f3a1c". They never collide with
store ids (store ids are integers, or at least never carry the prefix) and are
replaced wholesale by the store id once the entity is persisted.
"""

import secrets
import time

LOCAL_ID_PREFIX = "local-"


class IdentityAllocator:
    """Time-ordered ids with a per-session counter and a random suffix"""

    def __init__(self):
        self._last_tick = 0
        self._counter = 0

    def allocate(self) -> str:
        tick = time.time_ns()
        # Same tick (or clock went backwards): stay monotonic
        if tick <= self._last_tick:
            tick = self._last_tick + 1
        self._last_tick = tick
        self._counter += 1
        return f"{LOCAL_ID_PREFIX}{tick:x}-{self._counter:04x}-{secrets.token_hex(3)}"


def is_local_id(entity_id) -> bool:
    """True for ids allocated in-session (not yet persisted)"""
    return isinstance(entity_id, str) and entity_id.startswith(LOCAL_ID_PREFIX)
