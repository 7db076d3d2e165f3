# src/qfund/runtime/kv.py
from __future__ import annotations

"""Key/value store surface shared by the contract and the host.

Keys are ASCII strings; values are JSON-compatible objects. Ordering of
range scans is lexicographic on the key, so numeric key components must
be zero padded by the caller (see qfund.contract.state).

OverlayKVStore gives a message its atomic write set: the handler runs
against the overlay, and the host either commits the buffered writes to
the base store in one transaction or drops them.
"""

import copy
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

Json = Dict[str, Any]

_DELETED = object()


def prefix_end(prefix: str) -> str:
    """Smallest string greater than every string starting with `prefix`."""
    if not prefix:
        return ""
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class KVStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def range(self, prefix: str) -> Iterator[Tuple[str, Any]]: ...


class MemoryKVStore:
    """Dict-backed store with an in-memory block row and event journal.

    Same commit surface as SqliteKVStore; used by unit tests and simulations.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._block: Optional[Json] = None
        self._events: List[Json] = []

    def get(self, key: str) -> Optional[Any]:
        v = self._data.get(key)
        return copy.deepcopy(v) if v is not None else None

    def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("kv values must not be None; use delete()")
        self._data[str(key)] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(str(key), None)

    def range(self, prefix: str) -> Iterator[Tuple[str, Any]]:
        keys = sorted(k for k in self._data.keys() if k.startswith(prefix))
        for k in keys:
            yield k, copy.deepcopy(self._data[k])

    def apply_batch(
        self,
        writes: Dict[str, Any],
        *,
        block: Optional[Json] = None,
        event: Optional[Json] = None,
    ) -> None:
        for k, v in writes.items():
            if v is _DELETED:
                self._data.pop(k, None)
            else:
                self._data[k] = copy.deepcopy(v)
        if block is not None:
            self._block = copy.deepcopy(block)
        if event is not None:
            ev = copy.deepcopy(event)
            ev["seq"] = len(self._events) + 1
            self._events.append(ev)

    def read_block(self) -> Optional[Json]:
        return copy.deepcopy(self._block)

    def events(self, *, limit: int = 100) -> List[Json]:
        """Most recent journal entries, oldest first."""
        if limit <= 0:
            return []
        return copy.deepcopy(self._events[-int(limit):])

    def snapshot(self) -> Json:
        return copy.deepcopy(self._data)

    def __len__(self) -> int:
        return len(self._data)


class OverlayKVStore:
    """Buffered write set over a base store.

    Reads see the buffered writes first. Nothing reaches the base store
    until commit().
    """

    def __init__(self, base: Any) -> None:
        self._base = base
        self._writes: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        if key in self._writes:
            v = self._writes[key]
            return None if v is _DELETED else copy.deepcopy(v)
        return self._base.get(key)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("kv values must not be None; use delete()")
        self._writes[str(key)] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._writes[str(key)] = _DELETED

    def range(self, prefix: str) -> Iterator[Tuple[str, Any]]:
        merged: Dict[str, Any] = {}
        for k, v in self._base.range(prefix):
            merged[k] = v
        for k, v in self._writes.items():
            if not k.startswith(prefix):
                continue
            if v is _DELETED:
                merged.pop(k, None)
            else:
                merged[k] = copy.deepcopy(v)
        for k in sorted(merged.keys()):
            yield k, merged[k]

    def apply_batch(self, writes: Dict[str, Any], **_: Any) -> None:
        # Lets an overlay sit on top of another overlay.
        for k, v in writes.items():
            self._writes[k] = v if v is _DELETED else copy.deepcopy(v)

    def pending(self) -> List[str]:
        return sorted(self._writes.keys())

    def discard(self) -> None:
        self._writes.clear()

    def commit(self, *, block: Optional[Json] = None, event: Optional[Json] = None) -> int:
        """Flush buffered writes to the base store; returns the number of keys written.

        `block` and `event` ride along in the same base transaction.
        """
        n = len(self._writes)
        if n or block is not None or event is not None:
            self._base.apply_batch(dict(self._writes), block=block, event=event)
        self._writes.clear()
        return n


def is_deleted(v: Any) -> bool:
    return v is _DELETED


__all__ = ["KVStore", "MemoryKVStore", "OverlayKVStore", "prefix_end", "is_deleted"]
