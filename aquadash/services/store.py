"""Shared holder for the live device-state snapshot."""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Callable, List, Mapping

from aquadash.models import DeviceState

logger = logging.getLogger(__name__)

Snapshot = Mapping[str, DeviceState]
SnapshotObserver = Callable[[Snapshot], None]


class DeviceStateStore:
    """Owns the current snapshot and fans replacements out to observers.

    Updates are synchronous so each one is atomic on the event loop; the
    ingestion channel and the liveness monitor are the only writers.
    """

    def __init__(self) -> None:
        self._snapshot: Snapshot = MappingProxyType({})
        self._observers: List[SnapshotObserver] = []

    def snapshot(self) -> Snapshot:
        return self._snapshot

    def get(self, device_id: str) -> DeviceState | None:
        return self._snapshot.get(device_id)

    def apply(self, update: Callable[[Snapshot], Mapping[str, DeviceState]]) -> Snapshot:
        previous = self._snapshot
        result = update(previous)
        if result is previous:
            return previous
        self._snapshot = MappingProxyType(dict(result))
        self._notify()
        return self._snapshot

    def add_observer(self, observer: SnapshotObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def _notify(self) -> None:
        snapshot = self._snapshot
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Device state observer failed")
