"""Periodic sweep that marks devices offline once their data goes stale."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Tuple

from aquadash.models import DeviceState
from aquadash.services.store import DeviceStateStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mark_stale_devices(
    states: Mapping[str, DeviceState],
    now: datetime,
    threshold: timedelta,
) -> Tuple[Mapping[str, DeviceState], List[str]]:
    """Flip online devices whose last data is older than ``threshold``.

    Only the online -> offline transition happens here. ``last_online_at`` is
    left alone. Devices whose timestamp is missing or cannot be compared with
    ``now`` are skipped. Returns the input mapping itself when nothing changed.
    """

    flipped: List[str] = []
    updated: Dict[str, DeviceState] | None = None
    for device_id, device in states.items():
        if not device.online:
            continue
        last_data_at = device.last_data_at
        if not isinstance(last_data_at, datetime):
            logger.debug("Skipping liveness check for %s: no data timestamp", device_id)
            continue
        try:
            elapsed = now - last_data_at
        except TypeError:
            logger.debug("Skipping liveness check for %s: incomparable timestamp %r", device_id, last_data_at)
            continue
        if elapsed > threshold:
            if updated is None:
                updated = dict(states)
            updated[device_id] = device.model_copy(update={"online": False})
            flipped.append(device_id)
    if updated is None:
        return states, flipped
    return updated, flipped


class LivenessMonitor:
    """Runs :func:`mark_stale_devices` against the shared store on a fixed period."""

    def __init__(
        self,
        store: DeviceStateStore,
        *,
        staleness_seconds: float = 120.0,
        interval_seconds: float = 30.0,
        clock: Clock = utcnow,
    ) -> None:
        self.store = store
        self.threshold = timedelta(seconds=float(staleness_seconds))
        self.interval_seconds = float(interval_seconds)
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.last_sweep_at: datetime | None = None

    def sweep(self, now: datetime | None = None) -> List[str]:
        now = now or self._clock()
        flipped: List[str] = []

        def _update(states: Mapping[str, DeviceState]) -> Mapping[str, DeviceState]:
            updated, changed = mark_stale_devices(states, now, self.threshold)
            flipped.extend(changed)
            return updated

        self.store.apply(_update)
        self.last_sweep_at = now
        for device_id in flipped:
            logger.info("Device %s went offline", device_id, extra={"device_id": device_id})
        return flipped

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="liveness-monitor")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")
