from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from src.app.domain.errors import RecipeValidationError
from src.app.domain.models import SaveState, SaveStatus
from src.app.infra.db.base import PersistenceGateway

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 1.0
DEFAULT_SAVED_DISPLAY_SECONDS = 1.5

StatusListener = Callable[[SaveStatus], None]


class Snapshottable(Protocol):
    id: str

    def validate(self) -> None: ...

    def snapshot(self) -> dict: ...


class AutosaveCoordinator:
    """
    Debounces edits to one record into a single consolidated write.

    notify_changed() re-arms a timer; when it fires without being re-armed the
    full snapshot of the record is sent to the gateway. At most one write is in
    flight: a tick that fires during a write is dropped, not queued. Errors end
    up in ``status`` and are never raised to the caller.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        collection: str,
        record: Snapshottable,
        *,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        saved_display_seconds: float = DEFAULT_SAVED_DISPLAY_SECONDS,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        self._gateway = gateway
        self._collection = collection
        self._record = record
        self.delay_seconds = delay_seconds
        self.saved_display_seconds = saved_display_seconds
        self._on_status = on_status

        self._status = SaveStatus.idle()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._reset_timer: Optional[asyncio.TimerHandle] = None
        self._write_task: Optional[asyncio.Task[None]] = None
        self._in_flight = False
        self._closed = False

        # Both must be set by the edit surface before anything is armed
        self.can_edit = False
        self.hydrated = False

    @property
    def status(self) -> SaveStatus:
        return self._status

    @property
    def enabled(self) -> bool:
        return self.can_edit and self.hydrated and not self._closed

    @property
    def is_armed(self) -> bool:
        return self._timer is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def closed(self) -> bool:
        return self._closed

    def notify_changed(self) -> bool:
        """(Re)arm the save timer. Returns False when the coordinator refuses to arm."""
        if not self.enabled:
            logger.debug(
                "autosave.not_armed record=%s can_edit=%s hydrated=%s closed=%s",
                self._record.id,
                self.can_edit,
                self.hydrated,
                self._closed,
            )
            return False

        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay_seconds, self._on_timer)
        return True

    async def flush(self) -> SaveStatus:
        """Run the write path now, consuming any pending timer."""
        self._cancel_timer()
        if not self.enabled:
            return self._status
        if self._in_flight:
            logger.debug("autosave.flush_dropped record=%s reason=in_flight", self._record.id)
            return self._status
        await self._start(self._save())
        return self._status

    async def wait_for_write(self) -> None:
        """Wait until the write in flight (if any) has finished. Never raises its error."""
        while self._write_task is not None and not self._write_task.done():
            await asyncio.wait({self._write_task})

    async def write_fields(self, fields: dict) -> None:
        """
        Write a partial update outside the debounce, serialized with autosave.

        A pending timer is held back and the write in flight is awaited before
        ``fields`` go out; the held-back timer is re-armed afterwards. Gateway
        errors are raised to the caller and do not touch ``status``.

        Args:
            fields: Column values to update on the record.
        """
        rearm = self._timer is not None
        self._cancel_timer()
        await self.wait_for_write()
        try:
            await self._start(self._write(fields))
        finally:
            if rearm:
                self.notify_changed()

    def close(self) -> None:
        """
        Teardown: cancel pending timers and detach the status listener.
        A write already in flight is left to complete.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel_timer()
        self._cancel_reset()
        self._on_status = None
        logger.debug("autosave.closed record=%s in_flight=%s", self._record.id, self._in_flight)

    def _on_timer(self) -> None:
        self._timer = None
        if self._closed:
            return
        if self._in_flight:
            logger.debug("autosave.tick_dropped record=%s reason=in_flight", self._record.id)
            return
        self._start(self._save())

    def _start(self, write) -> asyncio.Task[None]:
        # Marked in flight before the task first runs so no tick slips in between
        self._in_flight = True
        self._write_task = asyncio.create_task(write, name=f"autosave-{self._record.id}")
        return self._write_task

    async def _write(self, fields: dict) -> None:
        try:
            await run_in_threadpool(
                self._gateway.update_by_id,
                self._collection,
                self._record.id,
                fields,
            )
            logger.info("autosave.direct_write record=%s fields=%s", self._record.id, sorted(fields))
        finally:
            self._in_flight = False

    async def _save(self) -> None:
        self._in_flight = True
        try:
            self._cancel_reset()
            try:
                self._record.validate()
            except RecipeValidationError as exc:
                logger.info("autosave.invalid record=%s field=%s", self._record.id, exc.field)
                self._set_status(SaveStatus.error(str(exc)))
                return

            self._set_status(SaveStatus.saving())
            fields = self._record.snapshot()
            try:
                await run_in_threadpool(
                    self._gateway.update_by_id,
                    self._collection,
                    self._record.id,
                    fields,
                )
            except Exception as exc:
                logger.warning("autosave.failed record=%s error=%s", self._record.id, exc)
                self._set_status(SaveStatus.error(str(exc) or exc.__class__.__name__))
                return

            logger.info("autosave.saved record=%s", self._record.id)
            self._set_status(SaveStatus.saved())
            if not self._closed:
                loop = asyncio.get_running_loop()
                self._reset_timer = loop.call_later(self.saved_display_seconds, self._reset_saved)
        finally:
            self._in_flight = False

    def _reset_saved(self) -> None:
        self._reset_timer = None
        if self._status.state is SaveState.SAVED:
            self._set_status(SaveStatus.idle())

    def _set_status(self, status: SaveStatus) -> None:
        self._status = status
        listener = self._on_status
        if listener is None:
            return
        try:
            listener(status)
        except Exception:
            logger.exception("autosave.listener_error record=%s", self._record.id)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_reset(self) -> None:
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None
