"""Single-flight scheduler for scans and version-control operations."""

import asyncio
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Optional

from ..models import OperationKind, OperationRequest, OperationResult

logger = logging.getLogger(__name__)

DEBOUNCED_KINDS = (OperationKind.STAGE, OperationKind.UNSTAGE)


class SchedulerState(str, Enum):
    IDLE = "Idle"
    SCAN_IN_FLIGHT = "ScanInFlight"
    OPERATION_IN_FLIGHT = "OperationInFlight"


class DispatchStatus(str, Enum):
    """What happened to a request handed to the scheduler."""

    STARTED = "started"
    QUEUED = "queued"
    COALESCED = "coalesced"
    REJECTED = "rejected"


class OperationScheduler:
    """
    Runs at most one background task (a scan or an operation) at a time.

    All public methods, and every callback, run on the event loop thread.
    Background tasks run on a single worker and only return values; their
    results are applied by ``tick()``, which the owner calls periodically.

    While a task is in flight, scan requests collapse into one queued scan
    (``clear_ui`` is sticky) and operation requests into one pending
    operation (requests for the same kind and repository are merged, others
    are rejected).
    After a stage or unstage completes, a debounced scan is scheduled so that
    quick successive clicks share one rescan.
    """

    def __init__(
        self,
        make_scan_task: Callable[[bool], Callable[[], Any]],
        operation_task: Callable[[OperationRequest], OperationResult],
        on_scan_complete: Callable[[Any, bool], None],
        on_operation_complete: Callable[[OperationRequest, OperationResult], None],
        on_error: Callable[[str], None],
        debounce_seconds: float = 0.15,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.make_scan_task = make_scan_task
        self.operation_task = operation_task
        self.on_scan_complete = on_scan_complete
        self.on_operation_complete = on_operation_complete
        self.on_error = on_error
        self.debounce_seconds = max(0.01, debounce_seconds)
        self.clock = clock
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="quickstage-git"
        )

        self.state = SchedulerState.IDLE
        self._future: Optional[asyncio.Future] = None
        self._scan_clear_ui = False
        self._operation: Optional[OperationRequest] = None

        self._queued_scan = False
        self._queued_scan_clear_ui = False
        self._pending_operation: Optional[OperationRequest] = None
        self._debounce_deadline: Optional[float] = None

    @property
    def is_busy(self) -> bool:
        return self.state != SchedulerState.IDLE

    @property
    def in_flight_operation(self) -> Optional[OperationRequest]:
        return self._operation

    @property
    def has_pending_work(self) -> bool:
        return (
            self.is_busy
            or self._queued_scan
            or self._pending_operation is not None
            or self._debounce_deadline is not None
        )

    def request_scan(self, clear_ui: bool = False) -> DispatchStatus:
        if self.state == SchedulerState.IDLE:
            if self._start_scan(clear_ui):
                return DispatchStatus.STARTED
            return DispatchStatus.REJECTED

        self._queued_scan = True
        self._queued_scan_clear_ui = self._queued_scan_clear_ui or clear_ui
        return DispatchStatus.QUEUED

    def request_scan_debounced(self) -> None:
        """(Re)arm the debounced scan; a later call pushes the deadline back."""
        self._debounce_deadline = self.clock() + self.debounce_seconds

    def request_operation(self, request: OperationRequest) -> DispatchStatus:
        if self.state == SchedulerState.IDLE:
            if self._start_operation(request):
                return DispatchStatus.STARTED
            return DispatchStatus.REJECTED

        if self._pending_operation is None:
            self._pending_operation = request
            return DispatchStatus.QUEUED

        if self._pending_operation.can_merge(request):
            self._pending_operation = self._pending_operation.merge(request)
            return DispatchStatus.COALESCED

        logger.debug(
            "Rejected %s for %s: %s for %s already pending",
            request.kind.value,
            request.repository_root,
            self._pending_operation.kind.value,
            self._pending_operation.repository_root,
        )
        return DispatchStatus.REJECTED

    def tick(self) -> None:
        """Apply a finished task, then start whatever is due next."""
        if self._future is not None:
            if not self._future.done():
                return
            self._complete()

        if self.state != SchedulerState.IDLE:
            return

        if self._pending_operation is not None:
            request, self._pending_operation = self._pending_operation, None
            self._start_operation(request)
        elif self._queued_scan:
            clear_ui = self._queued_scan_clear_ui
            self._queued_scan = False
            self._queued_scan_clear_ui = False
            self._start_scan(clear_ui)
        elif self._debounce_deadline is not None and self.clock() >= self._debounce_deadline:
            self._debounce_deadline = None
            self._start_scan(False)

    async def wait_idle(self, timeout: Optional[float] = None, poll_interval: float = 0.01) -> bool:
        """Tick until nothing is in flight or pending. False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.tick()
            if not self.has_pending_work:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            await asyncio.sleep(poll_interval)

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _start_scan(self, clear_ui: bool) -> bool:
        self._debounce_deadline = None
        try:
            task = self.make_scan_task(clear_ui)
        except Exception as e:
            logger.exception("Could not prepare refresh")
            self._report(f"Refresh failed: {e}")
            return False
        if not self._submit(task):
            self._report("Refresh failed: could not start background work.")
            return False
        self._scan_clear_ui = clear_ui
        self._transition(SchedulerState.SCAN_IN_FLIGHT)
        return True

    def _start_operation(self, request: OperationRequest) -> bool:
        if not self._submit(self.operation_task, request):
            self._report(f"{request.kind.value} failed: could not start background work.")
            return False
        self._operation = request
        self._transition(SchedulerState.OPERATION_IN_FLIGHT)
        return True

    def _submit(self, task: Callable[..., Any], *args: Any) -> bool:
        """Hand ``task`` to the worker. The state is left untouched on failure."""
        try:
            self._future = asyncio.get_running_loop().run_in_executor(self._executor, task, *args)
        except RuntimeError:
            # No running loop on this thread, or the executor was shut down.
            logger.exception("Could not submit background task")
            self._future = None
            return False
        return True

    def _transition(self, state: SchedulerState) -> None:
        logger.debug("Scheduler %s -> %s", self.state.value, state.value)
        self.state = state

    def _complete(self) -> None:
        future, self._future = self._future, None
        finished_state = self.state
        request, self._operation = self._operation, None
        clear_ui, self._scan_clear_ui = self._scan_clear_ui, False
        self._transition(SchedulerState.IDLE)

        if finished_state == SchedulerState.SCAN_IN_FLIGHT:
            self._complete_scan(future, clear_ui)
        else:
            self._complete_operation(future, request)

    def _complete_scan(self, future: asyncio.Future, clear_ui: bool) -> None:
        if future.cancelled():
            self._report("Refresh canceled.")
            return
        error = future.exception()
        if error is not None:
            logger.error("Refresh failed", exc_info=error)
            self._report(f"Refresh failed: {error}")
            return
        if self._queued_scan:
            # Superseded by a newer request.
            return
        self._invoke(self.on_scan_complete, future.result(), clear_ui)

    def _complete_operation(self, future: asyncio.Future, request: OperationRequest) -> None:
        if future.cancelled() or future.exception() is not None:
            if future.cancelled():
                self._report("Operation canceled.")
            else:
                logger.error("%s failed", request.kind.value, exc_info=future.exception())
                self._report(f"Operation failed: {future.exception()}")
            if request.kind in DEBOUNCED_KINDS and not self._queued_scan:
                self.request_scan_debounced()
            return

        self._invoke(self.on_operation_complete, request, future.result())
        if not self._queued_scan:
            self.request_scan_debounced()

    def _invoke(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.exception("Completion handler failed")
            self._report(f"Operation failed: {e}")

    def _report(self, message: str) -> None:
        try:
            self.on_error(message)
        except Exception:
            logger.exception("Error handler failed for %r", message)
