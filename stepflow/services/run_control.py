"""Thread-safe run controls used during execution."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Event, Lock
from typing import Callable, Optional


@dataclass(frozen=True)
class StepUpdate:
    run_id: str
    step_id: str
    step_type: str
    name: str
    depth: int


class RunControl:
    """
    Controller shared between the caller and the interpreter.

    Notes:
    - Abort and pause are cooperative and are applied between steps; an
      attempt already handed to the transport is allowed to finish or time out.
    - Updates may be forwarded to another thread via an injected dispatcher.
    """

    def __init__(
        self,
        *,
        invoke: Optional[Callable[[Callable[[], None]], None]] = None,
        on_step: Optional[Callable[[StepUpdate], None]] = None,
        on_finished: Optional[Callable[[str, Optional[str]], None]] = None,
    ) -> None:
        self._run_event = Event()
        self._run_event.set()
        self._stop_event = Event()
        self._lock = Lock()
        self._current_step_id: Optional[str] = None
        self._invoke = invoke
        self._on_step = on_step
        self._on_finished = on_finished

    @property
    def paused(self) -> bool:
        return not self._run_event.is_set()

    @property
    def current_step_id(self) -> Optional[str]:
        with self._lock:
            return self._current_step_id

    def pause(self) -> None:
        if not self._stop_event.is_set():
            self._run_event.clear()

    def resume(self) -> None:
        self._run_event.set()

    def request_stop(self) -> None:
        self._stop_event.set()
        self._run_event.set()

    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def wait_while_paused(self, timeout: Optional[float] = None) -> bool:
        """
        Block until resumed or stopped; returns False if a stop was requested.

        Intended to be called from a worker thread, not the event loop thread.
        """
        self._run_event.wait(timeout)
        return not self._stop_event.is_set()

    def _dispatch(self, func: Callable[[], None]) -> None:
        if self._invoke:
            self._invoke(func)
        else:
            func()

    def before_step(self, update: StepUpdate) -> None:
        with self._lock:
            self._current_step_id = update.step_id
        if self._on_step:
            callback = self._on_step
            self._dispatch(lambda: callback(update))

    def notify_finished(self, status: str, reason: Optional[str] = None) -> None:
        with self._lock:
            self._current_step_id = None
        if not self._on_finished:
            return
        callback = self._on_finished
        payload_reason = None if reason is None else str(reason)
        self._dispatch(lambda: callback(str(status), payload_reason))
