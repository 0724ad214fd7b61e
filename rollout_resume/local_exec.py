"""Interrupting locally spawned command trees.

On POSIX the child is started in its own process group and an interrupt
signals the whole group, so grandchildren started by a shell stop too. Other
platforms only track whether something is running.
"""

import logging
import os
import signal
import subprocess
import sys
import threading
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class InterruptController(ABC):
    """Tracks at most one in-flight child. A new record replaces the old one."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @abstractmethod
    def configure_child(self, popen_kwargs: dict) -> dict:
        """Return Popen kwargs adjusted so the child can be interrupted later."""

    @abstractmethod
    def record_child(self, pid: int | None) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        """Forget the child. Call on normal exit and on spawn failure."""

    @abstractmethod
    def interrupt(self) -> bool:
        """Interrupt the tracked child, if any. Returns True when a signal was sent."""

    @abstractmethod
    def is_running(self) -> bool:
        ...


class ProcessGroupController(InterruptController):
    def __init__(self) -> None:
        super().__init__()
        self._pgid: int | None = None

    def configure_child(self, popen_kwargs: dict) -> dict:
        # setsid() in the child before exec: it leads a fresh process group.
        return {**popen_kwargs, "start_new_session": True}

    def record_child(self, pid: int | None) -> None:
        if pid is None:
            return
        try:
            pgid = os.getpgid(pid)
        except OSError:
            pgid = pid
        with self._lock:
            self._pgid = pgid if pgid > 0 else pid

    def clear(self) -> None:
        with self._lock:
            self._pgid = None

    def interrupt(self) -> bool:
        # Take and clear together so a second interrupt can't hit a reused pgid.
        with self._lock:
            pgid, self._pgid = self._pgid, None
        if pgid is None:
            return False
        try:
            os.killpg(pgid, signal.SIGINT)
        except OSError as e:
            logger.debug("interrupt of process group %s not delivered: %s", pgid, e)
            return False
        logger.info("sent SIGINT to process group %s", pgid)
        return True

    def is_running(self) -> bool:
        with self._lock:
            return self._pgid is not None


class RunningFlagController(InterruptController):
    """No process groups here: remember only that something is running."""

    def __init__(self) -> None:
        super().__init__()
        self._running = False

    def configure_child(self, popen_kwargs: dict) -> dict:
        return dict(popen_kwargs)

    def record_child(self, pid: int | None) -> None:
        with self._lock:
            self._running = True

    def clear(self) -> None:
        with self._lock:
            self._running = False

    def interrupt(self) -> bool:
        with self._lock:
            self._running = False
        return False

    def is_running(self) -> bool:
        with self._lock:
            return self._running


def supports_process_groups() -> bool:
    return sys.platform != "win32" and hasattr(os, "killpg")


def make_interrupt_controller() -> InterruptController:
    if supports_process_groups():
        return ProcessGroupController()
    return RunningFlagController()


def run_command(controller: InterruptController, argv: list[str], **popen_kwargs) -> int:
    """Spawn `argv`, track it on `controller` until it exits, return its exit code."""
    kwargs = controller.configure_child(popen_kwargs)
    try:
        proc = subprocess.Popen(argv, **kwargs)
    except OSError:
        controller.clear()
        raise
    controller.record_child(proc.pid)
    try:
        return proc.wait()
    finally:
        controller.clear()
