from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 2
DEFAULT_MAX_POLL_INTERVAL_MS = 32

ServiceFn = Callable[[int], Optional[Any]]


def _check_intervals(poll_interval_ms: int, max_poll_interval_ms: int) -> None:
    if poll_interval_ms <= 0:
        raise ValueError("poll_interval_ms must be > 0")
    if max_poll_interval_ms < poll_interval_ms:
        raise ValueError("max_poll_interval_ms must be >= poll_interval_ms")


class AdaptivePoller:
    """
    Calls service(timeout_ms) in a loop with exponential idle backoff.

    After an iteration that produced an event the interval drops back to
    poll_interval_ms; after an idle one it doubles, capped at
    max_poll_interval_ms. The loop checks `running` once per iteration, so
    stop() never interrupts a service() call in flight. If service() raises,
    the error goes to on_error and this run ends; run()/start() may be
    called again afterwards.

    At most one loop is active per poller, whether it was entered through
    run() or start(). Asking for another while one is active does nothing;
    asking while one is still winding down after stop() waits for it first.
    """

    def __init__(self, service: ServiceFn, *,
                 poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
                 max_poll_interval_ms: int = DEFAULT_MAX_POLL_INTERVAL_MS,
                 on_error: Optional[Callable[[Exception], None]] = None,
                 on_start: Optional[Callable[[], None]] = None,
                 name: str = "adaptive-poller"):
        _check_intervals(poll_interval_ms, max_poll_interval_ms)
        self._service = service
        self.poll_interval_ms = int(poll_interval_ms)
        self.max_poll_interval_ms = int(max_poll_interval_ms)
        self.current_interval = self.poll_interval_ms
        self.on_error = on_error
        self.on_start = on_start
        self.name = name
        self.iterations = 0
        self.running = False
        self._lock = threading.Lock()
        self._active = False            # a _loop is executing, on any thread
        self._loop_ident: Optional[int] = None
        self._done = threading.Event()
        self._done.set()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._active

    def step(self) -> Optional[Any]:
        """One service() call plus the interval update, without waiting."""
        event = self._service(self.current_interval)
        self.iterations += 1
        if event is not None:
            self.current_interval = self.poll_interval_ms
        else:
            self.current_interval = min(self.current_interval * 2, self.max_poll_interval_ms)
        return event

    def run(self, poll_interval_ms: Optional[int] = None,
            max_poll_interval_ms: Optional[int] = None,
            on_start: Optional[Callable[[], None]] = None) -> None:
        """
        Loop in the calling thread until stop() or a service() failure.
        If a loop is already active, block until it ends instead.
        """
        if not self._claim(poll_interval_ms, max_poll_interval_ms, on_start):
            self.join()
            return
        self._loop()

    def start(self, poll_interval_ms: Optional[int] = None,
              max_poll_interval_ms: Optional[int] = None,
              on_start: Optional[Callable[[], None]] = None) -> Optional[threading.Thread]:
        """
        Run the loop on a daemon thread. No-op if a loop is already active;
        the active loop's thread is returned then (None when it runs in a
        caller's thread through run()).
        """
        thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        if not self._claim(poll_interval_ms, max_poll_interval_ms, on_start, thread=thread):
            return self._thread
        thread.start()
        return thread

    def _claim(self, poll_interval_ms: Optional[int], max_poll_interval_ms: Optional[int],
               on_start: Optional[Callable[[], None]], *,
               thread: Optional[threading.Thread] = None) -> bool:
        # arm a new run unless one is active; a stopping run is waited out
        while True:
            with self._lock:
                if not self._active:
                    base = self.poll_interval_ms if poll_interval_ms is None else int(poll_interval_ms)
                    cap = self.max_poll_interval_ms if max_poll_interval_ms is None else int(max_poll_interval_ms)
                    _check_intervals(base, cap)
                    self.poll_interval_ms, self.max_poll_interval_ms = base, cap
                    if on_start is not None:
                        self.on_start = on_start
                    self._active = True
                    self.running = True
                    self._thread = thread
                    self._done.clear()
                    self._wake.clear()
                    self.current_interval = self.poll_interval_ms
                    return True
                if self.running or self._loop_ident == threading.get_ident():
                    return False
                done = self._done
            done.wait()

    def _loop(self) -> None:
        self._loop_ident = threading.get_ident()
        log.debug("%s started", self.name)
        try:
            if self.on_start is not None:
                self.on_start()
            while self.running:
                try:
                    self.step()
                except Exception as e:
                    log.warning("%s: service() failed, stopping loop: %s", self.name, e)
                    if self.on_error is not None:
                        self.on_error(e)
                    break
                self._wake.wait(self.current_interval / 1000.0)
        finally:
            with self._lock:
                self.running = False
                self._active = False
                self._loop_ident = None
            self._done.set()
            log.debug("%s stopped after %d iterations", self.name, self.iterations)

    def stop(self) -> None:
        self.running = False
        self._wake.set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the active loop to end. Returns False on timeout."""
        if self._loop_ident == threading.get_ident():
            return False
        return self._done.wait(timeout)
