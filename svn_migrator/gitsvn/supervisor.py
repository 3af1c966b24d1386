"""
Supervised execution of long-running, non-interactive child processes.

Each run starts three threads for the lifetime of the child: a stdout reader,
a stderr reader and a monitor. Threads never touch caller state; they post
events to a queue that the calling thread drains, so callbacks (which write to
the job record) always run on the caller's thread. The only value shared
between threads is the lock-guarded ``OutputClock``.
"""

from __future__ import annotations
import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, IO, List, Optional, Sequence
from svn_migrator.gitsvn.process_health import ProcessHealth, default_process_health

log = logging.getLogger(__name__)

LineCallback = Callable[[str], None]
EventCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class SupervisorLimits:
    warning_after: float = 300
    stuck_after: float = 600
    kill_after: float = 1800
    max_runtime: float = 7200
    poll_interval: float = 30
    kill_grace: float = 5
    idle_cpu_percent: float = 1.0
    busy_cpu_percent: float = 50.0

    @classmethod
    def from_settings(cls, settings) -> "SupervisorLimits":
        return cls(
            warning_after=settings.gitsvn_output_warning,
            stuck_after=settings.gitsvn_output_timeout,
            kill_after=settings.gitsvn_kill_timeout,
            max_runtime=settings.gitsvn_max_runtime,
            poll_interval=settings.gitsvn_monitor_interval,
            kill_grace=settings.gitsvn_kill_grace,
            idle_cpu_percent=settings.gitsvn_idle_cpu_percent,
        )


class OutputClock:
    """Time of the child's most recent output line."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._last = clock()

    def touch(self) -> None:
        with self._lock:
            self._last = self._clock()

    def silence(self) -> float:
        with self._lock:
            return self._clock() - self._last


@dataclass
class ProcessResult:
    args: List[str]
    returncode: Optional[int]
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)
    duration: float = 0.0
    terminated_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.terminated_reason is None

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr)


class ProcessSupervisor:
    def __init__(self, limits: SupervisorLimits | None = None, health: ProcessHealth | None = None,
                 on_event: EventCallback | None = None):
        self.limits = limits or SupervisorLimits()
        self.health = health or default_process_health()
        self.on_event = on_event

    def run(self, cmd: Sequence[str], cwd: Path | str | None = None,
            on_stdout: LineCallback | None = None, on_stderr: LineCallback | None = None,
            env: dict | None = None) -> ProcessResult:
        args = [str(a) for a in cmd]
        started = time.monotonic()
        proc = subprocess.Popen(
            args,
            cwd=str(cwd) if cwd else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            bufsize=1,
            env=env,
        )
        result = ProcessResult(args=args, returncode=None)
        self._emit("info", f"Started {args[0]} {' '.join(args[1:3])} with PID {proc.pid}")

        events: "queue.Queue[tuple[str, str]]" = queue.Queue()
        clock = OutputClock()
        stop = threading.Event()
        readers = [
            threading.Thread(target=self._read, args=(proc.stdout, "stdout", events, clock), daemon=True),
            threading.Thread(target=self._read, args=(proc.stderr, "stderr", events, clock), daemon=True),
        ]
        monitor = threading.Thread(target=self._monitor, args=(proc, clock, stop, events, started), daemon=True)
        for thread in readers:
            thread.start()
        monitor.start()

        try:
            while True:
                try:
                    kind, text = events.get(timeout=0.2)
                except queue.Empty:
                    if not any(t.is_alive() for t in readers):
                        break
                    continue
                self._dispatch(kind, text, result, on_stdout, on_stderr)

            result.returncode = proc.wait()
        finally:
            stop.set()
            if proc.poll() is None:
                self._terminate(proc)
                result.returncode = proc.wait()
            monitor.join()
            for thread in readers:
                thread.join()
            while not events.empty():
                kind, text = events.get_nowait()
                self._dispatch(kind, text, result, on_stdout, on_stderr)

        result.duration = time.monotonic() - started
        self._emit("info", f"Process completed in {result.duration:.1f} seconds (exit code {result.returncode})")
        return result

    def _dispatch(self, kind: str, text: str, result: ProcessResult,
                  on_stdout: LineCallback | None, on_stderr: LineCallback | None) -> None:
        if kind == "stdout":
            result.stdout.append(text)
            if on_stdout:
                on_stdout(text)
        elif kind == "stderr":
            result.stderr.append(text)
            if on_stderr:
                on_stderr(text)
        elif kind == "terminated":
            result.terminated_reason = text
        else:
            self._emit(kind, text)

    def _emit(self, level: str, message: str) -> None:
        getattr(log, level if level in ("warning", "error") else "info")(message)
        if self.on_event:
            self.on_event(level, message)

    @staticmethod
    def _read(pipe: IO[str], kind: str, events: "queue.Queue", clock: OutputClock) -> None:
        try:
            for line in iter(pipe.readline, ""):
                clock.touch()
                events.put((kind, line.rstrip("\r\n")))
        except (OSError, ValueError) as e:
            events.put(("error", f"{kind} reader error: {e}"))
        finally:
            pipe.close()

    def _monitor(self, proc: subprocess.Popen, clock: OutputClock, stop: threading.Event,
                 events: "queue.Queue", started: float) -> None:
        limits = self.limits
        while not stop.wait(limits.poll_interval):
            if proc.poll() is not None:
                return

            elapsed = time.monotonic() - started
            if elapsed > limits.max_runtime:
                events.put(("error", f"Process exceeded {limits.max_runtime:.0f}s limit, terminating..."))
                self._terminate(proc)
                events.put(("terminated", "max_runtime"))
                return

            silence = clock.silence()
            if silence <= limits.warning_after:
                continue

            cpu = self.health.cpu_percent(proc.pid)
            events.put(("warning", f"No output for {silence:.0f}s (CPU: {cpu}%)"))
            if cpu < limits.idle_cpu_percent and silence > limits.stuck_after:
                events.put(("error", "Process appears stuck (low CPU), considering termination..."))
                if silence > limits.kill_after:
                    events.put(("error", f"Terminating stuck process after {limits.kill_after:.0f}s of silence"))
                    self._terminate(proc)
                    events.put(("terminated", "stalled"))
                    return
            elif cpu > limits.busy_cpu_percent:
                events.put(("info", "Process is actively working (high CPU), continuing..."))

    def _terminate(self, proc: subprocess.Popen) -> None:
        try:
            proc.terminate()
            proc.wait(timeout=self.limits.kill_grace)
        except subprocess.TimeoutExpired:
            proc.kill()
