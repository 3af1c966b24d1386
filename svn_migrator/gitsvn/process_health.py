"""
Process and host introspection used by the supervisor and the batch fetcher.

``PsutilProcessHealth`` is the portable default; ``ProcfsProcessHealth`` reads
``/proc`` directly on Linux for memory and CPU figures.
"""

from __future__ import annotations
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional, Protocol
import psutil

log = logging.getLogger(__name__)


class ProcessHealth(Protocol):
    def cpu_percent(self, pid: int) -> float: ...
    def available_memory_mb(self) -> Optional[int]: ...
    def is_alive(self, pid: int) -> bool: ...
    def git_processes_in(self, directory: Path) -> List[int]: ...


class PsutilProcessHealth:
    def __init__(self, sample_seconds: float = 0.5):
        self.sample_seconds = sample_seconds

    def cpu_percent(self, pid: int) -> float:
        try:
            return psutil.Process(pid).cpu_percent(interval=self.sample_seconds)
        except psutil.Error:
            return 0.0

    def available_memory_mb(self) -> Optional[int]:
        return int(psutil.virtual_memory().available // (1024 * 1024))

    def is_alive(self, pid: int) -> bool:
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.Error:
            return False

    def git_processes_in(self, directory: Path) -> List[int]:
        root = str(Path(directory).resolve())
        pids = []
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            try:
                name = proc.info.get("name") or ""
                cmdline = " ".join(proc.info.get("cmdline") or [])
                if "git" not in name and "git" not in cmdline:
                    continue
                cwd = proc.cwd()
            except psutil.Error:
                # Gone, or not ours to inspect.
                continue
            if cwd == root or cwd.startswith(root + os.sep):
                pids.append(proc.info["pid"])
        return pids


class ProcfsProcessHealth(PsutilProcessHealth):
    """Linux specialization: reads /proc instead of sampling through psutil."""

    proc_root = Path("/proc")

    def available_memory_mb(self) -> Optional[int]:
        try:
            for line in (self.proc_root / "meminfo").read_text().splitlines():
                if line.startswith("MemAvailable:"):
                    return int(line.split()[1]) // 1024
        except OSError:
            pass
        return super().available_memory_mb()

    def _cpu_ticks(self, pid: int) -> Optional[int]:
        try:
            stat = (self.proc_root / str(pid) / "stat").read_text()
        except OSError:
            return None
        # comm may contain spaces; fields after the closing paren are fixed.
        fields = stat.rsplit(")", 1)[-1].split()
        return int(fields[11]) + int(fields[12])

    def cpu_percent(self, pid: int) -> float:
        before = self._cpu_ticks(pid)
        if before is None:
            return 0.0
        time.sleep(self.sample_seconds)
        after = self._cpu_ticks(pid)
        if after is None:
            return 0.0
        ticks_per_second = os.sysconf("SC_CLK_TCK")
        return round((after - before) / ticks_per_second / self.sample_seconds * 100, 1)


def default_process_health() -> ProcessHealth:
    if sys.platform.startswith("linux") and Path("/proc/meminfo").exists():
        return ProcfsProcessHealth()
    return PsutilProcessHealth()
