"""Command-run attestor.

Runs the step's command in the working directory and records what
happened: the argument vector, captured output and exit code. With
tracing enabled, a background thread samples ``/proc`` while the command
runs and records every process in its tree.
"""

from __future__ import annotations

import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from stepwitness.attestation.base import AttestationContext, Attestor, RunType
from stepwitness.attestation.registry import register_attestor
from stepwitness.errors import ObservationError

PROC_ROOT = Path("/proc")
TRACE_INTERVAL = 0.01  # seconds


def _read_proc(pid: int) -> dict[str, Any] | None:
    """Read one process entry, or None if it has already exited."""
    base = PROC_ROOT / str(pid)
    try:
        stat = (base / "stat").read_text()
        raw_cmdline = (base / "cmdline").read_bytes()
    except OSError:
        return None

    # comm may contain spaces and parentheses; fields resume after the last ")"
    fields = stat[stat.rfind(")") + 2:].split()
    if len(fields) < 2:
        return None
    try:
        program = os.readlink(base / "exe")
    except OSError:
        program = ""

    return {
        "pid": pid,
        "ppid": int(fields[1]),
        "program": program,
        "cmdline": [part.decode("utf-8", errors="replace") for part in raw_cmdline.split(b"\0") if part],
    }


class ProcessTracer:
    """Samples the process tree rooted at one pid until stopped."""

    def __init__(self, root_pid: int, interval: float = TRACE_INTERVAL):
        self.root_pid = root_pid
        self.interval = interval
        self.processes: dict[int, dict[str, Any]] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._sample()
        self._thread = threading.Thread(target=self._loop, name="commandrun-tracer", daemon=True)
        self._thread.start()

    def stop(self) -> list[dict[str, Any]]:
        """Stop sampling and return processes ordered by first sighting."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
        return list(self.processes.values())

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self._sample()

    def _sample(self) -> None:
        try:
            pids = [int(entry.name) for entry in PROC_ROOT.iterdir() if entry.name.isdigit()]
        except OSError:
            return

        entries = {}
        for pid in pids:
            entry = _read_proc(pid)
            if entry is not None:
                entries[pid] = entry

        tree = {self.root_pid} | set(self.processes)
        changed = True
        while changed:
            changed = False
            for pid, entry in entries.items():
                if pid not in tree and entry["ppid"] in tree:
                    tree.add(pid)
                    changed = True

        for pid in sorted(tree):
            if pid not in self.processes and pid in entries:
                self.processes[pid] = entries[pid]


def _pump(
    source: IO[bytes],
    sink: IO[bytes] | None,
    buffer: list[bytes],
    errors: list[OSError],
) -> None:
    """Copy a child stream into a buffer, echoing it when a sink is given.

    A failed echo write stops echoing and is appended to errors; the child
    stream is still drained to the end so the child never blocks on it.
    """
    try:
        for chunk in iter(lambda: source.read1(65536), b""):  # type: ignore[attr-defined]
            buffer.append(chunk)
            if sink is None:
                continue
            try:
                sink.write(chunk)
                sink.flush()
            except OSError as e:
                errors.append(e)
                sink = None
    finally:
        source.close()


def _stream(name: str) -> IO[bytes] | None:
    stream = getattr(sys, name)
    return getattr(stream, "buffer", None)


@register_attestor
@dataclass
class CommandRun(Attestor):
    """Executes the command and records its output and exit status."""

    type = "command-run"
    run_type = RunType.EXECUTE

    command: tuple[str, ...] = ()
    tracing: bool = False
    silent: bool = False

    def observe(self, ctx: AttestationContext) -> dict[str, Any]:
        if not self.command:
            raise ObservationError(self.type, "no command to run")
        if self.tracing and not PROC_ROOT.is_dir():
            raise ObservationError(self.type, "tracing requires a /proc file system")

        try:
            process = subprocess.Popen(
                list(self.command),
                cwd=ctx.working_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise ObservationError(self.type, f"failed to start {self.command[0]}: {e}") from e

        tracer = ProcessTracer(process.pid) if self.tracing else None
        if tracer is not None:
            tracer.start()

        stdout: list[bytes] = []
        stderr: list[bytes] = []
        echo_errors: list[OSError] = []
        pumps = [
            threading.Thread(
                target=_pump,
                args=(process.stdout, None if self.silent else _stream("stdout"), stdout, echo_errors),
                daemon=True,
            ),
            threading.Thread(
                target=_pump,
                args=(process.stderr, None if self.silent else _stream("stderr"), stderr, echo_errors),
                daemon=True,
            ),
        ]
        for pump in pumps:
            pump.start()

        exit_code = process.wait()
        for pump in pumps:
            pump.join()
        processes = tracer.stop() if tracer is not None else None

        claim: dict[str, Any] = {
            "cmd": list(self.command),
            "stdout": b"".join(stdout).decode("utf-8", errors="replace"),
            "stderr": b"".join(stderr).decode("utf-8", errors="replace"),
            "exitcode": exit_code,
        }
        if processes is not None:
            claim["processes"] = processes

        if exit_code != 0:
            raise ObservationError(self.type, f"command exited with status {exit_code}")
        if echo_errors:
            raise ObservationError(self.type, f"failed to echo command output: {echo_errors[0]}")
        return claim
