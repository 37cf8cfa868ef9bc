"""
Debugger bootstrap and interactive debug sessions.

GdbBootstrap writes the .gdbinit that points gdb at the image and the local
debug server:

    file <image>
    target remote localhost:7777
    monitor reset halt
    load

DebugSession mirrors the usual manual workflow: stop any stale debug server
(lmicdi), start a fresh one in the background, run gdb interactively, and
stop the server when gdb exits.
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import List, Optional

import psutil

from ..errors import ExternalToolError

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "localhost:7777"
BOOTSTRAP_MARKER = "# Generated by cmbuild"


class GdbBootstrap:
    """Renders and writes the debugger bootstrap file."""

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT):
        self.endpoint = endpoint

    def render(self, image: Path) -> str:
        lines = [
            BOOTSTRAP_MARKER,
            f"file {Path(image).as_posix()}",
            f"target remote {self.endpoint}",
            "monitor reset halt",
            "load",
        ]
        return "\n".join(lines) + "\n"

    @staticmethod
    def is_generated(path: Path) -> bool:
        """Whether a bootstrap file was written by cmbuild."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.readline().rstrip("\n") == BOOTSTRAP_MARKER
        except OSError:
            return False

    def write(self, image: Path, output: Path) -> Path:
        """Write the bootstrap for an image.

        Args:
            image: Linked image (.axf)
            output: Bootstrap file to write (usually <project>/.gdbinit)

        Returns:
            Path to the written file
        """
        output = Path(output)
        temp_file = output.with_name(output.name + ".tmp")
        temp_file.write_text(self.render(image), encoding="utf-8")
        os.replace(temp_file, output)
        logger.debug(f"Wrote debugger bootstrap {output}")
        return output


def find_processes(name: str) -> List[psutil.Process]:
    """Find running processes whose executable name matches."""
    found = []
    for proc in psutil.process_iter(["name"]):
        try:
            if proc.info["name"] == name:
                found.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return found


def stop_processes(processes: List[psutil.Process], timeout: float = 3) -> int:
    """Terminate processes, force killing those that do not exit in time.

    Returns:
        Number of processes signalled
    """
    signalled = []
    for proc in processes:
        try:
            proc.terminate()
            signalled.append(proc)
            logger.debug(f"Terminated process {proc.pid}")
        except psutil.NoSuchProcess:
            pass  # Already dead
        except psutil.AccessDenied as e:
            logger.warning(f"Failed to terminate process {proc.pid}: {e}")

    _gone, alive = psutil.wait_procs(signalled, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            logger.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass
    return len(signalled)


class DebugSession:
    """Runs gdb against a freshly started local debug server."""

    def __init__(
        self,
        gdb: Path,
        gdbinit: Path,
        server: str = "lmicdi",
        cwd: Optional[Path] = None,
        startup_delay: float = 0.5,
        log_file: Optional[Path] = None,
    ):
        """Initialize debug session.

        Args:
            gdb: arm-none-eabi-gdb executable
            gdbinit: Bootstrap file written by GdbBootstrap
            server: Debug server executable
            cwd: Working directory for gdb and the server
            startup_delay: Seconds to wait for the server to start listening
            log_file: File receiving the server output (next to gdbinit when None)
        """
        self.gdb = Path(gdb)
        self.gdbinit = Path(gdbinit)
        self.server = server
        self.cwd = Path(cwd) if cwd is not None else self.gdbinit.parent
        self.startup_delay = startup_delay
        if log_file is None:
            log_file = self.gdbinit.with_name(f"{Path(server).name}.log")
        self.log_file = Path(log_file)
        self._server_proc: Optional[subprocess.Popen] = None

    def stop_stale_servers(self) -> int:
        stale = find_processes(self.server)
        if stale:
            logger.debug(f"Stopping {len(stale)} stale {self.server} process(es)")
        return stop_processes(stale)

    def start_server(self) -> subprocess.Popen:
        """Start the debug server in the background.

        Raises:
            ExternalToolError: If the server cannot be started or exits at once
        """
        # Never a pipe: nothing drains it while gdb runs
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "wb") as log:
            try:
                proc = subprocess.Popen(
                    [self.server],
                    cwd=self.cwd,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                )
            except OSError as e:
                raise ExternalToolError(self.server, -1, f"Failed to start {self.server}: {e}")

        time.sleep(self.startup_delay)
        if proc.poll() is not None:
            output = self.log_file.read_text(encoding="utf-8", errors="replace")
            raise ExternalToolError(self.server, proc.returncode, output)

        self._server_proc = proc
        return proc

    def stop_server(self) -> None:
        proc = self._server_proc
        self._server_proc = None
        if proc is None or proc.poll() is not None:
            return
        try:
            stop_processes([psutil.Process(proc.pid)])
        except psutil.NoSuchProcess:
            pass

    def run(self) -> int:
        """Run one interactive session.

        Returns:
            gdb exit code (0)

        Raises:
            ExternalToolError: If the server or gdb fails
        """
        self.stop_stale_servers()
        self.start_server()
        try:
            cmd = [str(self.gdb), "-x", str(self.gdbinit)]
            logger.debug("Running: " + " ".join(cmd))
            try:
                result = subprocess.run(cmd, cwd=self.cwd, check=False)
            except OSError as e:
                raise ExternalToolError(self.gdb.name, -1, f"Failed to run gdb: {e}")
            if result.returncode != 0:
                raise ExternalToolError(self.gdb.name, result.returncode, "")
            return result.returncode
        finally:
            self.stop_server()
