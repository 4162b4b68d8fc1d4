import os
import signal
import subprocess
import sys
import threading
import logging
from typing import Optional, Dict, Sequence

import psutil

logger = logging.getLogger(__name__)


def get_clean_subprocess_env(extra_env=None):
    """
    Returns a copy of os.environ with bundled-runtime variables and other problematic entries removed.
    Optionally merges in extra_env dict.
    """
    env = os.environ.copy()

    # AppImage variables make child processes look like new AppImage launches
    for key in ['APPIMAGE', 'APPDIR', 'ARGV0', 'OWD']:
        env.pop(key, None)

    # PyInstaller bundle variables
    for k in list(env):
        if k.startswith('_MEIPASS'):
            del env[k]

    # A frozen build prepends its own library dir; Wine must see the system libraries
    if getattr(sys, 'frozen', False) and 'LD_LIBRARY_PATH_ORIG' in env:
        env['LD_LIBRARY_PATH'] = env.pop('LD_LIBRARY_PATH_ORIG')

    if extra_env:
        env.update(extra_env)
    return env


class WineProcess:
    """
    A process running inside the Wine prefix.

    stderr is always piped and drained line by line into ``stderr_sink`` on a
    daemon thread; stdout is piped only when ``capture_stdout`` is set.
    The caller owns the handle. Used as a context manager it waits for the
    process on normal exit, cancels it if the block raised, and in both cases
    joins the drain thread and closes the pipes.
    """
    def __init__(self, cmd: Sequence[str], env: Optional[Dict[str, str]] = None, cwd=None,
                 capture_stdout: bool = False, stderr_sink=None):
        self.cmd = list(cmd)
        if env is None:
            self.env = get_clean_subprocess_env()
        else:
            self.env = env
        self.cwd = cwd
        self.capture_stdout = capture_stdout
        self.stderr_sink = stderr_sink
        self.proc = None
        self.process_group_pid = None
        self._drain_thread = None
        self._start_process()

    def _start_process(self):
        self.proc = subprocess.Popen(
            self.cmd,
            stdout=subprocess.PIPE if self.capture_stdout else None,
            stderr=subprocess.PIPE,
            env=self.env,
            cwd=self.cwd,
            text=True,
            encoding='utf-8',
            errors='replace',
            start_new_session=True
        )
        try:
            self.process_group_pid = os.getpgid(self.proc.pid)
        except ProcessLookupError:
            self.process_group_pid = None
        self._drain_thread = threading.Thread(
            target=self._drain_stderr,
            name=f"wine-stderr-{self.proc.pid}",
            daemon=True
        )
        self._drain_thread.start()

    def _drain_stderr(self):
        stream = self.proc.stderr
        try:
            for line in iter(stream.readline, ''):
                if self.stderr_sink is not None:
                    self.stderr_sink.write_line(line)
        except (OSError, ValueError) as e:
            # Pipe closed underneath us by close()
            logger.debug(f"stderr drain for pid {self.proc.pid} stopped: {e}")

    @property
    def pid(self) -> int:
        return self.proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode

    @property
    def stdout(self):
        return self.proc.stdout

    def is_running(self) -> bool:
        return self.proc is not None and self.proc.poll() is None

    def wait(self, timeout=None) -> int:
        """Wait for exit and for the stderr drain to reach EOF."""
        returncode = self.proc.wait(timeout=timeout)
        if self._drain_thread is not None:
            self._drain_thread.join(timeout=timeout)
        return returncode

    def read_stdout(self) -> str:
        """Read all of stdout (blocks until the process closes it) and wait for exit."""
        if self.proc.stdout is None:
            raise ValueError("stdout was not captured for this process")
        output = self.proc.stdout.read()
        self.wait()
        return output

    def cancel(self, timeout_terminate=2, timeout_kill=1):
        """
        Attempt to robustly terminate the process and its children.
        """
        if not self.proc:
            return
        try:
            children = psutil.Process(self.proc.pid).children(recursive=True)
        except psutil.Error:
            children = []

        try:
            self.proc.terminate()
            self.proc.wait(timeout=timeout_terminate)
        except subprocess.TimeoutExpired:
            self.proc.kill()
            try:
                self.proc.wait(timeout=timeout_kill)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process {self.proc.pid} survived SIGKILL")
        except ProcessLookupError:
            pass

        if self.process_group_pid:
            try:
                os.killpg(self.process_group_pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError):
                pass

        for child in children:
            try:
                child.kill()
            except psutil.Error:
                pass

    def close(self):
        """Release the pipes. Does not wait for the process."""
        for stream in (self.proc.stdout, self.proc.stderr):
            if stream is not None and not stream.closed:
                stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None and self.is_running():
                self.cancel()
            if self.proc.stdout is not None and not self.proc.stdout.closed:
                # Unread stdout could fill the pipe and block the child forever
                self.proc.stdout.read()
            self.wait()
        finally:
            self.close()
        return False

    def __repr__(self):
        return f"WineProcess(pid={self.proc.pid}, cmd={self.cmd!r})"
