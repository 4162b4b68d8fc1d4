#!/usr/bin/env python3
"""
Compatibility Tool Service

Owns one Wine runtime and its prefix: makes sure the Wine build and DXVK are
on disk, keeps the prefix initialized, and starts processes inside it.
"""

import os
import shlex
import logging
import tempfile
import threading
from pathlib import Path
from subprocess import Popen
from typing import Optional, Dict, List, Union, Sequence, Callable

from ..errors import (
    ToolProvisioningError,
    ProcessSpawnError,
    PrefixStateError,
    WineOutputParseError,
)
from ..handlers.dxvk_handler import DxvkHandler
from ..handlers.filesystem_handler import FileSystemHandler
from ..handlers.game_fixes_handler import GameFixesHandler
from ..handlers.logging_handler import WineLogSink
from ..handlers.subprocess_utils import WineProcess, get_clean_subprocess_env
from ..handlers.wine_utils import WineUtils
from ..models.configuration import WineSettings, WineStartupType, DxvkHudType

logger = logging.getLogger(__name__)

WINE_TKG_RELEASE_URL = "https://github.com/Kron4ek/Wine-Builds/releases/download/7.6/wine-7.6-staging-tkg-amd64.tar.xz"
WINE_TKG_RELEASE_NAME = "wine-7.6-staging-tkg-amd64"

Command = Union[str, Sequence[str]]


class CompatibilityToolService:
    """
    Service managing the Wine runtime and prefix for one session.

    Only one service should target a given prefix at a time. Use it as a
    context manager (or call close()) so the Wine log file is closed.
    """

    def __init__(self, wine_settings: WineSettings, hud_type: DxvkHudType, tools_dir: Path,
                 filesystem_handler: Optional[FileSystemHandler] = None,
                 dxvk_handler: Optional[DxvkHandler] = None,
                 game_fixes_handler: Optional[GameFixesHandler] = None):
        self.wine_settings = wine_settings
        self.hud_type = hud_type
        self.tool_directory = Path(tools_dir) / "beta"

        if wine_settings.startup_type == WineStartupType.CUSTOM:
            if not wine_settings.custom_bin_path or not Path(wine_settings.custom_bin_path).is_dir():
                raise PrefixStateError(
                    f"Custom Wine bin directory does not exist: {wine_settings.custom_bin_path}"
                )

        self.filesystem_handler = filesystem_handler or FileSystemHandler()
        self.dxvk_handler = dxvk_handler or DxvkHandler(tools_dir, self.filesystem_handler)
        self.game_fixes_handler = game_fixes_handler or GameFixesHandler()

        self._is_tool_ready = False
        # Set by frontends that want download progress, receives (downloaded, total)
        self.download_progress_callback: Optional[Callable[[int, int], None]] = None
        self._ensure_lock = threading.Lock()

        self.tool_directory.mkdir(parents=True, exist_ok=True)
        self.wine_settings.prefix.mkdir(parents=True, exist_ok=True)

        self.log_sink = WineLogSink(wine_settings.log_file)

    @property
    def wine_bin_path(self) -> Path:
        if self.wine_settings.startup_type == WineStartupType.MANAGED:
            return self.tool_directory / WINE_TKG_RELEASE_NAME / "bin"
        return Path(self.wine_settings.custom_bin_path)

    @property
    def wine64_path(self) -> Path:
        return self.wine_bin_path / "wine64"

    @property
    def wineserver_path(self) -> Path:
        return self.wine_bin_path / "wineserver"

    @property
    def is_tool_downloaded(self) -> bool:
        return self.wine64_path.is_file() and self.wine_settings.prefix.is_dir()

    @property
    def is_tool_ready(self) -> bool:
        return self._is_tool_ready

    # ------------------------------------------------------------------
    # Tool provisioning
    # ------------------------------------------------------------------

    def ensure_tool(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Make sure Wine is on disk, downloading and setting it up on first use.

        The presence of wine64 is the only check; an existing binary is
        assumed valid. Raises ToolProvisioningError (ToolCancelledError when
        cancelled) and leaves is_tool_ready False on failure.
        """
        with self._ensure_lock:
            if self.wine64_path.is_file():
                self._is_tool_ready = True
                return

            if self.wine_settings.startup_type == WineStartupType.CUSTOM:
                raise ToolProvisioningError(f"Custom Wine binary not found at {self.wine64_path}")

            logger.info("Compatibility tool does not exist, downloading")

            fd, temp_name = tempfile.mkstemp(prefix="winekeeper-", suffix=".tar.xz")
            os.close(fd)
            temp_path = Path(temp_name)
            release_dir = self.tool_directory / WINE_TKG_RELEASE_NAME
            try:
                self.filesystem_handler.download_file(WINE_TKG_RELEASE_URL, temp_path, overwrite=True,
                                                      progress_callback=self.download_progress_callback,
                                                      cancel_event=cancel_event)
                try:
                    self._install_release(temp_path, cancel_event)
                except Exception:
                    # wine64 on disk is the readiness gate, so no half-finished setup may keep it
                    logger.warning(f"Removing unfinished Wine install {release_dir}")
                    self.filesystem_handler.remove_directory(release_dir)
                    raise
            finally:
                temp_path.unlink(missing_ok=True)

            self._is_tool_ready = True

    def _install_release(self, archive_path: Path, cancel_event: Optional[threading.Event]) -> None:
        """Extract the Wine archive, warm up the prefix and install DXVK into it."""
        self.filesystem_handler.extract_archive(archive_path, self.tool_directory, cancel_event=cancel_event)
        if not self.wine64_path.is_file():
            raise ToolProvisioningError(f"Wine archive did not contain {self.wine64_path}")

        logger.info(f"Compatibility tool successfully extracted to {self.tool_directory}")

        try:
            self.ensure_prefix()
        except (ProcessSpawnError, PrefixStateError) as e:
            raise ToolProvisioningError(f"Could not initialize prefix with the new Wine build: {e}") from e
        self.dxvk_handler.install_dxvk(self.wine_settings.prefix, cancel_event=cancel_event)

    def ensure_tool_async(self, callback: Callable[[bool, Optional[Exception]], None],
                          cancel_event: Optional[threading.Event] = None) -> threading.Thread:
        """
        Run ensure_tool in a background thread.

        Args:
            callback: Called with (True, None) on success or (False, error) on failure
        """
        def ensure_worker():
            try:
                self.ensure_tool(cancel_event=cancel_event)
            except Exception as e:
                logger.error(f"Background tool setup failed: {e}")
                callback(False, e)
                return
            callback(True, None)

        thread = threading.Thread(target=ensure_worker, name="winekeeper-ensure-tool", daemon=True)
        thread.start()
        return thread

    # ------------------------------------------------------------------
    # Prefix management
    # ------------------------------------------------------------------

    def ensure_prefix(self) -> int:
        """Run a trivial command so Wine finishes any lazy prefix setup. Blocks until it exits."""
        with self.run_in_prefix(["cmd", "/c", "dir", "%userprofile%/Documents", ">", "nul"]) as proc:
            returncode = proc.wait()
        if returncode != 0:
            logger.warning(f"Prefix warm-up exited with code {returncode}")
        return returncode

    def reset_prefix(self) -> int:
        """
        Delete the prefix and build a fresh one.

        Destructive. No process may be running in the prefix while this runs.
        """
        prefix = self.wine_settings.prefix
        if self.filesystem_handler.remove_directory(prefix):
            logger.info(f"Deleted prefix {prefix}")
        prefix.mkdir(parents=True, exist_ok=True)
        return self.ensure_prefix()

    def ensure_game_fixes(self, game_config_dir: Path) -> Path:
        self.ensure_prefix()
        return self.game_fixes_handler.add_default_config(game_config_dir)

    # ------------------------------------------------------------------
    # Process launching
    # ------------------------------------------------------------------

    def build_environment(self, environment: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Inherited environment, then Wine defaults, then caller overrides."""
        return WineUtils.merge_environment(
            get_clean_subprocess_env(),
            WineUtils.build_wine_environment(self.wine_settings, self.hud_type),
            environment,
        )

    def run_in_prefix(self, command: Command, working_directory: Optional[Path] = None,
                      environment: Optional[Dict[str, str]] = None,
                      redirect_output: bool = False) -> WineProcess:
        """
        Start wine64 with the given arguments inside the prefix and return at once.

        command is preferably a list of arguments, passed through untouched.
        A string is split with shell rules (legacy form, never use it with
        untrusted input). The caller owns the returned WineProcess.
        """
        if isinstance(command, str):
            args = shlex.split(command)
        else:
            args = [str(arg) for arg in command]

        if not self.wine64_path.is_file():
            raise ProcessSpawnError(f"Wine binary not found at {self.wine64_path}")
        if not self.wine_settings.prefix.is_dir():
            raise PrefixStateError(f"Wine prefix does not exist: {self.wine_settings.prefix}")
        if working_directory and not Path(working_directory).is_dir():
            raise ProcessSpawnError(f"Working directory does not exist: {working_directory}")

        env = self.build_environment(environment)
        cmd = [str(self.wine64_path)] + args
        logger.debug(f"Running in prefix: {cmd}")
        try:
            return WineProcess(cmd, env=env, cwd=str(working_directory) if working_directory else None,
                               capture_stdout=redirect_output, stderr_sink=self.log_sink)
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start {cmd[0]}: {e}") from e

    def _run_and_capture(self, args: List[str]) -> str:
        with self.run_in_prefix(args, redirect_output=True) as proc:
            return proc.read_stdout()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_process_ids(self, executable_name: str) -> List[int]:
        output = self._run_and_capture(["winedbg", "--command", "info proc"])
        return WineUtils.parse_process_ids(output, executable_name)

    def get_process_id(self, executable_name: str) -> Optional[int]:
        """First pid of executable_name in the prefix, or None when it is not running."""
        pids = self.get_process_ids(executable_name)
        return pids[0] if pids else None

    def unix_to_wine_path(self, unix_path: Union[str, Path]) -> str:
        output = self._run_and_capture(["winepath", "--windows", str(unix_path)])
        wine_path = WineUtils.last_output_line(output)
        if wine_path is None:
            raise WineOutputParseError(f"winepath printed nothing for {unix_path}")
        return wine_path

    def add_registry_key(self, key: str, value: str, data: str) -> int:
        with self.run_in_prefix(["reg", "add", key, "/v", value, "/d", data, "/f"]) as proc:
            returncode = proc.wait()
        if returncode != 0:
            logger.warning(f"reg add {key} /v {value} exited with code {returncode}")
        return returncode

    def kill(self) -> Popen:
        """Ask wineserver to kill every process in the prefix. Does not wait."""
        if not self.wineserver_path.is_file():
            raise ProcessSpawnError(f"wineserver not found at {self.wineserver_path}")
        env = get_clean_subprocess_env({"WINEPREFIX": str(self.wine_settings.prefix)})
        logger.info(f"Killing all processes in {self.wine_settings.prefix}")
        try:
            return Popen([str(self.wineserver_path), "-k"], env=env)
        except OSError as e:
            raise ProcessSpawnError(f"Failed to start wineserver: {e}") from e

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.log_sink.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
