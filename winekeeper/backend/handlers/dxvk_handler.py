#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DXVK Handler Module
Installs the DXVK Direct3D-to-Vulkan DLLs into a Wine prefix
"""

import shutil
import logging
import tempfile
import threading
from pathlib import Path
from typing import Optional

from ..errors import ToolProvisioningError
from .filesystem_handler import FileSystemHandler

logger = logging.getLogger(__name__)

DXVK_DOWNLOAD_URL = "https://github.com/Sporif/dxvk-async/releases/download/1.10.1/dxvk-async-1.10.1.tar.gz"
DXVK_RELEASE_NAME = "dxvk-async-1.10.1"


class DxvkHandler:
    """
    Downloads a pinned DXVK release once into the tools directory and copies
    its DLLs into a prefix (x64 into system32, x32 into syswow64).
    """

    def __init__(self, tools_dir: Path, filesystem_handler: Optional[FileSystemHandler] = None):
        self.dxvk_dir = Path(tools_dir) / "dxvk"
        self.filesystem_handler = filesystem_handler or FileSystemHandler()

    @property
    def release_dir(self) -> Path:
        return self.dxvk_dir / DXVK_RELEASE_NAME

    def is_downloaded(self) -> bool:
        return (self.release_dir / "x64").is_dir() and (self.release_dir / "x32").is_dir()

    def ensure_release(self, cancel_event: Optional[threading.Event] = None) -> Path:
        """Download and extract the DXVK release unless it is already on disk."""
        if self.is_downloaded():
            logger.debug(f"DXVK already present at {self.release_dir}")
            return self.release_dir

        logger.info(f"DXVK not found, downloading {DXVK_RELEASE_NAME}")
        self.dxvk_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="winekeeper-dxvk-") as tmp:
            archive = Path(tmp) / f"{DXVK_RELEASE_NAME}.tar.gz"
            self.filesystem_handler.download_file(DXVK_DOWNLOAD_URL, archive, overwrite=True,
                                                  cancel_event=cancel_event)
            try:
                self.filesystem_handler.extract_archive(archive, self.dxvk_dir, cancel_event=cancel_event)
            except ToolProvisioningError:
                self.filesystem_handler.remove_directory(self.release_dir)
                raise

        if not self.is_downloaded():
            raise ToolProvisioningError(f"DXVK archive did not contain {DXVK_RELEASE_NAME}/x64 and x32")
        return self.release_dir

    def install_dxvk(self, prefix: Path, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Install DXVK into prefix. Existing DLLs of the same name are overwritten.
        Raises ToolProvisioningError on any failure.
        """
        release_dir = self.ensure_release(cancel_event=cancel_event)
        windows_dir = Path(prefix) / "drive_c" / "windows"
        try:
            self._copy_dlls(release_dir / "x64", windows_dir / "system32")
            self._copy_dlls(release_dir / "x32", windows_dir / "syswow64")
        except OSError as e:
            raise ToolProvisioningError(f"Could not install DXVK into {prefix}: {e}") from e
        logger.info(f"DXVK installed into {prefix}")

    @staticmethod
    def _copy_dlls(source: Path, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        for dll in sorted(source.glob("*.dll")):
            dest = target / dll.name
            # Wine creates builtin placeholders as symlinks in some layouts
            if dest.is_symlink():
                dest.unlink()
            shutil.copy2(dll, dest)
            logger.debug(f"Copied {dll.name} to {target}")
