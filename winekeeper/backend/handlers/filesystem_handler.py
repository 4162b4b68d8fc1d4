"""
FileSystemHandler module for managing file system operations.
This module handles downloads, archive extraction and directory cleanup.
"""

import shutil
import tarfile
import logging
import threading
from pathlib import Path
from typing import Optional, Callable, Iterator

import requests

from ..errors import ToolProvisioningError, ToolCancelledError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 8192
DOWNLOAD_TIMEOUT = 300


class FileSystemHandler:
    def __init__(self):
        # Keep a reference to the module-level logger for instance methods
        self.logger = logger

    def download_file(self, url: str, destination_path: Path, overwrite: bool = False,
                      progress_callback: Optional[Callable[[int, int], None]] = None,
                      cancel_event: Optional[threading.Event] = None) -> Path:
        """
        Downloads a file from a URL to a destination path.

        progress_callback receives (downloaded_bytes, total_bytes); total is 0
        when the server sends no content-length. Raises ToolProvisioningError
        on any network or write failure, ToolCancelledError when cancel_event
        is set mid-download. A partially written file is removed.
        """
        destination_path = Path(destination_path)
        self.logger.info(f"Downloading {url} to {destination_path}...")

        if not overwrite and destination_path.exists() and destination_path.stat().st_size > 0:
            self.logger.info(f"File already exists, skipping download: {destination_path}")
            return destination_path

        try:
            destination_path.parent.mkdir(parents=True, exist_ok=True)

            with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT, verify=True) as r:
                r.raise_for_status()
                total_size = int(r.headers.get('content-length', 0) or 0)
                downloaded_size = 0
                with open(destination_path, 'wb') as f:
                    for chunk in r.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if cancel_event is not None and cancel_event.is_set():
                            raise ToolCancelledError(f"Download of {url} cancelled")
                        if not chunk:
                            continue
                        f.write(chunk)
                        downloaded_size += len(chunk)
                        if progress_callback:
                            progress_callback(downloaded_size, total_size)

            self.logger.info("Download complete.")
            return destination_path

        except ToolCancelledError:
            self._remove_partial(destination_path)
            raise
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Download failed: {e}")
            self._remove_partial(destination_path)
            raise ToolProvisioningError(f"Download failed for {url}: {e}") from e
        except OSError as e:
            self.logger.error(f"Error writing download to {destination_path}: {e}", exc_info=True)
            self._remove_partial(destination_path)
            raise ToolProvisioningError(f"Could not write {destination_path}: {e}") from e

    def _remove_partial(self, path: Path) -> None:
        if path.exists():
            try:
                path.unlink()
            except OSError:
                self.logger.warning(f"Could not remove partial download {path}")

    def extract_archive(self, archive_path: Path, destination_dir: Path,
                        cancel_event: Optional[threading.Event] = None) -> Path:
        """
        Extract a tar archive (any compression tarfile understands) into destination_dir.

        Members that would land outside destination_dir are refused by the
        'tar' extraction filter. Raises ToolProvisioningError on a corrupt or
        unreadable archive, ToolCancelledError when cancel_event is set.
        Already extracted members are left in place; callers own cleanup.
        """
        archive_path = Path(archive_path)
        destination_dir = Path(destination_dir)
        self.logger.info(f"Extracting {archive_path} to {destination_dir}")

        def members(tar: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
            for member in tar:
                if cancel_event is not None and cancel_event.is_set():
                    raise ToolCancelledError(f"Extraction of {archive_path} cancelled")
                yield member

        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
            with tarfile.open(archive_path, 'r:*') as tar:
                tar.extractall(path=destination_dir, members=members(tar), filter='tar')
        except (tarfile.TarError, EOFError, OSError) as e:
            self.logger.error(f"Extraction of {archive_path} failed: {e}")
            raise ToolProvisioningError(f"Could not extract {archive_path}: {e}") from e

        self.logger.info(f"Extracted {archive_path.name} to {destination_dir}")
        return destination_dir

    def remove_directory(self, path: Path) -> bool:
        """
        Recursively delete a directory tree. Returns False when there was nothing to delete.
        """
        path = Path(path)
        if not path.exists() and not path.is_symlink():
            return False
        if path.is_symlink() or path.is_file():
            path.unlink()
        else:
            shutil.rmtree(path)
        self.logger.debug(f"Removed {path}")
        return True

