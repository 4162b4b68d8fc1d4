"""
LoggingHandler module for managing logging operations.
This module handles log file creation, rotation, and the Wine output sink.
"""

import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Optional, List


class LoggingHandler:
    """
    Central logging handler for WineKeeper.
    - Uses <data dir>/logs/ as the log directory.
    - Supports per-function log files (e.g., winekeeper-cli.log).
    - Handles log rotation and log directory creation.
    Usage:
        logger = LoggingHandler().setup_logger('winekeeper', 'winekeeper-cli.log')
    """
    def __init__(self, log_dir: Optional[Path] = None):
        if log_dir is None:
            from winekeeper.shared.paths import get_winekeeper_logs_dir
            log_dir = get_winekeeper_logs_dir()
        self.log_dir = Path(log_dir)
        self.ensure_log_directory()

    def ensure_log_directory(self) -> None:
        """Ensure the log directory exists."""
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            print(f"Failed to create log directory: {e}")

    @staticmethod
    def rotate_log_file_per_run(log_file_path: Path, backup_count: int = 5):
        """Rotate the log file on every run, keeping up to backup_count backups."""
        if log_file_path.exists():
            # Remove the oldest backup if it exists
            oldest = log_file_path.with_suffix(log_file_path.suffix + f'.{backup_count}')
            if oldest.exists():
                oldest.unlink()
            # Shift backups
            for i in range(backup_count - 1, 0, -1):
                src = log_file_path.with_suffix(log_file_path.suffix + f'.{i}')
                dst = log_file_path.with_suffix(log_file_path.suffix + f'.{i+1}')
                if src.exists():
                    src.rename(dst)
            log_file_path.rename(log_file_path.with_suffix(log_file_path.suffix + '.1'))

    def rotate_log_for_logger(self, name: str, log_file: Optional[str] = None, backup_count: int = 5):
        """
        Rotate the log file for a logger before any logging occurs.
        Must be called BEFORE any log is written or file handler is attached.
        """
        file_path = self.log_dir / (log_file if log_file else "winekeeper-cli.log")
        self.rotate_log_file_per_run(file_path, backup_count=backup_count)

    def setup_logger(self, name: str, log_file: Optional[str] = None) -> logging.Logger:
        """Set up a logger with file and console handlers. Call rotate_log_for_logger before this if you want per-run rotation."""
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False

        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        console_formatter = logging.Formatter(
            '%(levelname)s: %(message)s'
        )

        # Console handler (ERROR and above only)
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.ERROR)
        console_handler.setFormatter(console_formatter)
        if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in logger.handlers):
            logger.addHandler(console_handler)

        if log_file:
            file_path = self.log_dir / log_file
            file_handler = logging.handlers.RotatingFileHandler(
                file_path, mode='a', encoding='utf-8', maxBytes=1024*1024, backupCount=5
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(file_formatter)
            if not any(isinstance(h, logging.handlers.RotatingFileHandler) and getattr(h, 'baseFilename', None) == str(file_path) for h in logger.handlers):
                logger.addHandler(file_handler)

        return logger

    def get_log_files(self) -> List[Path]:
        """Get a list of all log files."""
        return list(self.log_dir.glob("*.log"))


class WineLogSink:
    """
    Append-only text file receiving stderr of every process started in the prefix.

    Drain threads of several live processes write concurrently, so every
    write goes through one lock and is a whole line.
    """

    def __init__(self, log_file: Path, rotate: bool = True, backup_count: int = 5):
        self.log_file = Path(log_file)
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        if rotate:
            LoggingHandler.rotate_log_file_per_run(self.log_file, backup_count=backup_count)
        self._lock = threading.Lock()
        self._stream = open(self.log_file, 'a', encoding='utf-8', errors='replace')

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def write_line(self, line: str) -> None:
        """Append one line. Lines arriving after close() are dropped."""
        line = line.rstrip('\r\n')
        with self._lock:
            if self._stream.closed:
                return
            self._stream.write(line + '\n')
            self._stream.flush()

    def close(self) -> None:
        with self._lock:
            if not self._stream.closed:
                self._stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
