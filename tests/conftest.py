import logging
import stat
from pathlib import Path

import pytest

from winekeeper.backend.models.configuration import WineSettings, WineStartupType, DxvkHudType
from winekeeper.backend.services.compatibility_service import CompatibilityToolService


FAKE_WINE64 = r"""#!/bin/sh
case "$1" in
  cmd)
    exit 0 ;;
  args)
    shift
    for a in "$@"; do printf '%s\n' "$a"; done ;;
  env)
    env ;;
  pwd)
    pwd ;;
  stderr)
    printf '%s\n' "first error line" >&2
    printf '%s\n' "second error line" >&2 ;;
  winedbg)
    printf '%s\n' " pid      threads  executable (all id:s are in hex)"
    printf '%s\n' " 001a34   'game.exe'    3"
    printf '%s\n' " 00ab12   'other.exe'  1"
    printf '%s\n' " 0000ff2c 2        \_ 'game.exe'" ;;
  winepath)
    printf '%s\n' "wine: created the configuration directory" >&2
    printf '%s\n' "fixme:warn something noisy"
    printf '%s\n' 'C:\users\steamuser\game'
    printf '\n' ;;
  reg)
    shift
    printf '%s\n' "$@" > "$WINEPREFIX/reg.log" ;;
  fail)
    exit 3 ;;
esac
exit 0
"""

FAKE_WINESERVER = r"""#!/bin/sh
printf '%s %s\n' "$1" "$WINEPREFIX" > "$WINEPREFIX/wineserver.log"
"""


def write_script(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture(autouse=True)
def restore_app_logger():
    """The CLI reconfigures the 'winekeeper' logger; undo that after each test."""
    app_logger = logging.getLogger('winekeeper')
    saved = (list(app_logger.handlers), app_logger.propagate, app_logger.level)
    yield
    for handler in app_logger.handlers:
        if handler not in saved[0]:
            handler.close()
    app_logger.handlers[:] = saved[0]
    app_logger.propagate = saved[1]
    app_logger.setLevel(saved[2])


@pytest.fixture
def fake_bin(tmp_path):
    bin_dir = tmp_path / "wine-bin"
    write_script(bin_dir / "wine64", FAKE_WINE64)
    write_script(bin_dir / "wineserver", FAKE_WINESERVER)
    return bin_dir


@pytest.fixture
def wine_settings(tmp_path, fake_bin):
    return WineSettings(
        startup_type=WineStartupType.CUSTOM,
        prefix=tmp_path / "prefix",
        log_file=tmp_path / "logs" / "wine.log",
        custom_bin_path=fake_bin,
        debug_vars="-all",
    )


@pytest.fixture
def service(tmp_path, wine_settings):
    svc = CompatibilityToolService(wine_settings, DxvkHudType.FPS, tmp_path / "tools")
    yield svc
    svc.close()
