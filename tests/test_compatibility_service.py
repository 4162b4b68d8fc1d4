import io
import shutil
import tarfile
import threading
from pathlib import Path
from unittest import mock

import pytest

from winekeeper.backend.errors import (
    ProcessSpawnError,
    PrefixStateError,
    ToolCancelledError,
    ToolProvisioningError,
    WineOutputParseError,
)
from winekeeper.backend.handlers.dxvk_handler import DxvkHandler
from winekeeper.backend.handlers.filesystem_handler import FileSystemHandler
from winekeeper.backend.handlers.wine_utils import WINE_DLL_OVERRIDES
from winekeeper.backend.models.configuration import WineSettings, WineStartupType, DxvkHudType
from winekeeper.backend.services.compatibility_service import (
    CompatibilityToolService,
    WINE_TKG_RELEASE_NAME,
    WINE_TKG_RELEASE_URL,
)

from conftest import FAKE_WINE64, FAKE_WINESERVER, write_script


def parse_env(output):
    env = {}
    for line in output.splitlines():
        if '=' in line:
            key, value = line.split('=', 1)
            env[key] = value
    return env


# --- launching -------------------------------------------------------------

def test_argument_list_keeps_spaces_in_one_argument(service):
    with service.run_in_prefix(["args", "hello world", "x"], redirect_output=True) as proc:
        output = proc.read_stdout()
    assert output.splitlines() == ["hello world", "x"]


def test_command_string_is_split_on_whitespace(service):
    with service.run_in_prefix("args hello world", redirect_output=True) as proc:
        output = proc.read_stdout()
    assert output.splitlines() == ["hello", "world"]


def test_environment_composition(service, wine_settings, monkeypatch):
    monkeypatch.setenv("WINEKEEPER_INHERITED", "yes")
    monkeypatch.setenv("DXVK_ASYNC", "0")
    with service.run_in_prefix(["env"], environment={"DXVK_HUD": "full", "EXTRA": "1"},
                               redirect_output=True) as proc:
        env = parse_env(proc.read_stdout())

    assert env["WINEKEEPER_INHERITED"] == "yes"
    assert env["DXVK_ASYNC"] == "1"
    assert env["DXVK_HUD"] == "full"
    assert env["EXTRA"] == "1"
    assert env["WINEPREFIX"] == str(wine_settings.prefix)
    assert env["WINEDLLOVERRIDES"] == WINE_DLL_OVERRIDES
    assert env["WINEDEBUG"] == "-all"
    assert env["XL_WINEONLINUX"] == "true"


def test_working_directory(service, tmp_path):
    workdir = tmp_path / "game dir"
    workdir.mkdir()
    with service.run_in_prefix(["pwd"], working_directory=workdir, redirect_output=True) as proc:
        output = proc.read_stdout()
    assert Path(output.strip()).resolve() == workdir.resolve()


def test_missing_working_directory_fails(service, tmp_path):
    with pytest.raises(ProcessSpawnError):
        service.run_in_prefix(["cmd"], working_directory=tmp_path / "nope")


def test_missing_prefix_fails_fast(service, wine_settings):
    shutil.rmtree(wine_settings.prefix)
    with pytest.raises(PrefixStateError):
        service.run_in_prefix(["cmd"])


def test_stdout_not_captured_by_default(service):
    with service.run_in_prefix(["cmd"]) as proc:
        assert proc.stdout is None
        assert proc.wait() == 0


def test_stderr_is_drained_into_log(service, wine_settings):
    with service.run_in_prefix(["stderr"]) as proc:
        proc.wait()
    service.close()
    lines = wine_settings.log_file.read_text().splitlines()
    assert "first error line" in lines
    assert "second error line" in lines


def test_run_returns_before_process_exits(service, fake_bin):
    write_script(fake_bin / "wine64", "#!/bin/sh\nsleep 30\n")
    proc = service.run_in_prefix(["anything"])
    try:
        assert proc.is_running()
    finally:
        proc.cancel()
        proc.close()
    assert not proc.is_running()


def test_scoped_process_is_cancelled_when_block_raises(service, fake_bin):
    write_script(fake_bin / "wine64", "#!/bin/sh\nsleep 30\n")
    with pytest.raises(RuntimeError):
        with service.run_in_prefix(["anything"]) as proc:
            raise RuntimeError("caller failed")
    assert not proc.is_running()
    assert proc.proc.stderr.closed


# --- prefix ------------------------------------------------------------------

def test_ensure_prefix_waits_for_warmup(service):
    assert service.ensure_prefix() == 0


def test_reset_prefix_recreates_empty_prefix(service, wine_settings):
    junk = wine_settings.prefix / "drive_c" / "junk.txt"
    junk.parent.mkdir(parents=True)
    junk.write_text("old state")

    assert service.reset_prefix() == 0
    assert wine_settings.prefix.is_dir()
    assert not junk.exists()
    assert list(wine_settings.prefix.iterdir()) == []
    assert service.ensure_prefix() == 0


def test_ensure_game_fixes_writes_default_config(service, tmp_path):
    config_file = service.ensure_game_fixes(tmp_path / "game-config")
    assert config_file == tmp_path / "game-config" / "dxvk.conf"
    assert "dxvk.enableAsync = True" in config_file.read_text()


# --- introspection ----------------------------------------------------------

def test_get_process_ids(service):
    assert service.get_process_ids("game.exe") == [0x1a34, 0xff2c]
    assert service.get_process_ids("other.exe") == [0xab12]


def test_get_process_id(service):
    assert service.get_process_id("game.exe") == 0x1a34
    assert service.get_process_id("notrunning.exe") is None


def test_unix_to_wine_path_returns_last_line(service, tmp_path):
    assert service.unix_to_wine_path(tmp_path / "some path") == "C:\\users\\steamuser\\game"


def test_unix_to_wine_path_without_output(service, fake_bin):
    write_script(fake_bin / "wine64", "#!/bin/sh\nexit 0\n")
    with pytest.raises(WineOutputParseError):
        service.unix_to_wine_path("/tmp")


def test_add_registry_key(service, wine_settings):
    key = "HKEY_CURRENT_USER\\Software\\Wine\\DllOverrides"
    assert service.add_registry_key(key, "d3d11", "native") == 0
    logged = (wine_settings.prefix / "reg.log").read_text().splitlines()
    assert logged == ["add", key, "/v", "d3d11", "/d", "native", "/f"]


def test_kill_runs_wineserver_against_prefix(service, wine_settings):
    proc = service.kill()
    assert proc.wait(timeout=10) == 0
    assert (wine_settings.prefix / "wineserver.log").read_text().strip() == f"-k {wine_settings.prefix}"


# --- provisioning ------------------------------------------------------------

def test_ensure_tool_is_noop_when_binary_present(tmp_path, wine_settings):
    fs = mock.Mock(spec=FileSystemHandler)
    dxvk = mock.Mock(spec=DxvkHandler)
    with CompatibilityToolService(wine_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs, dxvk_handler=dxvk) as service:
        assert not service.is_tool_ready
        service.ensure_tool()
        service.ensure_tool()
        assert service.is_tool_ready
        assert service.is_tool_downloaded
    assert fs.method_calls == []
    assert dxvk.method_calls == []


def test_custom_bin_dir_must_exist(tmp_path):
    settings = WineSettings(WineStartupType.CUSTOM, tmp_path / "prefix", tmp_path / "wine.log",
                            custom_bin_path=tmp_path / "missing")
    with pytest.raises(PrefixStateError):
        CompatibilityToolService(settings, DxvkHudType.NONE, tmp_path / "tools")


def test_custom_binary_missing_is_not_downloaded(tmp_path):
    (tmp_path / "empty-bin").mkdir()
    settings = WineSettings(WineStartupType.CUSTOM, tmp_path / "prefix", tmp_path / "wine.log",
                            custom_bin_path=tmp_path / "empty-bin")
    fs = mock.Mock(spec=FileSystemHandler)
    with CompatibilityToolService(settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs) as service:
        with pytest.raises(ToolProvisioningError):
            service.ensure_tool()
        assert not service.is_tool_ready
    fs.download_file.assert_not_called()


def build_wine_archive(path: Path) -> Path:
    with tarfile.open(path, "w:xz") as tar:
        for name, content in (("wine64", FAKE_WINE64), ("wineserver", FAKE_WINESERVER)):
            data = content.encode()
            info = tarfile.TarInfo(f"{WINE_TKG_RELEASE_NAME}/bin/{name}")
            info.size = len(data)
            info.mode = 0o755
            tar.addfile(info, io.BytesIO(data))
    return path


class ArchiveServingHandler(FileSystemHandler):
    """Serves a local archive instead of hitting the network."""

    def __init__(self, archive: Path):
        super().__init__()
        self.archive = archive
        self.downloads = []

    def download_file(self, url, destination_path, overwrite=False, progress_callback=None, cancel_event=None):
        self.downloads.append((url, Path(destination_path)))
        shutil.copyfile(self.archive, destination_path)
        return Path(destination_path)


@pytest.fixture
def managed_settings(tmp_path):
    return WineSettings(WineStartupType.MANAGED, tmp_path / "prefix", tmp_path / "wine.log")


def test_fresh_install(tmp_path, managed_settings):
    fs = ArchiveServingHandler(build_wine_archive(tmp_path / "wine.tar.xz"))
    dxvk = mock.Mock(spec=DxvkHandler)
    tools = tmp_path / "tools"

    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tools,
                                  filesystem_handler=fs, dxvk_handler=dxvk) as service:
        assert not service.is_tool_downloaded
        service.ensure_tool()

        assert service.is_tool_ready
        assert service.is_tool_downloaded
        assert service.wine64_path == tools / "beta" / WINE_TKG_RELEASE_NAME / "bin" / "wine64"
        assert len(fs.downloads) == 1
        url, temp_archive = fs.downloads[0]
        assert url == WINE_TKG_RELEASE_URL
        assert not temp_archive.exists()
        dxvk.install_dxvk.assert_called_once()
        assert dxvk.install_dxvk.call_args.args[0] == managed_settings.prefix

        service.ensure_tool()
        assert len(fs.downloads) == 1
        dxvk.install_dxvk.assert_called_once()


def test_download_failure_leaves_tool_not_ready(tmp_path, managed_settings):
    fs = mock.Mock(spec=FileSystemHandler)
    fs.download_file.side_effect = ToolProvisioningError("network down")
    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs) as service:
        with pytest.raises(ToolProvisioningError):
            service.ensure_tool()
        assert not service.is_tool_ready
        assert not service.wine64_path.exists()
    fs.extract_archive.assert_not_called()


def test_partial_extraction_is_cleaned_up(tmp_path, managed_settings):
    tools = tmp_path / "tools"
    release_dir = tools / "beta" / WINE_TKG_RELEASE_NAME

    class BrokenExtractHandler(ArchiveServingHandler):
        def extract_archive(self, archive_path, destination_dir, cancel_event=None):
            (release_dir / "bin").mkdir(parents=True)
            (release_dir / "bin" / "wine64").write_text("half")
            raise ToolProvisioningError("truncated archive")

    fs = BrokenExtractHandler(build_wine_archive(tmp_path / "wine.tar.xz"))
    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tools,
                                  filesystem_handler=fs) as service:
        with pytest.raises(ToolProvisioningError):
            service.ensure_tool()
        assert not release_dir.exists()
        assert not service.is_tool_ready
        assert not fs.downloads[0][1].exists()


def test_dxvk_failure_leaves_tool_not_ready(tmp_path, managed_settings):
    fs = ArchiveServingHandler(build_wine_archive(tmp_path / "wine.tar.xz"))
    dxvk = mock.Mock(spec=DxvkHandler)
    dxvk.install_dxvk.side_effect = [ToolProvisioningError("dxvk download failed"), None]
    release_dir = tmp_path / "tools" / "beta" / WINE_TKG_RELEASE_NAME
    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs, dxvk_handler=dxvk) as service:
        with pytest.raises(ToolProvisioningError):
            service.ensure_tool()
        assert not service.is_tool_ready
        assert not release_dir.exists()

        # the retry must redo the whole setup, DXVK included
        service.ensure_tool()
        assert service.is_tool_ready
        assert len(fs.downloads) == 2
        assert dxvk.install_dxvk.call_count == 2


def test_prefix_warmup_failure_removes_release(tmp_path, managed_settings):
    fs = ArchiveServingHandler(build_wine_archive(tmp_path / "wine.tar.xz"))
    dxvk = mock.Mock(spec=DxvkHandler)
    release_dir = tmp_path / "tools" / "beta" / WINE_TKG_RELEASE_NAME
    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs, dxvk_handler=dxvk) as service:
        with mock.patch.object(service, "ensure_prefix", side_effect=ProcessSpawnError("no exec")):
            with pytest.raises(ToolProvisioningError):
                service.ensure_tool()
        assert not service.is_tool_ready
        assert not release_dir.exists()
    dxvk.install_dxvk.assert_not_called()


class CancelAfterFirstCheck(threading.Event):
    """Reports cancellation from the second is_set() call on."""

    def __init__(self):
        super().__init__()
        self.checks = 0

    def is_set(self):
        self.checks += 1
        return self.checks > 1


def test_cancelled_extraction_is_not_ready(tmp_path, managed_settings):
    fs = ArchiveServingHandler(build_wine_archive(tmp_path / "wine.tar.xz"))
    dxvk = mock.Mock(spec=DxvkHandler)
    release_dir = tmp_path / "tools" / "beta" / WINE_TKG_RELEASE_NAME
    cancel = CancelAfterFirstCheck()
    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs, dxvk_handler=dxvk) as service:
        with pytest.raises(ToolCancelledError):
            service.ensure_tool(cancel_event=cancel)
        assert cancel.checks == 2
        assert not service.is_tool_ready
        assert not release_dir.exists()
        assert not fs.downloads[0][1].exists()
    dxvk.install_dxvk.assert_not_called()


def test_cancelled_dxvk_install_is_not_ready(tmp_path, managed_settings):
    fs = ArchiveServingHandler(build_wine_archive(tmp_path / "wine.tar.xz"))
    dxvk = mock.Mock(spec=DxvkHandler)
    dxvk.install_dxvk.side_effect = ToolCancelledError("dxvk download cancelled")
    release_dir = tmp_path / "tools" / "beta" / WINE_TKG_RELEASE_NAME
    cancel = threading.Event()
    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs, dxvk_handler=dxvk) as service:
        with pytest.raises(ToolCancelledError):
            service.ensure_tool(cancel_event=cancel)
        assert not service.is_tool_ready
        assert not release_dir.exists()
    assert dxvk.install_dxvk.call_args.kwargs["cancel_event"] is cancel


def test_directory_named_wine64_is_not_a_binary(tmp_path):
    bin_dir = tmp_path / "custom-bin"
    (bin_dir / "wine64").mkdir(parents=True)
    settings = WineSettings(WineStartupType.CUSTOM, tmp_path / "prefix", tmp_path / "wine.log",
                            custom_bin_path=bin_dir)
    fs = mock.Mock(spec=FileSystemHandler)
    with CompatibilityToolService(settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs) as service:
        with pytest.raises(ToolProvisioningError):
            service.ensure_tool()
        assert not service.is_tool_ready
        assert not service.is_tool_downloaded
    fs.download_file.assert_not_called()


def test_ensure_tool_async_reports_result(tmp_path, wine_settings):
    results = []
    with CompatibilityToolService(wine_settings, DxvkHudType.NONE, tmp_path / "tools") as service:
        thread = service.ensure_tool_async(lambda ok, err: results.append((ok, err)))
        thread.join(timeout=10)
        assert results == [(True, None)]
        assert service.is_tool_ready


def test_ensure_tool_async_reports_failure(tmp_path, managed_settings):
    fs = mock.Mock(spec=FileSystemHandler)
    fs.download_file.side_effect = ToolProvisioningError("network down")
    done = threading.Event()
    results = []

    def callback(ok, err):
        results.append((ok, err))
        done.set()

    with CompatibilityToolService(managed_settings, DxvkHudType.NONE, tmp_path / "tools",
                                  filesystem_handler=fs) as service:
        service.ensure_tool_async(callback)
        assert done.wait(timeout=10)
    assert results[0][0] is False
    assert isinstance(results[0][1], ToolProvisioningError)


def test_close_closes_log_sink(tmp_path, wine_settings):
    service = CompatibilityToolService(wine_settings, DxvkHudType.NONE, tmp_path / "tools")
    with service:
        pass
    assert service.log_sink.closed
