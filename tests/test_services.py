"""Tests for toolchain, shell, project config, health and serial services."""

import sys
import time
from dataclasses import dataclass
from pathlib import Path

import pytest

from config import get_settings
from core.exceptions import ErrorCode
from core.process import RunResult
from core.result import Result
from project import ProjectInfo, find_project_root, is_idf_project
from services import health, ports
from services.config import (
    ProjectConfig,
    config_exists,
    load_config,
    parse_config,
    save_config,
    serialize_config,
    update_config,
)
from services.idf import find_idf_path, get_idf_status, get_idf_version, validate_idf_installation
from services.shell import add_to_shell_config, detect_shell, get_export_command, get_shell_info


def fake_idf_python(home: Path) -> Path:
    """Link the test interpreter into the IDF python_env layout."""
    bin_dir = home / ".espressif" / "python_env" / "idf5.2_py3.11_env" / "bin"
    bin_dir.mkdir(parents=True)
    python = bin_dir / "python"
    python.symlink_to(sys.executable)
    return python


# ============================================================================
# ESP-IDF location
# ============================================================================


class TestIdf:
    """Test ESP-IDF discovery and validation."""

    def test_not_found(self):
        """Test a missing installation reports IDF_NOT_FOUND."""
        result = find_idf_path()
        assert not result.success
        assert result.error.code == ErrorCode.IDF_NOT_FOUND

    def test_idf_path_env_wins(self, fake_idf):
        """Test $IDF_PATH is searched first."""
        assert find_idf_path().data == fake_idf

    def test_settings_path(self):
        """Test the configured default location is used without $IDF_PATH."""
        idf_path = get_settings().paths.idf_path
        idf_path.mkdir(parents=True)
        assert find_idf_path().data == idf_path

    def test_validate_requires_export_script(self, tmp_path):
        """Test a directory without export.sh fails validation."""
        result = validate_idf_installation(tmp_path)
        assert result.error.code == ErrorCode.IDF_VALIDATION_FAILED
        assert "export.sh not found" in result.error.message

    def test_version_from_file(self, fake_idf):
        """Test version.txt is read first."""
        assert get_idf_version(fake_idf).data == "v5.2.1"

    def test_version_without_file_or_git(self, tmp_path):
        """Test a directory that is neither versioned nor a git checkout fails."""
        result = get_idf_version(tmp_path)
        assert not result.success
        assert result.error.code == ErrorCode.COMMAND_FAILED

    def test_status(self, fake_idf):
        """Test the status dict carries install flag, path and version."""
        assert get_idf_status().to_dict() == {
            "installed": True,
            "path": str(fake_idf),
            "version": "v5.2.1",
        }

    def test_status_not_installed(self):
        """Test the status of a machine without ESP-IDF."""
        assert get_idf_status().to_dict() == {"installed": False}


# ============================================================================
# Project detection
# ============================================================================


class TestProject:
    """Test ESP-IDF project detection."""

    def test_detects_idf_cmakelists(self, fake_project):
        """Test a CMakeLists.txt using the IDF build system is a project."""
        assert is_idf_project(fake_project)

    def test_plain_cmake_is_not_a_project(self, tmp_path):
        """Test an unrelated CMake project is rejected."""
        (tmp_path / "CMakeLists.txt").write_text("project(other)\n")
        assert not is_idf_project(tmp_path)

    def test_component_cmakelists_counts(self, tmp_path):
        """Test a component CMakeLists.txt is recognized."""
        (tmp_path / "CMakeLists.txt").write_text('idf_component_register(SRCS "main.c")\n')
        assert is_idf_project(tmp_path)

    def test_find_root_from_subdirectory(self, fake_project):
        """Test the project root is found from a nested directory."""
        nested = fake_project / "components" / "led"
        nested.mkdir(parents=True)
        assert find_project_root(nested).data == fake_project.resolve()

    def test_find_root_outside_project(self, tmp_path):
        """Test NOT_IDF_PROJECT outside any project."""
        result = find_project_root(tmp_path)
        assert result.error.code == ErrorCode.NOT_IDF_PROJECT

    def test_project_info_detect(self, fake_project):
        """Test ProjectInfo fills in paths for a detected project."""
        info = ProjectInfo.detect(fake_project / "main")
        assert info.is_valid
        assert info.root == fake_project.resolve()
        assert info.explain() == ("", [])
        assert info.build_dir == fake_project.resolve() / "build"

    def test_configured_target(self, fake_project):
        """Test the target is read from sdkconfig."""
        (fake_project / "sdkconfig").write_text(
            '# Espressif IoT Development Framework\nCONFIG_IDF_TARGET="esp32c6"\n'
        )
        assert ProjectInfo.detect(fake_project).configured_target() == "esp32c6"

    def test_no_sdkconfig_target(self, fake_project):
        """Test an unconfigured project has no target."""
        assert ProjectInfo.detect(fake_project).configured_target() is None

    def test_explain_plain_cmake(self, tmp_path):
        """Test a non-IDF CMakeLists is explained."""
        (tmp_path / "CMakeLists.txt").write_text("project(plain)\n")
        message, hints = ProjectInfo.detect(tmp_path).explain()
        assert "does not use the ESP-IDF build system" in message
        assert any("project.cmake" in hint for hint in hints)


# ============================================================================
# Shell configuration
# ============================================================================


class TestShell:
    """Test shell detection and rc file editing."""

    @pytest.mark.parametrize(
        "shell,expected",
        [
            ("/bin/zsh", "zsh"),
            ("/usr/bin/bash", "bash"),
            ("/usr/bin/fish", "fish"),
            ("/bin/sh", "unknown"),
        ],
    )
    def test_detect_shell(self, monkeypatch, shell, expected):
        """Test $SHELL is mapped to a known shell name."""
        monkeypatch.setenv("SHELL", shell)
        assert detect_shell() == expected

    def test_export_command(self, monkeypatch):
        """Test POSIX shells source export.sh and fish sources export.fish."""
        assert get_export_command("/esp/esp-idf") == ". /esp/esp-idf/export.sh"
        monkeypatch.setenv("SHELL", "/usr/bin/fish")
        assert get_export_command("/esp/esp-idf") == "source /esp/esp-idf/export.fish"

    def test_add_line_once(self):
        """Test the export line is appended a single time."""
        line = ". /esp/esp-idf/export.sh"
        assert add_to_shell_config(line).success
        assert add_to_shell_config(line).success

        rc = get_shell_info().config_path
        assert rc == Path.home() / ".bashrc"
        assert rc.read_text().count(line) == 1

    def test_unsupported_shell(self, monkeypatch):
        """Test an unknown shell is reported instead of guessed."""
        monkeypatch.setenv("SHELL", "/bin/tcsh")
        result = add_to_shell_config(". /esp/esp-idf/export.sh")
        assert result.error.code == ErrorCode.SHELL_UNSUPPORTED


# ============================================================================
# Project config file
# ============================================================================


class TestProjectConfig:
    """Test the per-project .espcli file."""

    def test_parse_key_value(self):
        """Test key=value lines with comments and blanks."""
        config = parse_config(
            "# saved by espcli\n\ntarget=esp32s3\nport = /dev/ttyUSB0\nflash_baud=921600\n"
        )
        assert config == ProjectConfig(target="esp32s3", port="/dev/ttyUSB0", flash_baud=921600)

    def test_parse_ignores_junk(self):
        """Test malformed lines, unknown keys and bad numbers are skipped."""
        config = parse_config("garbage\ncolor=blue\nmonitor_baud=fast\ntarget=esp32\n")
        assert config == ProjectConfig(target="esp32")

    def test_parse_json(self):
        """Test a JSON object with camelCase keys is accepted."""
        config = parse_config('{"port": "/dev/ttyACM0", "monitorBaud": 74880}')
        assert config == ProjectConfig(port="/dev/ttyACM0", monitor_baud=74880)

    def test_serialize_skips_unset(self):
        """Test only set values are written."""
        text = serialize_config(ProjectConfig(target="esp32c3", monitor_baud=115200))
        assert text == "target=esp32c3\nmonitor_baud=115200\n"

    def test_load_missing(self, tmp_path):
        """Test a missing file loads as an empty config."""
        assert not config_exists(tmp_path)
        assert load_config(tmp_path) == ProjectConfig()

    def test_load_undecodable(self, tmp_path):
        """Test a file that is not UTF-8 loads as an empty config."""
        (tmp_path / ".espcli").write_bytes(b"port=/dev/tty\xff\xfe\n")
        assert load_config(tmp_path) == ProjectConfig()

    def test_save_and_load(self, tmp_path):
        """Test a saved config reads back identically."""
        config = ProjectConfig(target="esp32", port="/dev/ttyUSB0", flash_baud=460800)
        assert save_config(tmp_path, config).success
        assert load_config(tmp_path) == config

    def test_update_merges(self, tmp_path):
        """Test update keeps existing keys and ignores None values."""
        save_config(tmp_path, ProjectConfig(target="esp32s3", port="/dev/ttyUSB0"))

        result = update_config(tmp_path, port="/dev/ttyACM0", flash_baud=None)

        assert result.data == ProjectConfig(target="esp32s3", port="/dev/ttyACM0")
        assert load_config(tmp_path) == result.data

    def test_save_failure(self, tmp_path):
        """Test a write into a missing directory returns CONFIG_WRITE_FAILED."""
        result = save_config(tmp_path / "missing", ProjectConfig(target="esp32"))
        assert result.error.code == ErrorCode.CONFIG_WRITE_FAILED


# ============================================================================
# Health checks
# ============================================================================


class TestHealth:
    """Test system health probes."""

    @pytest.mark.asyncio
    async def test_probe_timeout(self):
        """Test a slow probe fails with TIMEOUT instead of hanging."""
        result = await health.probe(sys.executable, ["-c", "import time; time.sleep(10)"], 0.3)
        assert result.error.code == ErrorCode.TIMEOUT
        assert result.error.message == f"Operation timed out: {sys.executable}"

    @pytest.mark.asyncio
    async def test_idf_missing(self):
        """Test the IDF dependent checks fail with install hints."""
        status = await health.run_health_checks()

        assert not status.idf.ok
        assert status.idf.hint == "Run: espcli install"
        assert not status.pyserial.ok
        assert not status.esptool.ok
        assert status.idf_python is None
        assert not status.all_ok

    @pytest.mark.asyncio
    async def test_idf_found(self, fake_idf):
        """Test the IDF check reports path and version."""
        status = await health.check_idf()
        assert status.ok
        assert status.version == "v5.2.1"
        assert status.path == str(fake_idf)

    @pytest.mark.asyncio
    async def test_find_idf_python(self):
        """Test an interpreter in the python_env layout is found."""
        python = fake_idf_python(Path.home())
        assert await health.find_idf_python() == str(python)

    @pytest.mark.asyncio
    async def test_require_idf(self, fake_idf):
        """Test require_idf returns the IDF path and its interpreter."""
        python = fake_idf_python(Path.home())

        result = await health.require_idf()

        assert result.success
        assert result.data.python == str(python)
        assert result.data.idf_path == str(fake_idf)

    @pytest.mark.asyncio
    async def test_require_idf_without_python_env(self, fake_idf):
        """Test a missing python_env is IDF_PYTHON_NOT_FOUND."""
        result = await health.require_idf()
        assert result.error.code == ErrorCode.IDF_PYTHON_NOT_FOUND

    @pytest.mark.asyncio
    async def test_require_idf_without_idf(self):
        """Test a missing installation is IDF_NOT_INSTALLED."""
        result = await health.require_idf()
        assert result.error.code == ErrorCode.IDF_NOT_INSTALLED

    @pytest.mark.asyncio
    async def test_health_is_cached(self, monkeypatch):
        """Test probes run once until refreshed or cleared."""
        calls = []

        ok = health.HealthStatus(ok=True, name="check")
        system = health.SystemHealth(ok, ok, ok, ok, ok)

        async def checks():
            calls.append(1)
            return system

        monkeypatch.setattr(health, "run_health_checks", checks)

        assert await health.get_health() is system
        await health.get_health()
        assert len(calls) == 1
        await health.get_health(refresh=True)
        health.clear_health_cache()
        await health.get_health()
        assert len(calls) == 3

    def test_health_dict_drops_empty_fields(self):
        """Test HealthStatus.to_dict leaves out unset fields."""
        status = health.HealthStatus(ok=True, name="Git", version="2.43.0")
        assert status.to_dict() == {"ok": True, "name": "Git", "version": "2.43.0"}


# ============================================================================
# Serial ports
# ============================================================================


@dataclass
class PortInfo:
    """Shape of pyserial's ListPortInfo used by device_from_port."""

    device: str
    vid: int | None = None
    pid: int | None = None
    hwid: str = "n/a"
    description: str = "n/a"
    manufacturer: str | None = None


class TestPorts:
    """Test USB serial device identification."""

    def test_parse_hwid(self):
        """Test VID:PID extraction from a hwid string."""
        assert ports.parse_hwid("USB VID:PID=1a86:7523 SER=5 LOCATION=1-2") == ("1A86", "7523")
        assert ports.parse_hwid("PNP0501") is None

    def test_connection_type(self):
        """Test Espressif's vendor id means native USB."""
        assert ports.connection_type("303a") == "native-usb"
        assert ports.connection_type("10C4") == "uart-bridge"
        assert ports.connection_type(None) == "unknown"

    def test_identify_chip(self):
        """Test known bridges are named and unknown products fall back to the vendor."""
        assert ports.identify_chip("10C4", "EA60") == "CP210x"
        assert ports.identify_chip("1A86", "FFFF") == "QinHeng Electronics"
        assert ports.identify_chip("ABCD", "0001") is None

    @pytest.mark.parametrize(
        "output,chip",
        [
            ("Detecting chip type... ESP32-S3\nChip is ESP32-S3 (QFN56)", "ESP32-S3"),
            ("Chip type: esp32c3", "ESP32C3"),
            ("A fatal error occurred: Failed to connect", None),
        ],
    )
    def test_detect_chip_from_output(self, output, chip):
        """Test esptool output parsing."""
        assert ports.detect_chip_from_output(output) == chip

    def test_device_from_port_info(self):
        """Test a CP2102 bridge is labelled from the vendor table."""
        device = ports.device_from_port(
            PortInfo("/dev/ttyUSB0", vid=0x10C4, pid=0xEA60, description="CP2102 USB to UART")
        )
        assert device.connection_type == "uart-bridge"
        assert device.vendor_id == "10C4"
        assert device.chip == "CP210x"
        assert device.manufacturer == "Silicon Labs"
        assert device.is_esp_compatible

    def test_device_from_hwid(self):
        """Test ids are taken from the hwid when vid/pid are missing."""
        device = ports.device_from_port(
            PortInfo("/dev/ttyACM0", hwid="USB VID:PID=303A:1001 SER=AB")
        )
        assert device.connection_type == "native-usb"
        assert device.description is None
        assert device.is_esp_compatible

    def test_non_usb_port_is_skipped(self):
        """Test built-in serial ports without USB ids are ignored."""
        assert ports.device_from_port(PortInfo("/dev/ttyS0")) is None

    def test_unknown_bridge_is_not_esp_compatible(self):
        """Test an unrecognized vendor is listed but not probed."""
        device = ports.device_from_port(PortInfo("/dev/ttyUSB3", vid=0x2341, pid=0x0043))
        assert device.chip is None
        assert not device.is_esp_compatible

    def test_device_dict_is_camel_case(self):
        """Test the wire form of a device."""
        device = ports.SerialDevice(
            "/dev/ttyACM0", "native-usb", "303A", "1001", esp_chip="ESP32-C3"
        )
        assert device.to_dict() == {
            "port": "/dev/ttyACM0",
            "connectionType": "native-usb",
            "vendorId": "303A",
            "productId": "1001",
            "espChip": "ESP32-C3",
        }

    @pytest.mark.asyncio
    async def test_list_ports_detects_compatible_chips(self, monkeypatch):
        """Test only ESP-compatible ports are probed with esptool."""
        bridge = ports.SerialDevice("/dev/ttyUSB0", "uart-bridge", "10C4", "EA60", chip="CP210x")
        arduino = ports.SerialDevice("/dev/ttyUSB1", "uart-bridge", "2341", "0043")
        probed = []

        async def require_idf():
            return Result.ok(health.IdfRequirement(python="python", idf_path="/esp/esp-idf"))

        async def detect(python, port):
            probed.append(port)
            return "ESP32"

        monkeypatch.setattr(ports, "scan_ports", lambda: [bridge, arduino])
        monkeypatch.setattr(ports, "require_idf", require_idf)
        monkeypatch.setattr(ports, "detect_esp_chip", detect)

        result = await ports.list_ports()

        assert probed == ["/dev/ttyUSB0"]
        assert [d.esp_chip for d in result.data] == ["ESP32", None]

    @pytest.mark.asyncio
    async def test_list_ports_without_idf_skips_detection(self, monkeypatch):
        """Test devices are still listed when ESP-IDF is missing."""
        bridge = ports.SerialDevice("/dev/ttyUSB0", "uart-bridge", "10C4", "EA60", chip="CP210x")
        monkeypatch.setattr(ports, "scan_ports", lambda: [bridge])

        result = await ports.list_ports()

        assert result.success
        assert result.data == [bridge]

    @pytest.mark.asyncio
    async def test_list_ports_timeout(self, monkeypatch):
        """Test a hanging enumeration fails with TIMEOUT."""
        get_settings().timeouts.list_ports = 0.2

        def slow_scan():
            time.sleep(1)
            return []

        monkeypatch.setattr(ports, "scan_ports", slow_scan)

        result = await ports.list_ports()

        assert result.error.code == ErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_list_ports_os_error(self, monkeypatch):
        """Test an enumeration failure is COMMAND_FAILED."""

        def broken_scan():
            raise OSError("no /sys/class/tty")

        monkeypatch.setattr(ports, "scan_ports", broken_scan)

        result = await ports.list_ports(detect_chips=False)

        assert result.error.code == ErrorCode.COMMAND_FAILED

    @pytest.mark.asyncio
    async def test_detect_esp_chip_runs_esptool(self, monkeypatch):
        """Test chip detection invokes esptool chip_id on the port."""
        calls = []

        async def probe(command, args, timeout, cwd=None):
            calls.append((command, list(args)))
            return Result.ok(RunResult("Chip is ESP32-C6 (QFN40)\n", "", 0))

        monkeypatch.setattr(ports, "probe", probe)

        assert await ports.detect_esp_chip("/idf/python", "/dev/ttyACM0") == "ESP32-C6"
        assert calls == [("/idf/python", ["-m", "esptool", "--port", "/dev/ttyACM0", "chip_id"])]

