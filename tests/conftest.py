"""
Pytest configuration and fixtures.
"""

import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hetzner_proxmox.cli.lib.config import set_config_path


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with subprocess and filesystem mocked")
    config.addinivalue_line("markers", "integration: CLI tests driving the Typer app")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture(autouse=True)
def isolated_host(tmp_path, monkeypatch):
    """Keep config, state and log files inside the test's tmp directory."""
    conf = tmp_path / "setup.conf"
    conf.write_text(
        "\n".join(
            [
                "[host]",
                f"log_file = {tmp_path / 'setup.log'}",
                "",
                "[network]",
                f"additional_ips_file = {tmp_path / 'additional-ips.conf'}",
                "",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("HPX_CONFIG_PATH", str(conf))
    monkeypatch.setenv("HPX_STATE_DIR", str(tmp_path / "state"))
    for n in range(1, 5):
        monkeypatch.delenv(f"ADDITIONAL_IP_{n}", raising=False)
    set_config_path(None)
    yield tmp_path
    set_config_path(None)


@pytest.fixture
def mock_subprocess():
    """Mock subprocess.run for testing."""
    with patch("subprocess.run") as mock:
        yield mock


@pytest.fixture
def lsblk_json():
    """lsblk -J output for a host with two NVMe system drives and three data disks."""

    def disk(name, size, children=None, model="SAMSUNG MZVL2512HCJQ"):
        return {
            "name": name,
            "path": f"/dev/{name}",
            "size": size,
            "type": "disk",
            "mountpoint": None,
            "fstype": None,
            "model": model,
            "label": None,
            "serial": f"S{name.upper()}",
            "children": children or [],
        }

    def part(name, size, mountpoint=None, fstype=None):
        return {
            "name": name,
            "path": f"/dev/{name}",
            "size": size,
            "type": "part",
            "mountpoint": mountpoint,
            "fstype": fstype,
            "label": None,
        }

    return json.dumps(
        {
            "blockdevices": [
                disk("nvme0n1", 512110190592, [part("nvme0n1p1", 536870912, "/boot/efi", "vfat"),
                                               part("nvme0n1p2", 511573319680, "/", "ext4")]),
                disk("sda", 4000787030016, model="HGST HUS726T4TAL"),
                disk("sdb", 4000787030016, [part("sdb1", 4000785104896, None, "ext4")], model="HGST HUS726T4TAL"),
                disk("sdc", 2000398934016, model="TOSHIBA DT01ACA2"),
                {"name": "loop0", "path": "/dev/loop0", "size": 1000, "type": "loop", "children": []},
            ]
        }
    )


@pytest.fixture
def completed():
    """Build a subprocess.run result."""

    def _completed(returncode=0, stdout="", stderr=""):
        return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)

    return _completed
