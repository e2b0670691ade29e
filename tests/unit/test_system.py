"""
Unit tests for host system tuning: sysctl profiles, tuning and Proxmox settings.
"""

from unittest.mock import MagicMock, patch

import pytest

from hetzner_proxmox.cli.lib import sysctl
from hetzner_proxmox.cli.lib.proxmox import (disable_enterprise_repo, enable_no_subscription_repo,
                                             ensure_html5_console, port_listening)
from hetzner_proxmox.cli.lib.tuning import (apply_tuned_profile, enable_services,
                                            set_performance_governor, write_logrotate)


class TestSysctl:
    """Tests for sysctl profiles."""

    @pytest.mark.unit
    def test_render(self):
        text = sysctl.render({"vm.swappiness": "10", "net.ipv4.tcp_rmem": "4096 87380 16777216"}, comment="test")

        assert text == "# test\nvm.swappiness = 10\nnet.ipv4.tcp_rmem = 4096 87380 16777216\n"
        assert sysctl.render({"vm.swappiness": "10"}) == "vm.swappiness = 10\n"

    @pytest.mark.unit
    def test_apply_skips_unavailable_keys(self, mock_subprocess, temp_dir, monkeypatch):
        monkeypatch.setattr(sysctl, "PROC_SYS", temp_dir)
        (temp_dir / "vm").mkdir()
        (temp_dir / "vm" / "swappiness").write_text("60\n")
        mock_subprocess.return_value = MagicMock(returncode=0)

        failures = sysctl.apply_settings({"vm.swappiness": "10", "kernel.numa_balancing": "0"})

        assert failures == [("kernel.numa_balancing", "not available")]
        mock_subprocess.assert_called_once_with(
            ["sysctl", "-w", "vm.swappiness=10"], capture_output=True, text=True, check=False
        )

    @pytest.mark.unit
    def test_apply_reports_rejected_value(self, mock_subprocess, temp_dir, monkeypatch):
        monkeypatch.setattr(sysctl, "PROC_SYS", temp_dir)
        (temp_dir / "net" / "ipv4").mkdir(parents=True)
        (temp_dir / "net" / "ipv4" / "tcp_congestion_control").write_text("cubic\n")
        mock_subprocess.return_value = MagicMock(returncode=255, stderr="Invalid argument")

        failures = sysctl.apply_settings({"net.ipv4.tcp_congestion_control": "bbr"})

        assert failures == [("net.ipv4.tcp_congestion_control", "Invalid argument")]

    @pytest.mark.unit
    def test_install_profiles(self, temp_dir):
        with patch.object(sysctl, "apply_settings", return_value=[]) as mock_apply:
            assert sysctl.install_profiles(temp_dir) == []

        assert sorted(p.name for p in temp_dir.iterdir()) == sorted(sysctl.PROFILES)
        assert mock_apply.call_count == len(sysctl.PROFILES)
        written = (temp_dir / "99-proxmox-swappiness.conf").read_text()
        assert written == "# Managed by hetzner-proxmox (99-proxmox-swappiness.conf)\nvm.swappiness = 10\n"


class TestTuning:
    """Tests for tuning module."""

    @pytest.mark.unit
    def test_governor_unavailable(self, temp_dir):
        assert set_performance_governor(temp_dir / "missing", temp_dir / "cpu.service") is False
        assert not (temp_dir / "cpu.service").exists()

    @pytest.mark.unit
    @patch("hetzner_proxmox.cli.lib.tuning.systemd")
    def test_governor_persisted(self, mock_systemd, temp_dir):
        governor = temp_dir / "scaling_governor"
        governor.write_text("powersave")

        assert set_performance_governor(governor, temp_dir / "cpu-performance.service") is True

        assert governor.read_text() == "performance"
        assert "ExecStart=" in (temp_dir / "cpu-performance.service").read_text()
        mock_systemd.enable_unit.assert_called_once_with("cpu-performance.service")

    @pytest.mark.unit
    @patch("hetzner_proxmox.cli.lib.tuning.systemd")
    def test_enable_services(self, mock_systemd):
        mock_systemd.enable_unit.side_effect = [None, RuntimeError("Failed to enable chrony")]

        assert enable_services(["irqbalance", "chrony"]) == ["chrony"]

    @pytest.mark.unit
    def test_write_logrotate(self, temp_dir):
        path = write_logrotate("/var/log/hetzner-proxmox-setup.log", temp_dir / "proxmox-custom")

        assert "/var/log/hetzner-proxmox-setup.log {\n    daily\n" in path.read_text()

    @pytest.mark.unit
    @patch("hetzner_proxmox.cli.lib.tuning.systemd", MagicMock())
    def test_tuned_falls_back(self, mock_subprocess):
        mock_subprocess.side_effect = [
            MagicMock(returncode=1, stderr="Requested profile 'virtual-host' doesn't exist."),
            MagicMock(returncode=0),
        ]

        assert apply_tuned_profile() == "throughput-performance"

    @pytest.mark.unit
    @patch("hetzner_proxmox.cli.lib.tuning.systemd", MagicMock())
    def test_tuned_fails(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=1, stderr="tuned not running")

        with pytest.raises(RuntimeError, match="Failed to apply any tuned profile"):
            apply_tuned_profile()


class TestProxmoxSettings:
    """Tests for proxmox module."""

    @pytest.mark.unit
    def test_disable_enterprise_repo(self, temp_dir):
        path = temp_dir / "pve-enterprise.list"
        path.write_text("deb https://enterprise.proxmox.com/debian/pve bookworm pve-enterprise\n")

        assert disable_enterprise_repo(path) is True
        assert path.read_text() == "#deb https://enterprise.proxmox.com/debian/pve bookworm pve-enterprise\n"
        assert disable_enterprise_repo(path) is False

    @pytest.mark.unit
    def test_enable_no_subscription_repo(self, temp_dir):
        sources_dir = temp_dir / "sources.list.d"
        sources_dir.mkdir()
        sources_file = temp_dir / "sources.list"
        sources_file.write_text("deb http://deb.debian.org/debian bookworm main contrib\n")
        list_path = sources_dir / "pve-no-subscription.list"

        assert enable_no_subscription_repo(list_path, sources_dir, sources_file) is True
        assert enable_no_subscription_repo(list_path, sources_dir, sources_file) is False
        assert "pve-no-subscription" in list_path.read_text()

    @pytest.mark.unit
    def test_ensure_html5_console(self, temp_dir):
        path = temp_dir / "datacenter.cfg"
        path.write_text("keyboard: de")

        assert ensure_html5_console(path) is True
        assert path.read_text() == "keyboard: de\nconsole: html5\n"
        assert ensure_html5_console(path) is False

    @pytest.mark.unit
    def test_port_listening(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(
            returncode=0,
            stdout="tcp   LISTEN 0      4096          *:8006          *:*\n",
        )

        assert port_listening(8006)
        assert not port_listening(443)
