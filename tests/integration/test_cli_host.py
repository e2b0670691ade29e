"""
Integration tests for CLI caddy, system and host commands.
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from hetzner_proxmox.cli.cli import app
from hetzner_proxmox.cli.lib import state
from hetzner_proxmox.cli.lib.blockdev import parse_lsblk_json
from hetzner_proxmox.cli.lib.datastore import GIB


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def domain_config(isolated_host):
    conf = isolated_host / "setup.conf"
    text = conf.read_text(encoding="utf-8")
    conf.write_text(text.replace("[host]\n", "[host]\ndomain = pve.example.com\nemail = admin@example.com\n"),
                    encoding="utf-8")
    return conf


class TestCaddy:
    """Tests for caddy commands."""

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.systemd.disable_unit")
    @patch("hetzner_proxmox.cli.lib.systemd.stop_unit")
    @patch("hetzner_proxmox.cli.lib.caddy.install", return_value="v2.8.4 h1:abc")
    def test_install(self, mock_install, mock_stop, mock_disable, runner):
        result = runner.invoke(app, ["caddy", "install"])

        assert result.exit_code == 0
        assert "Installed v2.8.4" in result.output
        mock_stop.assert_called_once_with("caddy")
        mock_disable.assert_called_once_with("caddy")

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.caddy.wait_for_https", return_value=True)
    @patch("hetzner_proxmox.cli.lib.systemd.reload_or_restart")
    @patch("hetzner_proxmox.cli.lib.systemd.enable_unit")
    @patch("hetzner_proxmox.cli.lib.ufw.allow")
    @patch("hetzner_proxmox.cli.lib.caddy.format_and_validate")
    @patch("hetzner_proxmox.cli.lib.caddy.write_caddyfile", return_value=Path("/etc/caddy/Caddyfile"))
    def test_https(self, mock_write, mock_validate, mock_allow, mock_enable, mock_reload, mock_wait,
                   runner, domain_config):
        result = runner.invoke(app, ["caddy", "https"])

        assert result.exit_code == 0
        assert mock_write.call_args.args[0].domain == "pve.example.com"
        mock_validate.assert_called_once_with(Path("/etc/caddy/Caddyfile"))
        assert [c.args[0] for c in mock_allow.call_args_list] == ["80/tcp", "443/tcp"]
        mock_reload.assert_called_once_with("caddy")
        assert "Proxmox is available at https://pve.example.com" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.caddy.wait_for_https", return_value=False)
    @patch("hetzner_proxmox.cli.lib.systemd.reload_or_restart")
    @patch("hetzner_proxmox.cli.lib.systemd.enable_unit")
    @patch("hetzner_proxmox.cli.lib.ufw.allow")
    @patch("hetzner_proxmox.cli.lib.caddy.format_and_validate")
    @patch("hetzner_proxmox.cli.lib.caddy.write_caddyfile", return_value=Path("/etc/caddy/Caddyfile"))
    def test_https_certificate_pending(self, mock_write, mock_validate, mock_allow, mock_enable, mock_reload,
                                       mock_wait, runner, domain_config):
        result = runner.invoke(app, ["caddy", "https"])

        assert result.exit_code == 0
        assert "is not answering yet" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.caddy.write_caddyfile")
    def test_https_without_domain(self, mock_write, runner):
        result = runner.invoke(app, ["caddy", "https"])

        assert result.exit_code == 1
        assert "Domain cannot be empty" in result.output
        mock_write.assert_not_called()


class TestSystem:
    """Tests for system commands."""

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.tuning.apply_tuned_profile", side_effect=RuntimeError("Failed to apply any tuned profile"))
    @patch("hetzner_proxmox.cli.lib.tuning.configure_journald")
    @patch("hetzner_proxmox.cli.lib.tuning.write_logrotate")
    @patch("hetzner_proxmox.cli.lib.tuning.enable_services", return_value=["chrony"])
    @patch("hetzner_proxmox.cli.lib.tuning.set_performance_governor", return_value=False)
    @patch("hetzner_proxmox.cli.lib.sysctl.install_profiles", return_value=[("kernel.numa_balancing", "not available")])
    @patch("hetzner_proxmox.cli.lib.apt.install")
    @patch("hetzner_proxmox.cli.lib.apt.upgrade")
    @patch("hetzner_proxmox.cli.lib.apt.update")
    def test_optimize_warnings_are_not_fatal(self, mock_update, mock_upgrade, mock_install, mock_sysctl,
                                             mock_governor, mock_services, mock_logrotate, mock_journald,
                                             mock_tuned, runner, isolated_host):
        result = runner.invoke(app, ["system", "optimize"])

        assert result.exit_code == 0
        assert "1 kernel setting(s) not applied: kernel.numa_balancing" in result.output
        assert "could not enable chrony" in result.output
        assert "Failed to apply any tuned profile" in result.output
        mock_logrotate.assert_called_once_with(str(isolated_host / "setup.log"))
        assert "System optimization complete" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.apt.update", side_effect=RuntimeError("Failed to update package lists"))
    def test_optimize_apt_failure(self, mock_update, runner):
        result = runner.invoke(app, ["system", "optimize"])

        assert result.exit_code == 1
        assert "Error optimizing system: Failed to update package lists" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.datastore.ensure_subdirs")
    @patch("hetzner_proxmox.cli.lib.lvm.vgs_on_disk", return_value=[])
    @patch("hetzner_proxmox.cli.lib.blockdev.list_disks")
    @patch("hetzner_proxmox.cli.lib.blockdev.system_disk", return_value="nvme0n1")
    @patch("hetzner_proxmox.cli.lib.blockdev.is_mountpoint", return_value=False)
    def test_data_without_free_space(self, mock_mounted, mock_system, mock_list, mock_vgs, mock_subdirs,
                                     runner, lsblk_json):
        mock_list.return_value = parse_lsblk_json(lsblk_json)

        result = runner.invoke(app, ["system", "data"])

        assert result.exit_code == 0
        assert "method: none" in result.output
        assert "Not enough free space for a separate volume" in result.output
        mock_subdirs.assert_called_once()

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.datastore.provision", return_value="Created /dev/pve/data and mounted it at /data")
    @patch("hetzner_proxmox.cli.lib.lvm.lv_exists", return_value=False)
    @patch("hetzner_proxmox.cli.lib.lvm.vg_free_bytes", return_value=100 * GIB)
    @patch("hetzner_proxmox.cli.lib.lvm.vgs_on_disk", return_value=["pve"])
    @patch("hetzner_proxmox.cli.lib.blockdev.list_disks")
    @patch("hetzner_proxmox.cli.lib.blockdev.system_disk", return_value="nvme0n1")
    @patch("hetzner_proxmox.cli.lib.blockdev.is_mountpoint", return_value=False)
    def test_data_on_lvm(self, mock_mounted, mock_system, mock_list, mock_vgs, mock_free, mock_lv, mock_provision,
                         runner, lsblk_json):
        mock_list.return_value = parse_lsblk_json(lsblk_json)

        result = runner.invoke(app, ["system", "data", "--extend"])

        assert result.exit_code == 0
        assert "free: 100G, method: lvm" in result.output
        data_plan = mock_provision.call_args.args[0]
        assert data_plan.vg == "pve"
        assert mock_provision.call_args.kwargs == {"extend": True}

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.datastore.ensure_subdirs")
    @patch("hetzner_proxmox.cli.lib.blockdev.system_disk")
    @patch("hetzner_proxmox.cli.lib.blockdev.is_mountpoint", return_value=True)
    def test_data_already_mounted(self, mock_mounted, mock_system, mock_subdirs, runner):
        result = runner.invoke(app, ["system", "data"])

        assert result.exit_code == 0
        assert "/data is already mounted" in result.output
        mock_system.assert_not_called()

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.ufw.apply_base_rules")
    @patch("hetzner_proxmox.cli.lib.proxmox.port_listening", return_value=True)
    @patch("hetzner_proxmox.cli.lib.proxmox.service_states", return_value={"pveproxy": True, "pvedaemon": False})
    @patch("hetzner_proxmox.cli.lib.proxmox.restart_services")
    @patch("hetzner_proxmox.cli.lib.proxmox.ensure_html5_console", return_value=False)
    @patch("hetzner_proxmox.cli.lib.apt.install")
    @patch("hetzner_proxmox.cli.lib.apt.update")
    @patch("hetzner_proxmox.cli.lib.proxmox.enable_no_subscription_repo", return_value=True)
    @patch("hetzner_proxmox.cli.lib.proxmox.disable_enterprise_repo", return_value=True)
    def test_proxmox_service_down(self, mock_enterprise, mock_no_sub, mock_update, mock_install, mock_console,
                                  mock_restart, mock_states, mock_port, mock_ufw, runner):
        result = runner.invoke(app, ["system", "proxmox", "--firewall"])

        assert result.exit_code == 1
        assert "Added no-subscription repository" in result.output
        assert "pvedaemon is not running after restart" in result.output
        mock_ufw.assert_not_called()


class TestHostCommands:
    """Tests for validate, status, restart and check-mac."""

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.apt.missing_commands", return_value=[])
    @patch("hetzner_proxmox.cli.lib.host.check_common", return_value=[])
    @patch("hetzner_proxmox.cli.lib.host.is_root", return_value=True)
    def test_validate_passes(self, mock_root, mock_common, mock_missing, runner):
        result = runner.invoke(app, ["validate", "raid"])

        assert result.exit_code == 0
        assert "All checks passed for raid" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.host.check_common", return_value=["Host is not running Debian"])
    @patch("hetzner_proxmox.cli.lib.host.is_root", return_value=False)
    def test_validate_fails(self, mock_root, mock_common, runner):
        result = runner.invoke(app, ["validate"])

        assert result.exit_code == 1
        assert "FAIL  Not running as root" in result.output
        assert "FAIL  Host is not running Debian" in result.output
        assert "2 problem(s) found" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.host.check_common", return_value=[])
    @patch("hetzner_proxmox.cli.lib.host.is_root", return_value=True)
    def test_validate_unknown_step(self, mock_root, mock_common, runner):
        result = runner.invoke(app, ["validate", "bogus"])

        assert result.exit_code == 1
        assert "Unknown command: bogus" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.ufw.status", side_effect=RuntimeError("ufw: command not found"))
    @patch("hetzner_proxmox.cli.lib.systemd.unit_state", return_value="active")
    def test_status(self, mock_state, mock_ufw, runner):
        state.record_storage({"name": "raid-mirror-1", "kind": "mdadm-mirror", "device": "/dev/md0",
                              "drives": ["/dev/sda", "/dev/sdb"], "path": "/mnt/pve/raid-mirror-1"})
        state.record_vm({"vm_id": 100, "role": "pfsense", "name": "pfSense-Firewall"})

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "pveproxy     active" in result.output
        assert "unavailable: ufw: command not found" in result.output
        assert "raid-mirror-1: mdadm-mirror on /dev/md0 at /mnt/pve/raid-mirror-1" in result.output
        assert "100: pfSense-Firewall (pfsense)" in result.output

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.systemd.restart_unit")
    def test_restart(self, mock_restart, runner):
        result = runner.invoke(app, ["restart"])

        assert result.exit_code == 0
        assert [c.args[0] for c in mock_restart.call_args_list] == ["caddy", "pveproxy", "pvedaemon"]

    @pytest.mark.integration
    @patch("hetzner_proxmox.cli.lib.qm.get_config")
    @patch("hetzner_proxmox.cli.lib.qm.vm_exists", return_value=True)
    def test_check_mac(self, mock_exists, mock_config, runner, isolated_host):
        (isolated_host / "additional-ips.conf").write_text(
            "IP=203.0.113.10 MAC=00:50:56:00:01:02 GATEWAY=203.0.113.1 NETMASK=255.255.255.192\n"
            "IP=203.0.113.11 GATEWAY=203.0.113.1 NETMASK=255.255.255.192\n",
            encoding="utf-8",
        )
        mock_config.return_value = {
            "net0": "virtio=00:50:56:00:01:02,bridge=vmbr0,firewall=0",
            "net1": "virtio=BC:24:11:00:00:01,bridge=vmbr0",
        }

        result = runner.invoke(app, ["check-mac"])

        assert result.exit_code == 1
        assert "#1 203.0.113.10: MAC 00:50:56:00:01:02 (valid)" in result.output
        assert "#2 203.0.113.11: MAC - (missing)" in result.output
        assert "VM 100 net0 (pfSense WAN): 00:50:56:00:01:02 MATCHES" in result.output
        assert "VM 200 net1 (admin VM WAN): BC:24:11:00:00:01 auto-generated" in result.output
        assert "Request separate MAC" in result.output

    @pytest.mark.integration
    def test_check_mac_without_ips(self, runner):
        result = runner.invoke(app, ["check-mac"])

        assert result.exit_code == 1
        assert "No additional IPs configured" in result.output
