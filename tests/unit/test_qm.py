"""
Unit tests for qm module.
"""

from unittest.mock import MagicMock

import pytest

from hetzner_proxmox.cli.lib.qm import (create_vm, destroy_vm, get_config, list_vms,
                                        macaddr_of, parse_config, vm_exists, vm_status)

QM_CONFIG = """boot: order=ide2
cores: 2
memory: 2048
name: pfSense-Firewall
net0: virtio=00:50:56:00:01:02,bridge=vmbr0,firewall=0
net1: virtio=BC:24:11:5E:0A:1F,bridge=vmbr1,firewall=0
"""


class TestVMStatus:
    """Tests for VM status queries."""

    @pytest.mark.unit
    def test_running(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=0, stdout="status: running\n")

        assert vm_status(100) == "running"
        assert vm_exists(100)

    @pytest.mark.unit
    def test_missing(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=2, stderr="Configuration file 'nodes/pve/qemu-server/100.conf' does not exist")

        assert vm_status(100) is None
        assert not vm_exists(100)

    @pytest.mark.unit
    def test_list_vms(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(
            returncode=0,
            stdout="      VMID NAME                 STATUS     MEM(MB)    BOOTDISK(GB) PID\n"
                   "       100 pfSense-Firewall     running    2048               8.00 1234\n"
                   "       200 firewall-admin       stopped    1024               8.00 0\n",
        )

        assert list_vms() == [
            {"vm_id": "100", "name": "pfSense-Firewall", "status": "running"},
            {"vm_id": "200", "name": "firewall-admin", "status": "stopped"},
        ]


class TestVMChanges:
    """Tests for creating and destroying VMs."""

    @pytest.mark.unit
    def test_create_vm(self, mock_subprocess):
        mock_subprocess.side_effect = [
            MagicMock(returncode=2),  # qm status (doesn't exist)
            MagicMock(returncode=0),  # qm create
        ]

        create_vm(100, ["--name", "pfSense-Firewall"])

        mock_subprocess.assert_called_with(
            ["qm", "create", "100", "--name", "pfSense-Firewall"], capture_output=True, text=True, check=False
        )

    @pytest.mark.unit
    def test_create_existing_vm(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=0, stdout="status: stopped\n")

        with pytest.raises(RuntimeError, match="VM 100 already exists"):
            create_vm(100, [])

    @pytest.mark.unit
    def test_create_fails(self, mock_subprocess):
        mock_subprocess.side_effect = [
            MagicMock(returncode=2),  # qm status
            MagicMock(returncode=25, stderr="storage 'local-zfs' does not exist"),  # qm create
        ]

        with pytest.raises(RuntimeError, match="Failed to create VM 100"):
            create_vm(100, [])

    @pytest.mark.unit
    def test_destroy_running_vm(self, mock_subprocess):
        mock_subprocess.side_effect = [
            MagicMock(returncode=0, stdout="status: running\n"),  # qm status
            MagicMock(returncode=0),  # qm stop
            MagicMock(returncode=0),  # qm destroy
        ]

        destroy_vm(100)

        mock_subprocess.assert_any_call(["qm", "stop", "100"], capture_output=True, text=True, check=False)
        mock_subprocess.assert_called_with(
            ["qm", "destroy", "100", "--purge"], capture_output=True, text=True, check=False
        )

    @pytest.mark.unit
    def test_destroy_missing_vm(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=2)

        destroy_vm(100)

        assert mock_subprocess.call_count == 1


class TestVMConfig:
    """Tests for VM configuration parsing."""

    @pytest.mark.unit
    def test_parse_config(self):
        config = parse_config(QM_CONFIG)

        assert config["name"] == "pfSense-Firewall"
        assert config["net0"] == "virtio=00:50:56:00:01:02,bridge=vmbr0,firewall=0"

    @pytest.mark.unit
    def test_get_config_fails(self, mock_subprocess):
        mock_subprocess.return_value = MagicMock(returncode=2, stderr="no such VM")

        with pytest.raises(RuntimeError, match="Failed to read config of VM 100"):
            get_config(100)

    @pytest.mark.unit
    def test_macaddr_of(self):
        assert macaddr_of("virtio=00:50:56:00:01:02,bridge=vmbr0,firewall=0") == "00:50:56:00:01:02"
        assert macaddr_of("virtio,bridge=vmbr0,macaddr=00:50:56:aa:bb:cc") == "00:50:56:AA:BB:CC"
        assert macaddr_of("virtio,bridge=vmbr1") is None
