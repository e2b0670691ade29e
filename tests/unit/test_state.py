"""
Unit tests for state store.
"""

import pytest


@pytest.mark.unit
def test_state_roundtrip(temp_dir, monkeypatch):
    monkeypatch.setenv("HPX_STATE_DIR", str(temp_dir))

    from hetzner_proxmox.cli.lib import state

    state.record_storage({"name": "raid-mirror-1", "kind": "mdadm-mirror", "device": "/dev/md0", "path": "/mnt/pve/raid-mirror-1"})
    state.record_storage({"name": "zfs-mirror-1", "kind": "zfs", "device": "zpool1", "path": "/mnt/pve/zpool1"})
    assert [s["name"] for s in state.list_storage()] == ["raid-mirror-1", "zfs-mirror-1"]
    assert [s["name"] for s in state.list_storage(kind="zfs")] == ["zfs-mirror-1"]
    assert "created_at" in state.list_storage()[0]

    state.record_storage({"name": "raid-mirror-1", "kind": "mdadm-mirror", "device": "/dev/md1", "path": "/mnt/pve/raid-mirror-1"})
    assert len(state.list_storage()) == 2

    assert state.forget_storage("/dev/md1") is True
    assert state.forget_storage("/dev/md1") is False
    assert [s["name"] for s in state.list_storage()] == ["zfs-mirror-1"]

    state.record_vm({"vm_id": 200, "role": "firewall-admin", "name": "firewall-admin"})
    state.record_vm({"vm_id": 100, "role": "pfsense", "name": "pfSense-Firewall"})
    assert [vm["vm_id"] for vm in state.list_vms()] == [100, 200]

    state.record_network_change({"backup": "/root/network-backups/interfaces.backup.1"})
    state.record_network_change({"backup": "/root/network-backups/interfaces.backup.2"})
    changes = state.list_network_changes()
    assert [c["backup"] for c in changes] == [
        "/root/network-backups/interfaces.backup.1",
        "/root/network-backups/interfaces.backup.2",
    ]
    assert all("applied_at" in c for c in changes)


@pytest.mark.unit
def test_state_dir_from_config(temp_dir, monkeypatch):
    monkeypatch.delenv("HPX_STATE_DIR", raising=False)
    conf = temp_dir / "setup.conf"
    conf.write_text(f"[host]\nstate_dir = {temp_dir / 'from-config'}\n", encoding="utf-8")
    monkeypatch.setenv("HPX_CONFIG_PATH", str(conf))

    from hetzner_proxmox.cli.lib import state

    assert state.get_state_dir() == temp_dir / "from-config"


@pytest.mark.unit
def test_state_empty(temp_dir, monkeypatch):
    monkeypatch.setenv("HPX_STATE_DIR", str(temp_dir / "empty"))

    from hetzner_proxmox.cli.lib import state

    assert state.list_storage() == []
    assert state.list_vms() == []
    assert state.list_network_changes() == []
