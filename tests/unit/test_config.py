"""
Unit tests for config loader.
"""

from pathlib import Path

import pytest

from hetzner_proxmox.cli.lib.config import (ADMIN_ISO_PATH, DEFAULT_CONFIG_PATH,
                                            config_path, load_config,
                                            set_config_path)


@pytest.mark.unit
def test_load_config_missing_file(monkeypatch, temp_dir):
    monkeypatch.setenv("HPX_CONFIG_PATH", str(temp_dir / "missing.conf"))

    cfg = load_config()
    assert cfg.log_level == "INFO"
    assert cfg.proxmox_port == 8006
    assert cfg.interfaces_file == "/etc/network/interfaces"
    assert cfg.private_cidr == "192.168.1.1/24"
    assert cfg.dmz_cidr == "10.0.2.1/24"
    assert cfg.pfsense_vm_id == 100
    assert cfg.pfsense_storage == "local-zfs"
    assert cfg.admin_vm_id == 200
    assert cfg.admin_iso_path == ADMIN_ISO_PATH
    assert cfg.state_dir is None


@pytest.mark.unit
def test_load_config_reads_values(monkeypatch, temp_dir):
    conf = temp_dir / "setup.conf"
    conf.write_text(
        "\n".join(
            [
                "[host]",
                "domain = proxmox.example.com",
                "email = admin@example.com",
                "enable_staging = yes",
                "proxmox_port = 8007",
                "log_level = debug",
                f"state_dir = {temp_dir / 'state'}",
                "",
                "[network]",
                "backup_dir = /srv/backups",
                "dmz_cidr = 10.9.0.1/24",
                "",
                "[pfsense]",
                "vm_id = 150",
                "memory = 4096",
                "",
                "[firewall_admin]",
                "hostname = fwadmin",
                "",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("HPX_CONFIG_PATH", str(conf))

    cfg = load_config()
    assert cfg.domain == "proxmox.example.com"
    assert cfg.acme_email == "admin@example.com"
    assert cfg.enable_staging is True
    assert cfg.proxmox_port == 8007
    assert cfg.log_level == "DEBUG"
    assert cfg.state_dir == temp_dir / "state"
    assert cfg.network_backup_dir == "/srv/backups"
    assert cfg.dmz_cidr == "10.9.0.1/24"
    assert cfg.pfsense_vm_id == 150
    assert cfg.pfsense_memory == 4096
    assert cfg.admin_hostname == "fwadmin"


@pytest.mark.unit
def test_load_config_bad_integer_falls_back(monkeypatch, temp_dir):
    conf = temp_dir / "setup.conf"
    conf.write_text("[pfsense]\nvm_id = abc\ncores = 4\n", encoding="utf-8")
    monkeypatch.setenv("HPX_CONFIG_PATH", str(conf))

    cfg = load_config()
    assert cfg.pfsense_vm_id == 100
    assert cfg.pfsense_cores == 4


@pytest.mark.unit
def test_acme_email_overrides_email(monkeypatch, temp_dir):
    conf = temp_dir / "setup.conf"
    conf.write_text("[host]\nemail = a@example.com\nacme_email = certs@example.com\n", encoding="utf-8")
    monkeypatch.setenv("HPX_CONFIG_PATH", str(conf))

    assert load_config().acme_email == "certs@example.com"


@pytest.mark.unit
def test_config_path_precedence(monkeypatch, temp_dir):
    monkeypatch.delenv("HPX_CONFIG_PATH", raising=False)
    assert config_path() == DEFAULT_CONFIG_PATH

    monkeypatch.setenv("HPX_CONFIG_PATH", str(temp_dir / "env.conf"))
    assert config_path() == temp_dir / "env.conf"

    set_config_path(Path(temp_dir / "cli.conf"))
    try:
        assert config_path() == temp_dir / "cli.conf"
    finally:
        set_config_path(None)
