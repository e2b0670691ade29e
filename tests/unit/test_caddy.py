"""
Unit tests for caddy module.
"""

from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest
import requests

from hetzner_proxmox.cli.lib import caddy
from hetzner_proxmox.cli.lib.caddy import (format_and_validate, render_caddyfile, wait_for_https,
                                           write_caddyfile)
from hetzner_proxmox.cli.lib.config import HostConfig


@pytest.fixture
def cfg(temp_dir):
    return HostConfig(
        domain="pve.example.com",
        email="admin@example.com",
        acme_email="admin@example.com",
        caddy_config_dir=str(temp_dir / "caddy"),
    )


class TestRenderCaddyfile:
    """Tests for render_caddyfile function."""

    @pytest.mark.unit
    def test_render(self, cfg):
        text = render_caddyfile(cfg)

        assert "    email admin@example.com\n" in text
        assert "acme_ca" not in text
        assert "pve.example.com {\n" in text
        assert "reverse_proxy https://127.0.0.1:8006 {" in text
        assert "tls_insecure_skip_verify" in text
        assert "output file /var/log/caddy/proxmox.log {" in text

    @pytest.mark.unit
    def test_render_staging(self, cfg):
        text = render_caddyfile(replace(cfg, enable_staging=True))

        assert f"    acme_ca {caddy.ACME_STAGING_CA}\n" in text

    @pytest.mark.unit
    def test_render_requires_domain(self):
        with pytest.raises(ValueError, match="domain is not configured"):
            render_caddyfile(HostConfig(acme_email="admin@example.com"))

    @pytest.mark.unit
    def test_render_requires_email(self):
        with pytest.raises(ValueError, match="email is not configured"):
            render_caddyfile(HostConfig(domain="pve.example.com"))


class TestWriteCaddyfile:
    """Tests for writing and validating the Caddyfile."""

    @pytest.mark.unit
    @patch("hetzner_proxmox.cli.lib.caddy.chown_caddy", MagicMock())
    def test_write_backs_up_existing(self, cfg, temp_dir, monkeypatch):
        monkeypatch.setattr(caddy, "LOG_DIR", temp_dir / "log")
        caddyfile = temp_dir / "caddy" / "Caddyfile"
        caddyfile.parent.mkdir()
        caddyfile.write_text(":80 {\n}\n", encoding="utf-8")

        path = write_caddyfile(cfg)

        assert path == caddyfile
        assert "pve.example.com {" in caddyfile.read_text(encoding="utf-8")
        assert len(list(caddyfile.parent.glob("Caddyfile.backup.*"))) == 1
        assert (temp_dir / "log").is_dir()

    @pytest.mark.unit
    def test_validate_rejects(self, mock_subprocess, temp_dir):
        mock_subprocess.side_effect = [
            MagicMock(returncode=0),  # caddy fmt
            MagicMock(returncode=1, stderr="adapting config: unrecognized directive", stdout=""),  # caddy validate
        ]

        with pytest.raises(RuntimeError, match="Caddy configuration is invalid"):
            format_and_validate(temp_dir / "Caddyfile")

    @pytest.mark.unit
    def test_fmt_failure_is_not_fatal(self, mock_subprocess, temp_dir):
        mock_subprocess.side_effect = [
            MagicMock(returncode=1, stderr="fmt error"),  # caddy fmt
            MagicMock(returncode=0),  # caddy validate
        ]

        format_and_validate(temp_dir / "Caddyfile")

        assert mock_subprocess.call_count == 2


class TestWaitForHttps:
    """Tests for wait_for_https function."""

    @pytest.mark.unit
    def test_succeeds_after_retry(self):
        session = MagicMock()
        session.get.side_effect = [requests.exceptions.SSLError("no certificate yet"), MagicMock(status_code=401)]
        sleep = MagicMock()

        assert wait_for_https("pve.example.com", attempts=3, session=session, sleep=sleep) is True
        session.get.assert_called_with("https://pve.example.com", timeout=10)
        sleep.assert_called_once_with(10)

    @pytest.mark.unit
    def test_times_out(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        sleep = MagicMock()

        assert wait_for_https("pve.example.com", attempts=3, session=session, sleep=sleep) is False
        assert session.get.call_count == 3
        assert sleep.call_count == 2
