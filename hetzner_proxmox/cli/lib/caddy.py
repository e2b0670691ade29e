"""
Caddy reverse proxy installation and HTTPS configuration for the Proxmox UI.
"""

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

import requests
from jinja2 import Template

from hetzner_proxmox.cli.lib import apt, download
from hetzner_proxmox.cli.lib.config import HostConfig
from hetzner_proxmox.cli.lib.files import atomic_write_text, backup_file

logger = logging.getLogger(__name__)

KEYRING_PATH = Path("/usr/share/keyrings/caddy-stable-archive-keyring.gpg")
SOURCES_PATH = Path("/etc/apt/sources.list.d/caddy-stable.list")
GPG_KEY_URL = "https://dl.cloudsmith.io/public/caddy/stable/gpg.key"
SOURCES_URL = "https://dl.cloudsmith.io/public/caddy/stable/debian.deb.txt"
ACME_STAGING_CA = "https://acme-staging-v02.api.letsencrypt.org/directory"
LOG_DIR = Path("/var/log/caddy")

CADDYFILE_TEMPLATE = """# Managed by hetzner-proxmox
{
    email {{ acme_email }}
{% if staging %}
    acme_ca {{ acme_ca }}
{% endif %}
}

{{ domain }} {
    encode gzip

    reverse_proxy https://{{ internal_ip }}:{{ proxmox_port }} {
        transport http {
            tls_insecure_skip_verify
        }
        header_up Host {host}
        header_up X-Real-IP {remote_host}
        flush_interval -1
    }

    log {
        output file {{ log_file }} {
            roll_size 10mb
            roll_keep 5
        }
        format json
    }
}
"""


def render_caddyfile(cfg: HostConfig) -> str:
    """
    Render the Caddyfile proxying `domain` to the local Proxmox UI.

    Raises:
        ValueError: If domain or email are not configured
    """
    if not cfg.domain:
        raise ValueError("domain is not configured")
    if not cfg.acme_email:
        raise ValueError("email is not configured")

    template = Template(CADDYFILE_TEMPLATE, trim_blocks=True, lstrip_blocks=True, keep_trailing_newline=True)
    return template.render(
        domain=cfg.domain,
        acme_email=cfg.acme_email,
        staging=cfg.enable_staging,
        acme_ca=ACME_STAGING_CA,
        internal_ip=cfg.internal_ip,
        proxmox_port=cfg.proxmox_port,
        log_file=cfg.caddy_log_file,
    )


def chown_caddy(path: Path, recursive: bool = False) -> None:
    """Hand a path to the caddy user; silently skipped if the user does not exist yet."""
    try:
        shutil.chown(path, user="caddy", group="caddy")
        if recursive and path.is_dir():
            for child in path.rglob("*"):
                shutil.chown(child, user="caddy", group="caddy")
    except LookupError:
        logger.warning("caddy user does not exist, leaving ownership of %s unchanged", path)


def install_repository(session: Optional[requests.Session] = None) -> None:
    """
    Add the Caddy stable apt repository and its signing key.

    Raises:
        RuntimeError: If the key cannot be fetched or dearmored
    """
    if not KEYRING_PATH.exists():
        key = download.fetch_bytes(GPG_KEY_URL, session=session)
        KEYRING_PATH.parent.mkdir(parents=True, exist_ok=True)
        result = subprocess.run(
            ["gpg", "--dearmor", "-o", str(KEYRING_PATH)],
            input=key,
            capture_output=True,
            check=False
        )
        if result.returncode != 0:
            raise RuntimeError(f"Failed to install Caddy signing key: {result.stderr!r}")

    existing = SOURCES_PATH.read_text(encoding="utf-8") if SOURCES_PATH.exists() else ""
    if "caddy/stable" not in existing:
        atomic_write_text(SOURCES_PATH, download.fetch_text(SOURCES_URL, session=session))


def caddy_version() -> str:
    result = subprocess.run(
        ["caddy", "version"],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Caddy is not working: {result.stderr}")
    return result.stdout.strip()


def install(cfg: HostConfig) -> str:
    """
    Install Caddy from its apt repository and prepare config/log directories.

    Returns:
        Installed Caddy version
    """
    install_repository()
    apt.update()
    apt.install(["caddy"])
    version = caddy_version()

    for directory in (Path(cfg.caddy_config_dir), LOG_DIR):
        directory.mkdir(parents=True, exist_ok=True)
        chown_caddy(directory, recursive=True)
    return version


def write_caddyfile(cfg: HostConfig) -> Path:
    """
    Back up and replace the Caddyfile.

    Returns:
        Path of the written Caddyfile
    """
    path = Path(cfg.caddy_config_dir) / "Caddyfile"
    content = render_caddyfile(cfg)

    LOG_DIR.mkdir(parents=True, exist_ok=True)
    chown_caddy(LOG_DIR, recursive=True)
    os.chmod(LOG_DIR, 0o755)

    backup_file(path)
    atomic_write_text(path, content, mode=0o644)
    chown_caddy(path)
    logger.info("Wrote %s", path)
    return path


def format_and_validate(path: Path) -> None:
    """
    Normalise formatting and validate the configuration.

    Raises:
        RuntimeError: If caddy validate rejects the file
    """
    result = subprocess.run(
        ["caddy", "fmt", "--overwrite", str(path)],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning("caddy fmt failed: %s", result.stderr.strip())

    result = subprocess.run(
        ["caddy", "validate", "--config", str(path)],
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        raise RuntimeError(f"Caddy configuration is invalid: {result.stderr or result.stdout}")


def wait_for_https(
    domain: str,
    attempts: int = 30,
    interval: float = 10,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Poll https://<domain> until it answers (certificate issuance can take a while).

    Returns:
        True once any HTTP response arrives over valid TLS, False on timeout
    """
    session = session or requests.Session()
    url = f"https://{domain}"
    for attempt in range(1, attempts + 1):
        try:
            session.get(url, timeout=10)
            return True
        except requests.exceptions.RequestException as e:
            logger.debug("HTTPS check %d/%d for %s failed: %s", attempt, attempts, url, e)
        if attempt < attempts:
            sleep(interval)
    return False
