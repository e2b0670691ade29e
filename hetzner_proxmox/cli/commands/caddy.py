"""
Caddy reverse proxy commands: HTTPS for the Proxmox web UI.
"""

import typer

from hetzner_proxmox.cli.lib import caddy, systemd, ufw
from hetzner_proxmox.cli.lib.config import HostConfig, load_config
from hetzner_proxmox.cli.lib.validators import validate_domain, validate_email

app = typer.Typer(help="Caddy reverse proxy commands")


def _install(cfg: HostConfig) -> None:
    typer.echo("Installing Caddy...")
    version = caddy.install(cfg)
    typer.echo(f"  Installed {version}")

    # Port 80/443 stay closed until a Caddyfile for the domain exists
    systemd.stop_unit("caddy")
    systemd.disable_unit("caddy")
    typer.echo("  Caddy service stopped until HTTPS is configured")


def _https(cfg: HostConfig) -> None:
    validate_domain(cfg.domain)
    validate_email(cfg.email)

    typer.echo(f"Configuring HTTPS for {cfg.domain}...")
    path = caddy.write_caddyfile(cfg)
    typer.echo(f"  Wrote {path}")
    caddy.format_and_validate(path)
    typer.echo("  Configuration is valid")

    ufw.allow("80/tcp")
    ufw.allow("443/tcp")
    typer.echo("  Opened ports 80 and 443")

    systemd.enable_unit("caddy")
    systemd.reload_or_restart("caddy")
    typer.echo("  Caddy is running")

    typer.echo("Waiting for the certificate (this can take a few minutes)...")
    if caddy.wait_for_https(cfg.domain):
        typer.echo(f"Proxmox is available at https://{cfg.domain}")
    else:
        typer.echo(
            f"Warning: https://{cfg.domain} is not answering yet; check DNS and 'journalctl -u caddy'",
            err=True,
        )


@app.command()
def install():
    """
    Install Caddy from the official apt repository.
    """
    try:
        _install(load_config())

    except Exception as e:
        typer.echo(f"Error installing Caddy: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def https():
    """
    Put the Proxmox UI behind Caddy with a Let's Encrypt certificate.

    Requires `domain` and `email` in the [host] config section.
    """
    try:
        _https(load_config())

    except Exception as e:
        typer.echo(f"Error configuring HTTPS: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def setup():
    """
    Install Caddy and configure HTTPS.
    """
    try:
        cfg = load_config()
        _install(cfg)
        _https(cfg)

    except Exception as e:
        typer.echo(f"Error setting up Caddy: {e}", err=True)
        raise typer.Exit(1)
