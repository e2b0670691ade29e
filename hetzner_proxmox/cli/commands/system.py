"""
Host system commands: performance tuning, the /data volume and Proxmox defaults.
"""

import typer

from hetzner_proxmox.cli.lib import apt, blockdev, datastore, lvm, proxmox, sysctl, tuning, ufw
from hetzner_proxmox.cli.lib.config import HostConfig, load_config

app = typer.Typer(help="Host system commands")


def _optimize(cfg: HostConfig) -> None:
    typer.echo("Updating packages...")
    apt.update()
    apt.upgrade()
    apt.install(tuning.SYSTEM_PACKAGES)
    typer.echo(f"  Installed {len(tuning.SYSTEM_PACKAGES)} system packages")

    failures = sysctl.install_profiles()
    if failures:
        names = ", ".join(key for key, _ in failures)
        typer.echo(f"Warning: {len(failures)} kernel setting(s) not applied: {names}", err=True)
    typer.echo("  Applied kernel tuning")

    if tuning.set_performance_governor():
        typer.echo("  CPU governor set to performance")
    else:
        typer.echo("  CPU frequency scaling not available, skipped")

    for service in tuning.enable_services(["irqbalance", "chrony"]):
        typer.echo(f"Warning: could not enable {service}", err=True)

    tuning.write_logrotate(cfg.log_file)
    tuning.configure_journald()
    typer.echo("  Configured log rotation and journald limits")

    try:
        profile = tuning.apply_tuned_profile()
        typer.echo(f"  tuned profile: {profile}")
    except RuntimeError as e:
        typer.echo(f"Warning: {e}", err=True)


def _data(extend: bool) -> None:
    mount_point = str(datastore.DATA_MOUNT)
    if blockdev.is_mountpoint(mount_point):
        datastore.ensure_subdirs()
        typer.echo(f"{mount_point} is already mounted; directories are in place")
        return

    disk_name = blockdev.system_disk()
    disk = next((d for d in blockdev.list_disks() if d.name == disk_name), None)
    if disk is None:
        raise RuntimeError(f"System disk {disk_name} not found")

    data_plan = datastore.plan(disk, lvm.vgs_on_disk(disk_name))
    typer.echo(f"System disk: {disk.path} ({disk.size_human}), "
               f"free: {blockdev.human_size(data_plan.free_bytes)}, method: {data_plan.method}")

    if data_plan.method == "none":
        datastore.ensure_subdirs()
        typer.echo(f"Not enough free space for a separate volume; created directories under {mount_point}")
        return

    typer.echo(datastore.provision(data_plan, extend=extend))


@app.command()
def optimize():
    """
    Tune the host for virtualization: packages, sysctl, CPU governor, logging, tuned.
    """
    try:
        _optimize(load_config())
        typer.echo("System optimization complete")

    except Exception as e:
        typer.echo(f"Error optimizing system: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def data(
    extend: bool = typer.Option(False, "--extend", help="Grow an existing data LV into free space"),
):
    """
    Create /data from free space on the system drive.
    """
    try:
        _data(extend)

    except Exception as e:
        typer.echo(f"Error setting up /data: {e}", err=True)
        raise typer.Exit(1)


@app.command("proxmox")
def configure_proxmox(
    firewall: bool = typer.Option(False, "--firewall", help="Also enable a basic ufw ruleset"),
):
    """
    Switch to the no-subscription repository and set Proxmox defaults.
    """
    try:
        if proxmox.disable_enterprise_repo():
            typer.echo("  Disabled enterprise repository")
        if proxmox.enable_no_subscription_repo():
            typer.echo("  Added no-subscription repository")

        apt.update()
        apt.install(proxmox.EXTRA_PACKAGES)

        if proxmox.ensure_html5_console():
            typer.echo("  Set HTML5 console as default")

        proxmox.restart_services()
        for service, active in proxmox.service_states().items():
            if not active:
                raise RuntimeError(f"{service} is not running after restart")
        typer.echo("  Proxmox services are running")

        if not proxmox.port_listening(8006):
            typer.echo("Warning: nothing is listening on port 8006", err=True)

        if firewall:
            ufw.apply_base_rules()
            typer.echo("  Enabled ufw (ssh, 80, 443)")

        typer.echo("Proxmox configuration complete")

    except Exception as e:
        typer.echo(f"Error configuring Proxmox: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def setup():
    """
    Run optimize followed by data.
    """
    try:
        _optimize(load_config())
        _data(extend=False)
        typer.echo("System setup complete")

    except Exception as e:
        typer.echo(f"Error setting up system: {e}", err=True)
        raise typer.Exit(1)
