"""
Drive inventory and wipe commands.
"""

from typing import List

import typer

from hetzner_proxmox.cli.lib import blockdev, mdadm, zfs
from hetzner_proxmox.cli.lib.blockdev import BlockDevice

app = typer.Typer(help="Drive inventory and formatting commands")


def _non_system(disks: List[BlockDevice]) -> List[BlockDevice]:
    return [d for d in disks if not d.is_system and not d.has_mounts]


@app.command("list")
def list_drives():
    """
    List physical drives with their size and how they are used.
    """
    try:
        arrays = mdadm.read_mdstat()
        members = zfs.pool_members()
        for disk in blockdev.list_disks():
            status = blockdev.classify(disk, mdadm.raid_members(arrays), members)
            fstypes = ",".join(sorted(disk.fstypes)) or "-"
            typer.echo(f"{disk.path:<16} {disk.size_human:>10}  {status.value:<12} {fstypes:<16} {disk.model or ''}")

    except Exception as e:
        typer.echo(f"Error listing drives: {e}", err=True)
        raise typer.Exit(1)


@app.command("format")
def format_drives(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the planned steps only"),
):
    """
    Wipe every non-system drive: stop md arrays, clear RAID superblocks and
    filesystem signatures, and zero the start of each drive.
    """
    try:
        drives = _non_system(blockdev.list_disks())
        if not drives:
            typer.echo("No non-system drives found")
            return

        arrays = mdadm.read_mdstat()
        typer.echo("Drives to wipe:")
        for drive in drives:
            typer.echo(f"  {drive.path} ({drive.size_human}) {drive.model or ''}")

        if dry_run:
            for array in arrays:
                typer.echo(f"  [dry-run] mdadm --stop {array.device}")
            for drive in drives:
                typer.echo(f"  [dry-run] mdadm --zero-superblock {drive.path}")
                typer.echo(f"  [dry-run] wipefs -af {drive.path}")
                typer.echo(f"  [dry-run] dd if=/dev/zero of={drive.path} bs=1M count=100")
                typer.echo(f"  [dry-run] partprobe {drive.path}")
            return

        if not yes:
            answer = typer.prompt("ALL DATA on these drives will be destroyed. Type 'yes' to continue")
            if answer != "yes":
                typer.echo("Aborted")
                raise typer.Exit(1)

        for array in arrays:
            try:
                mdadm.stop_array(array.device, force=True)
                typer.echo(f"Stopped {array.device}")
            except RuntimeError as e:
                typer.echo(f"Warning: {e}", err=True)

        for drive in drives:
            try:
                mdadm.zero_superblock(drive.path)
            except RuntimeError as e:
                typer.echo(f"Warning: {e}", err=True)

        for drive in drives:
            typer.echo(f"Wiping {drive.path}...")
            blockdev.wipe_signatures(drive.path, force=True)
            blockdev.zero_head(drive.path)
            blockdev.partprobe(drive.path)

        typer.echo(f"Formatted {len(drives)} drive(s)")

    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error formatting drives: {e}", err=True)
        raise typer.Exit(1)
