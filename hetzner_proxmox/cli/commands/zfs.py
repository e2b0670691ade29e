"""
ZFS mirror commands.
"""

from typing import List

import typer

from hetzner_proxmox.cli.lib import blockdev, pvesm, state, zfs
from hetzner_proxmox.cli.lib.blockdev import BlockDevice, DriveStatus
from hetzner_proxmox.cli.lib.mirrors import STORAGE_ROOT

app = typer.Typer(help="ZFS pool storage commands")

DATASET = "vmdata"


def _eligible(disks: List[BlockDevice], include_zfs: bool) -> List[BlockDevice]:
    members = zfs.pool_members()
    result = []
    for disk in disks:
        status = blockdev.classify(disk, [], members)
        if status == DriveStatus.SYSTEM:
            typer.echo(f"Skipping system drive {disk.path}")
            continue
        if status == DriveStatus.IN_ZFS_POOL and not include_zfs:
            typer.echo(f"Skipping {disk.path}: already in a ZFS pool (use --include-zfs)")
            continue
        if disk.has_mounts:
            typer.echo(f"Skipping {disk.path}: has mounted filesystems")
            continue
        result.append(disk)
    return result


@app.command()
def setup(
    include_zfs: bool = typer.Option(False, "--include-zfs", help="Reuse drives that belong to an existing pool"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompts"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without changing anything"),
):
    """
    Build ZFS pools from spare drives and add them to Proxmox.

    Drives of equal size become two-way mirrors; the rest become single-drive pools.
    """
    try:
        groups = blockdev.group_by_size(_eligible(blockdev.list_disks(), include_zfs))
        if not groups:
            typer.echo("No drives available for ZFS setup")
            return

        existing = zfs.list_pools() if zfs.zfs_available() else []
        taken = set(pvesm.storage_ids()) | {s["name"] for s in state.list_storage()}
        plan = []
        for group in groups:
            pool = zfs.next_pool_name(existing + [p for p, _, _ in plan])
            prefix = "zfs-mirror" if group.kind == "mirror" else "zfs-single"
            storage_name = pvesm.next_storage_name(prefix, taken)
            taken.add(storage_name)
            plan.append((pool, storage_name, group))

        typer.echo("Planned pools:")
        for pool, storage_name, group in plan:
            drives = ", ".join(f"{d.path} ({d.size_human})" for d in group.drives)
            typer.echo(f"  {pool} ({group.kind}): {drives} -> {storage_name}")

        if dry_run:
            return

        if not zfs.zfs_available():
            typer.echo("Installing ZFS utilities...")
            zfs.install_zfs()

        succeeded = 0
        failed = 0
        for pool, storage_name, group in plan:
            typer.echo(f"Creating pool {pool}...")
            try:
                for drive in group.drives:
                    wipeable = drive.fstypes & set(blockdev.WIPE_CONFIRM_FSTYPES)
                    if not wipeable:
                        continue
                    if not yes and not typer.confirm(
                        f"{drive.path} holds {', '.join(sorted(wipeable))} data. Wipe it?"
                    ):
                        raise RuntimeError(f"{drive.path} was not wiped")
                    blockdev.wipe_signatures(drive.path, force=True)
                    typer.echo(f"  Wiped {drive.path}")

                zfs.create_pool(pool, [d.path for d in group.drives])
                typer.echo(f"  Created pool {pool}")
            except RuntimeError as e:
                typer.echo(f"  Failed to create {pool}: {e}", err=True)
                failed += 1
                continue

            succeeded += 1
            mount_path = f"{STORAGE_ROOT}/{pool}"
            try:
                if not zfs.create_dataset(pool, DATASET, mount_path):
                    raise RuntimeError(f"dataset {pool}/{DATASET} could not be created")
                if not pvesm.add_dir_storage(storage_name, mount_path):
                    raise RuntimeError(f"Proxmox storage {storage_name} already exists")
                state.record_storage(
                    {
                        "name": storage_name,
                        "kind": "zfs",
                        "device": pool,
                        "drives": [d.path for d in group.drives],
                        "path": mount_path,
                    }
                )
                typer.echo(f"  Registered Proxmox storage {storage_name} at {mount_path}")
            except RuntimeError as e:
                typer.echo(f"  Warning: pool {pool} created but not registered: {e}", err=True)

        typer.echo(f"ZFS setup finished: {succeeded} succeeded, {failed} failed")
        if not succeeded:
            raise typer.Exit(1)

    except (typer.Exit, typer.Abort):
        raise
    except Exception as e:
        typer.echo(f"Error setting up ZFS: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def status():
    """
    Show ZFS pools and their health.
    """
    try:
        if not zfs.zfs_available():
            typer.echo("ZFS is not installed")
            return
        pools = zfs.list_pools()
        if not pools:
            typer.echo("No ZFS pools found")
            return
        for pool in pools:
            health = "ONLINE" if zfs.pool_healthy(pool) else "UNHEALTHY"
            typer.echo(f"{pool}: {health}")

    except Exception as e:
        typer.echo(f"Error reading ZFS status: {e}", err=True)
        raise typer.Exit(1)
