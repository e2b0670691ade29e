"""
RAID1 mirror commands: turn spare drives into Proxmox directory storage, and
tear arrays down again.
"""

import typer

from hetzner_proxmox.cli.lib import blockdev, fstab, mdadm, mirrors, pvesm, zfs
from hetzner_proxmox.cli.lib import state

app = typer.Typer(help="RAID1 mirror storage commands")


def _describe(plan: mirrors.MirrorPlan) -> str:
    drives = ", ".join(f"{d.path} ({d.size_human})" for d in plan.drives)
    if plan.kind == "conflict":
        return f"  SKIP     {drives}: {plan.reason}"
    if plan.kind == "existing":
        return f"  REUSE    /dev/{plan.array} [{drives}] -> {plan.storage_name}"
    if plan.kind == "create":
        return f"  MIRROR   {drives} -> {plan.storage_name}"
    return f"  SINGLE   {drives} -> {plan.storage_name}"


@app.command()
def setup(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without changing anything"),
):
    """
    Pair spare drives of equal size into RAID1 mirrors and add them to Proxmox.

    Drives without a partner become single-drive storage. System drives and
    drives with mounted filesystems are never touched.
    """
    try:
        disks = blockdev.list_disks()
        for disk in disks:
            if disk.is_system:
                typer.echo(f"Skipping system drive {disk.path}")

        arrays = mdadm.read_mdstat()
        candidates = mirrors.candidate_disks(disks, zfs.pool_members())
        taken = set(pvesm.storage_ids()) | {s["name"] for s in state.list_storage()}
        plans = mirrors.plan_mirrors(candidates, arrays, taken)

        if not plans:
            typer.echo("No drives available for mirror setup")
            return

        typer.echo("Planned storage:")
        for plan in plans:
            typer.echo(_describe(plan))

        work = [p for p in plans if p.kind != "conflict"]
        if dry_run or not work:
            return

        if any(p.kind in ("create", "single") for p in work) and not yes:
            typer.confirm("Drives marked MIRROR or SINGLE will be wiped. Continue?", abort=True)

        created = 0
        failed = 0
        for plan in work:
            typer.echo(f"Setting up {plan.storage_name}...")
            try:
                device = mirrors.build(plan)
                typer.echo(f"  Filesystem ready on {device}")
                path = mirrors.register_storage(device, plan.storage_name)
                typer.echo(f"  Registered Proxmox storage {plan.storage_name} at {path}")
                state.record_storage(
                    {
                        "name": plan.storage_name,
                        "kind": "mdadm-mirror" if plan.kind != "single" else "single",
                        "device": device,
                        "drives": plan.drive_paths,
                        "path": path,
                    }
                )
                created += 1
            except Exception as e:
                typer.echo(f"  Failed to set up {plan.storage_name}: {e}", err=True)
                failed += 1

        if any(p.kind == "create" for p in work) and created:
            mdadm.save_config(overwrite=True)
            typer.echo(f"Saved RAID configuration to {mdadm.MDADM_CONF_PATH}")

        typer.echo(f"Mirror setup finished: {created} succeeded, {failed} failed")
        if failed and not created:
            raise typer.Exit(1)

    except (typer.Exit, typer.Abort):
        raise
    except Exception as e:
        typer.echo(f"Error setting up mirrors: {e}", err=True)
        raise typer.Exit(1)


def _remove_array(name: str, force: bool) -> None:
    device = f"/dev/{name}"
    members = mdadm.array_members(name)

    for target in blockdev.mount_targets(device):
        blockdev.unmount(target, force=force)
        typer.echo(f"  Unmounted {target}")
        if fstab.remove_target(target):
            typer.echo(f"  Removed {target} from fstab")

    storages = [f"data-{name}"] + [s["name"] for s in state.list_storage() if s.get("device") == device]
    for storage in storages:
        if pvesm.remove_storage(storage):
            typer.echo(f"  Removed Proxmox storage {storage}")
    state.forget_storage(device)

    mdadm.stop_array(device, force=True)
    typer.echo(f"  Stopped {device}")

    for member in members:
        try:
            mdadm.zero_superblock(member)
            typer.echo(f"  Zeroed superblock on {member}")
        except RuntimeError as e:
            typer.echo(f"  Warning: {e}", err=True)


@app.command()
def remove(
    all_arrays: bool = typer.Option(False, "--all", help="Also remove arrays holding system filesystems"),
    force: bool = typer.Option(False, "--force", help="Skip confirmations and force unmounts"),
    show_status: bool = typer.Option(False, "--status", help="Only show arrays and their use"),
):
    """
    Remove RAID arrays.

    By default only data arrays are removed. --all also removes system
    arrays, which leaves the host unbootable unless it is reinstalled.
    """
    try:
        names = mdadm.list_arrays()
        if not names:
            typer.echo("No RAID arrays found")
            return

        try:
            root = blockdev.root_source()
        except RuntimeError:
            root = ""
        system = {name for name in names if mdadm.is_system_array(name, root)}

        if show_status:
            for name in names:
                tag = "SYSTEM" if name in system else "DATA"
                typer.echo(f"/dev/{name} [{tag}]")
                typer.echo(f"  Members: {', '.join(mdadm.array_members(name)) or '-'}")
                typer.echo(f"  Mounted: {', '.join(blockdev.mount_targets(f'/dev/{name}')) or '-'}")
            return

        targets = names if all_arrays else [n for n in names if n not in system]
        for name in sorted(system):
            if not all_arrays:
                typer.echo(f"Skipping system array /dev/{name} (use --all to include it)")
        if not targets:
            typer.echo("No arrays to remove")
            return

        typer.echo(f"Arrays to remove: {', '.join(targets)}")
        if not force:
            typer.confirm("All data on these arrays will be lost. Continue?", abort=True)
            if all_arrays and system & set(targets):
                typer.confirm("System arrays are included; the host will not boot afterwards. Really continue?", abort=True)

        removed = 0
        for name in targets:
            typer.echo(f"Removing /dev/{name}...")
            try:
                _remove_array(name, force)
                removed += 1
            except RuntimeError as e:
                typer.echo(f"  Failed to remove /dev/{name}: {e}", err=True)

        if removed and all_arrays:
            mdadm.reset_config()
            mdadm.update_initramfs()
            typer.echo("Reset mdadm.conf and updated initramfs")
        elif removed:
            for name in targets:
                mdadm.remove_from_config(f"/dev/{name}")

        typer.echo(f"Removed {removed} of {len(targets)} array(s)")
        if removed < len(targets):
            raise typer.Exit(1)

    except (typer.Exit, typer.Abort):
        raise
    except Exception as e:
        typer.echo(f"Error removing arrays: {e}", err=True)
        raise typer.Exit(1)
