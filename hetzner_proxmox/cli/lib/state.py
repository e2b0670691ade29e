"""
Local record of what this tool has provisioned on the host.

Storage created, VMs created and network configurations applied are kept in
small JSON documents so that `status` can report them later.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from hetzner_proxmox.cli.lib.config import load_config


def get_state_dir() -> Path:
    """
    Resolve the directory used for persistent state.

    Priority:
    1) `HPX_STATE_DIR` env var, if set
    2) `state_dir` from the config file
    3) `/var/lib/hetzner-proxmox` if writable
    4) `$XDG_STATE_HOME/hetzner-proxmox` or `~/.local/state/hetzner-proxmox` as fallback
    """
    env = os.environ.get("HPX_STATE_DIR")
    if env:
        return Path(env)

    cfg = load_config()
    if cfg.state_dir:
        return cfg.state_dir

    candidates: list[Path] = [Path("/var/lib/hetzner-proxmox")]
    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    if xdg_state_home:
        candidates.append(Path(xdg_state_home) / "hetzner-proxmox")
    else:
        candidates.append(Path.home() / ".local" / "state" / "hetzner-proxmox")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            marker = candidate / ".write_test"
            marker.write_text("ok", encoding="utf-8")
            marker.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    return Path(".hetzner-proxmox-state")


def _storage_file() -> Path:
    return get_state_dir() / "storage.json"


def _vms_file() -> Path:
    return get_state_dir() / "vms.json"


def _network_file() -> Path:
    return get_state_dir() / "network.json"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with open(path, "r", encoding="utf-8") as file:
        return json.load(file)


def _atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as file:
            json.dump(data, file, indent=2, ensure_ascii=False, sort_keys=True)
            file.write("\n")
        os.replace(tmp_path, path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def list_storage(kind: Optional[str] = None) -> List[Dict[str, Any]]:
    items = _load_json(_storage_file(), {"items": []}).get("items", [])
    if kind:
        items = [i for i in items if i.get("kind") == kind]
    return items


def record_storage(entry: Dict[str, Any]) -> None:
    """Insert or replace a storage record keyed by its Proxmox storage name."""
    data = _load_json(_storage_file(), {"items": []})
    items = [i for i in data.get("items", []) if i.get("name") != entry.get("name")]
    if "created_at" not in entry:
        entry["created_at"] = _utc_now_iso()
    items.append(entry)
    data["items"] = sorted(items, key=lambda x: x.get("name", ""))
    _atomic_write_json(_storage_file(), data)


def forget_storage(device: str) -> bool:
    """Drop every storage record built on the given device."""
    data = _load_json(_storage_file(), {"items": []})
    items = data.get("items", [])
    new_items = [i for i in items if i.get("device") != device]
    if len(new_items) == len(items):
        return False
    data["items"] = new_items
    _atomic_write_json(_storage_file(), data)
    return True


def list_vms() -> List[Dict[str, Any]]:
    return _load_json(_vms_file(), {"items": []}).get("items", [])


def record_vm(vm: Dict[str, Any]) -> None:
    data = _load_json(_vms_file(), {"items": []})
    items = [i for i in data.get("items", []) if i.get("vm_id") != vm.get("vm_id")]
    if "created_at" not in vm:
        vm["created_at"] = _utc_now_iso()
    items.append(vm)
    data["items"] = sorted(items, key=lambda x: x.get("vm_id", 0))
    _atomic_write_json(_vms_file(), data)


def list_network_changes() -> List[Dict[str, Any]]:
    return _load_json(_network_file(), {"items": []}).get("items", [])


def record_network_change(change: Dict[str, Any]) -> None:
    """Append a network configuration change (history is kept, newest last)."""
    data = _load_json(_network_file(), {"items": []})
    items = data.get("items", [])
    if "applied_at" not in change:
        change["applied_at"] = _utc_now_iso()
    items.append(change)
    data["items"] = items
    _atomic_write_json(_network_file(), data)
