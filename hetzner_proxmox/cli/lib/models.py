"""
Pydantic models for host network and VM definitions.
"""

import ipaddress
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from hetzner_proxmox.cli.lib.validators import is_valid_mac, netmask_to_cidr


class AdditionalIP(BaseModel):
    """A Hetzner additional IPv4 address and the virtual MAC it is bound to."""

    ip: str = Field(..., description="Additional public IPv4 address")
    gateway: str = Field(..., description="Gateway for this address")
    netmask: str = Field(..., description="Netmask (e.g., 255.255.255.192)")
    mac: Optional[str] = Field(None, description="Virtual MAC from the Hetzner Robot panel")

    @field_validator("ip", "gateway")
    def validate_ipv4(cls, v: str) -> str:
        try:
            ipaddress.IPv4Address(v)
        except ValueError:
            raise ValueError(f"Invalid IPv4 address: {v}")
        return v

    @field_validator("mac")
    def normalize_mac(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def cidr(self) -> int:
        return netmask_to_cidr(self.netmask)

    @property
    def mac_valid(self) -> bool:
        return self.mac is not None and is_valid_mac(self.mac)


class PfSenseSpec(BaseModel):
    """Sizing and addressing of the pfSense firewall VM."""

    vm_id: int = Field(100, ge=100)
    name: str = Field("pfSense-Firewall", min_length=1)
    cores: int = Field(2, ge=1, le=128)
    memory: int = Field(2048, ge=512, description="Memory in MiB")
    disk_size: int = Field(8, ge=1, description="Disk size in GiB")
    storage: str = Field("local-zfs", min_length=1)
    iso_path: str
    wan_ip: str
    wan_mac: Optional[str] = None
    lan_ip: str = "192.168.1.1"
    dmz_ip: str = "10.0.2.1"
    with_dmz: bool = True

    @field_validator("wan_ip", "lan_ip", "dmz_ip")
    def validate_ipv4(cls, v: str) -> str:
        try:
            ipaddress.IPv4Address(v)
        except ValueError:
            raise ValueError(f"Invalid IPv4 address: {v}")
        return v

    @field_validator("wan_mac")
    def validate_mac(cls, v: Optional[str]) -> Optional[str]:
        if v and not is_valid_mac(v):
            raise ValueError(f"Invalid MAC address: {v}")
        return v or None


class AdminVMSpec(BaseModel):
    """Sizing of the lightweight desktop VM used to reach the pfSense web UI."""

    vm_id: int = Field(200, ge=100)
    hostname: str = Field("firewall-admin", pattern=r"^[a-zA-Z0-9][a-zA-Z0-9-]*$")
    cores: int = Field(1, ge=1, le=128)
    memory: int = Field(1024, ge=256, description="Memory in MiB")
    disk_size: int = Field(8, ge=1, description="Disk size in GiB")
    iso_name: str
    wan_mac: Optional[str] = None

    @field_validator("wan_mac")
    def validate_mac(cls, v: Optional[str]) -> Optional[str]:
        if v and not is_valid_mac(v):
            raise ValueError(f"Invalid MAC address: {v}")
        return v or None
