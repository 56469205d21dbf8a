"""
Firmware boot context source.

Reads the iSCSI Boot Firmware Table (iBFT) exported by the kernel under
/sys/firmware/ibft and turns each boot target into a BootContext, merged
with the NIC it is associated with and the firmware initiator name.
"""

import logging
import os
from typing import Dict, List

from .config import BootContext, IfaceRecord
from .constants import ISCSIConstants
from .exceptions import UpstreamError
from .sysfs import ISCSISysfs


class FirmwareSource:
    """Reads boot targets from the iBFT sysfs tree."""

    TARGET_PREFIX = "target"
    ETHERNET_PREFIX = "ethernet"

    def __init__(self, sysfs: ISCSISysfs):
        self.sysfs = sysfs
        self.logger = logging.getLogger(__name__)

    def _path(self, *parts: str) -> str:
        return os.path.join(self.sysfs.ibft_root, *parts)

    def _read_ethernet(self, index: str) -> Dict[str, str]:
        entry = f"{self.ETHERNET_PREFIX}{index}"

        def read(name: str) -> str:
            return self.sysfs.read_optional(self._path(entry, name))

        net_dir = self._path(entry, "device", "net")
        net_names = sorted(self.sysfs.list_directory(net_dir))
        return {
            "iface": net_names[0] if net_names else "",
            "mac": read("mac"),
            "ipaddr": read("ip-addr"),
            "mask": read("subnet-mask"),
            "gateway": read("gateway"),
            "primary_dns": read("primary-dns"),
            "secondary_dns": read("secondary-dns"),
            "dhcp": read("dhcp"),
        }

    def _read_target(self, entry: str, initiatorname: str) -> BootContext:
        def read(name: str) -> str:
            return self.sysfs.read_optional(self._path(entry, name))

        port = self.sysfs.read_int(self._path(entry, "port"), ISCSIConstants.ISCSI_LISTEN_PORT)
        context = BootContext(
            targetname=read("target-name"),
            target_ipaddr=read("ip-addr"),
            target_port=port if port > 0 else ISCSIConstants.ISCSI_LISTEN_PORT,
            chap_name=read("chap-name"),
            chap_password=read("chap-secret"),
            chap_name_in=read("rev-chap-name"),
            chap_password_in=read("rev-chap-secret"),
            initiatorname=initiatorname,
        )
        nic = read("nic-assoc")
        if nic:
            for key, value in self._read_ethernet(nic).items():
                setattr(context, key, value)
        return context

    def _target_entries(self) -> List[str]:
        entries = self.sysfs.list_directory(self.sysfs.ibft_root, self.TARGET_PREFIX)
        return sorted(entries, key=lambda e: int(e[len(self.TARGET_PREFIX):] or 0))

    def get_targets(self) -> List[BootContext]:
        """Return one BootContext per firmware boot target.

        Raises:
            UpstreamError: If no iBFT table is exported
        """
        if not self.sysfs.valid_path(self.sysfs.ibft_root):
            raise UpstreamError("No iBFT firmware table found")

        initiatorname = self.sysfs.read_optional(self._path("initiator", "initiator-name"))
        targets = []
        for entry in self._target_entries():
            context = self._read_target(entry, initiatorname)
            if not context.targetname:
                self.logger.debug("Skipping firmware %s without a target name", entry)
                continue
            targets.append(context)

        self.logger.debug("Firmware provided %d boot targets", len(targets))
        return targets

    def get_entry(self) -> BootContext:
        """Return the primary boot context (the first firmware target).

        Raises:
            UpstreamError: If there is no firmware table or no boot target
        """
        targets = self.get_targets()
        if not targets:
            raise UpstreamError("No boot target found in firmware")
        entry = targets[0]
        self.free_targets(targets)
        return entry

    def free_targets(self, targets: List[BootContext]) -> None:
        targets.clear()


def iface_name_from_boot_context(context: BootContext) -> str:
    """Name of the interface record created for a boot context."""
    if not context.mac:
        return ISCSIConstants.DEFAULT_IFACE
    return f"{context.transport_name}.{context.mac}"


def create_ifaces_from_boot_contexts(targets: List[BootContext]) -> List[IfaceRecord]:
    """Build one interface record per distinct boot NIC."""
    ifaces: List[IfaceRecord] = []
    seen = set()
    for context in targets:
        name = iface_name_from_boot_context(context)
        if name in seen:
            continue
        seen.add(name)
        ifaces.append(IfaceRecord(
            name=name,
            transport_name=context.transport_name,
            hwaddress=context.mac,
            ipaddress=context.ipaddr,
            net_ifacename=context.iface,
            initiatorname=context.initiatorname,
        ))
    return ifaces
