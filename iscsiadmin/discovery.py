"""
Discovery orchestration.

Builds discovery descriptors, binds their results to local interfaces and
persists the resulting node records. The sequence is linear with no retries:
validate auth, build the descriptor, record the discovery, bind, then add
each node with overwrite enabled.

Records already written when a later record fails stay in the database;
the call still fails and reports none of them.
"""

import logging
from typing import List, Optional

from .auth import resolve_auth_method, verify_auth_info
from .config import AuthInfo, AuthMethod, DiscoveryDescriptor, DiscoveryType, IfaceRecord, NodeRecord, PublicNode
from .constants import ISCSIConstants
from .exceptions import ISCSIError, UpstreamError
from .firmware import FirmwareSource, create_ifaces_from_boot_contexts
from .idbm import NodeDatabase


class DiscoveryOrchestrator:
    """Runs send-targets and firmware discovery against the record database."""

    def __init__(self, db: NodeDatabase, firmware: FirmwareSource,
                 logger: Optional[logging.Logger] = None):
        self.db = db
        self.firmware = firmware
        self.logger = logger or logging.getLogger(__name__)

    def build_sendtargets_descriptor(self, address: str, port: int = 0,
                                     auth_info: Optional[AuthInfo] = None) -> DiscoveryDescriptor:
        """Apply send-targets defaults, then overlay portal and CHAP settings.

        A port of 0 selects the well-known iSCSI port.
        """
        drec = DiscoveryDescriptor(
            type=DiscoveryType.SENDTARGETS,
            address=address,
            port=port or ISCSIConstants.ISCSI_LISTEN_PORT,
            settings=self.db.sendtargets_defaults(),
        )
        if resolve_auth_method(auth_info) is AuthMethod.CHAP:
            settings = drec.settings
            settings.authmethod = ISCSIConstants.AUTH_METHOD_CHAP
            settings.username = auth_info.chap.username
            settings.password = auth_info.chap.password
            settings.username_in = auth_info.chap.reverse_username
            settings.password_in = auth_info.chap.reverse_password
        return drec

    def _add_nodes(self, records: List[NodeRecord],
                   drec: Optional[DiscoveryDescriptor]) -> List[PublicNode]:
        found: List[PublicNode] = []
        for rec in records:
            self.db.add_node(rec, drec, overwrite=True)
            found.append(rec.identity())
        return found

    def discover_sendtargets(self, address: str, port: int = 0,
                             auth_info: Optional[AuthInfo] = None) -> List[PublicNode]:
        """Discover the targets served by a portal and persist their records.

        Returns:
            One PublicNode per record bound to a local interface

        Raises:
            InvalidArgumentError: If the auth info is invalid
            UpstreamError: If the database or discovery query fails
        """
        verify_auth_info(auth_info)
        drec = self.build_sendtargets_descriptor(address, port, auth_info)

        bound: List[NodeRecord] = []
        try:
            self.db.add_discovery(drec)
            bound = self.db.bind_interfaces_to_nodes(DiscoveryType.SENDTARGETS, drec)
            found = self._add_nodes(bound, drec)
        finally:
            bound.clear()

        self.logger.info("Send-targets discovery on %s found %d nodes", drec.portal, len(found))
        return found

    def discover_firmware(self) -> List[PublicNode]:
        """Create node records for the targets configured in boot firmware.

        Raises:
            UpstreamError: If firmware targets cannot be read or bound
        """
        try:
            targets = self.firmware.get_targets()
        except ISCSIError as e:
            raise UpstreamError(f"Could not get list of targets from firmware ({e})")

        ifaces: List[IfaceRecord] = []
        bound: List[NodeRecord] = []
        try:
            ifaces = create_ifaces_from_boot_contexts(targets)
            drec = DiscoveryDescriptor(type=DiscoveryType.FIRMWARE)
            try:
                bound = self.db.bind_interfaces_to_nodes(DiscoveryType.FIRMWARE, drec,
                                                         ifaces, targets=targets)
            except ISCSIError as e:
                raise UpstreamError(f"Could not determine target nodes from firmware ({e})")
            found = self._add_nodes(bound, None)
        finally:
            self.firmware.free_targets(targets)
            ifaces.clear()
            bound.clear()

        self.logger.info("Firmware discovery found %d nodes", len(found))
        return found
