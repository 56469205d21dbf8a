"""
High-level iSCSI initiator administration interface.

This module provides the ISCSIAdmin class, the process-scoped context every
operation runs through. It wires the record database, the login/logout
agent, sysfs introspection and the firmware source together and keeps the
message of the most recent failure.
"""

import functools
import logging
from typing import List, Optional, Union

from .agent import IscsidAgent
from .auth import verify_auth_info
from .config import AgentRequest, AuthInfo, NetworkConfig, NodeIdentity, NodeRecord, PublicNode, PublicSessionInfo
from .constants import ISCSIConstants
from .discovery import DiscoveryOrchestrator
from .exceptions import ISCSIError, NotFoundError
from .fanout import IfaceFanout
from .firmware import FirmwareSource
from .idbm import NodeDatabase
from .parameters import ParameterAccessor
from .sessions import SessionAggregator, SessionCollection, SessionIntrospector, session_matches
from .sysfs import ISCSISysfs


def records_error(func):
    """Clear the error buffer on entry and fill it from a failing call."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        self.error_str = ""
        try:
            return func(self, *args, **kwargs)
        except ISCSIError as e:
            self.error_str = str(e)
            self.logger.warning("%s failed: %s", func.__name__, e)
            raise

    return wrapper


class ISCSIAdmin:
    """Main iSCSI initiator administration interface.

    One instance is the context for a sequence of calls: create it once,
    pass all work through it, and call cleanup() (or use it as a context
    manager) at shutdown. Calls on one instance must be serialized; separate
    instances are independent.

    Key capabilities:
    - Send-targets and firmware discovery
    - Login and logout addressed by node identity
    - Live session listing
    - Node parameter and auth get/set
    - Firmware boot network configuration

    Attributes:
        error_str: Message of the last failed call ("" after a success)
    """

    UNKNOWN_ERROR = "Unknown error"

    def __init__(self,
                 db_root: str = ISCSIConstants.DEFAULT_DB_ROOT,
                 sysfs_root: str = ISCSIConstants.DEFAULT_SYSFS_ROOT,
                 iscsiadm: str = ISCSIConstants.DEFAULT_ISCSIADM,
                 log_level: str = "WARNING",
                 db: Optional[NodeDatabase] = None,
                 agent: Optional[IscsidAgent] = None,
                 sysfs: Optional[ISCSISysfs] = None):
        self.error_str = ""

        # Create library-specific logger that doesn't interfere with calling app
        self.logger = logging.getLogger('iscsiadmin')
        self.logger.setLevel(getattr(logging, log_level.upper(), logging.WARNING))

        # Only add NullHandler if no handlers exist (prevents duplicate handlers)
        if not self.logger.handlers:
            self.logger.addHandler(logging.NullHandler())

        ISCSISysfs.initialize()
        self._initialized = True

        self.sysfs = sysfs or ISCSISysfs(sysfs_root)
        self.agent = agent or IscsidAgent(iscsiadm)
        self.db = db or NodeDatabase(db_root, sendtargets=self.agent.send_targets)
        self.introspector = SessionIntrospector(self.sysfs)
        self.firmware = FirmwareSource(self.sysfs)

        self.fanout = IfaceFanout(self.db)
        self.discovery = DiscoveryOrchestrator(self.db, self.firmware, self.logger)
        self.sessions = SessionAggregator(self.introspector, self.logger)
        self.parameters = ParameterAccessor(self.db, self.fanout, self.logger)

    def cleanup(self) -> None:
        """Release the process-wide sysfs state held by this context."""
        if self._initialized:
            ISCSISysfs.cleanup()
            self._initialized = False

    def __enter__(self) -> "ISCSIAdmin":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def get_error_string(self) -> str:
        """Return the last failure message, or "Unknown error" if none was recorded."""
        return self.error_str or self.UNKNOWN_ERROR

    @records_error
    def verify_auth_info(self, auth_info: Optional[AuthInfo]) -> None:
        verify_auth_info(auth_info)

    # ------------------------------------------------------------- discovery

    @records_error
    def discover_sendtargets(self, address: str, port: int = 0,
                             auth_info: Optional[AuthInfo] = None) -> List[PublicNode]:
        """Discover the targets behind a portal and create or update their records.

        Args:
            address: Portal address
            port: Portal port; 0 selects 3260
            auth_info: Discovery CHAP credentials, if the portal requires them

        Returns:
            The discovered nodes, one per bound interface (possibly empty)
        """
        return self.discovery.discover_sendtargets(address, port, auth_info)

    @records_error
    def discover_firmware(self) -> List[PublicNode]:
        """Create or update records for the targets configured in boot firmware."""
        return self.discovery.discover_firmware()

    # -------------------------------------------------------- login / logout

    @records_error
    def node_login(self, node: NodeIdentity) -> None:
        """Log in to ``node`` on every bound interface, or only ``node.iface`` when set.

        Raises:
            NotFoundError: No matching record exists
            UpstreamError: The login request failed
        """
        def login(rec: NodeRecord) -> bool:
            if node.iface and node.iface != rec.iface.name:
                return False
            self.agent.request_by_record(AgentRequest.LOGIN, rec)
            return True

        self.fanout.for_each(node, login).raise_for_result("No such node")

    @records_error
    def node_logout(self, node: NodeIdentity) -> None:
        """Log out of every live session belonging to ``node``.

        Raises:
            NotFoundError: No session matches the node
            UpstreamError: A logout request failed
        """
        def logout(info) -> None:
            self.agent.request_by_session_id(AgentRequest.LOGOUT, info.sid)

        found = self.introspector.for_each_session(
            logout, matcher=lambda info: session_matches(node, info))
        if found == 0:
            raise NotFoundError("No matching session")

    # -------------------------------------------------------------- sessions

    @records_error
    def get_session_infos(self) -> SessionCollection:
        """Return all live sessions; raises NotFoundError when there are none."""
        return self.sessions.get_session_infos()

    @records_error
    def get_session_info_by_id(self, session: Union[int, str]) -> PublicSessionInfo:
        """Return one live session by id (``3`` or ``"session3"``)."""
        return self.sessions.get_session_info_by_id(session)

    # ------------------------------------------------------------ parameters

    @records_error
    def node_set_parameter(self, node: NodeIdentity, parameter: str, value: str) -> int:
        return self.parameters.set_parameter(node, parameter, value)

    @records_error
    def node_get_parameter(self, node: NodeIdentity, parameter: str) -> str:
        return self.parameters.get_parameter(node, parameter)

    @records_error
    def node_set_auth(self, node: NodeIdentity, auth_info: Optional[AuthInfo]) -> None:
        self.parameters.set_auth(node, auth_info)

    @records_error
    def node_get_auth(self, node: NodeIdentity) -> AuthInfo:
        return self.parameters.get_auth(node)

    # -------------------------------------------------------------- firmware

    @records_error
    def get_firmware_network_config(self) -> NetworkConfig:
        """Return the network configuration of the firmware boot interface.

        Raises:
            NotFoundError: Firmware provides no boot entry
        """
        try:
            entry = self.firmware.get_entry()
        except ISCSIError as e:
            raise NotFoundError(f"No firmware boot entry ({e})")
        return NetworkConfig.from_boot_context(entry)

    @records_error
    def get_firmware_initiator_name(self) -> str:
        """Return the initiator name configured in firmware.

        Raises:
            NotFoundError: Firmware provides no boot entry
        """
        try:
            entry = self.firmware.get_entry()
        except ISCSIError as e:
            raise NotFoundError(f"No firmware boot entry ({e})")
        return entry.initiatorname
