"""
Data structures for iSCSI initiator administration.

This module defines the value types passed across the public API and to the
external collaborators: node identities, authentication info, discovery
descriptors, node and interface records, session information and firmware
boot contexts.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .constants import ISCSIConstants
from .exceptions import InvalidArgumentError


def check_length(field_name: str, value: str, max_length: int) -> None:
    """Reject a bounded string that does not fit its field.

    Over-long values are never truncated; every bounded field in the
    library goes through this check.
    """
    if value is not None and len(value) > max_length:
        raise InvalidArgumentError(
            f"{field_name} too long ({len(value)} > {max_length} characters)")


def check_record_value(field_name: str, value: str) -> None:
    """Reject a value that would not read back unchanged from a record file.

    Record lines are ``key = value`` with surrounding whitespace stripped and
    ``<empty>`` standing for "".
    """
    if not value:
        return
    if "\n" in value or "\r" in value:
        raise InvalidArgumentError(f"{field_name} cannot contain line breaks")
    if value != value.strip():
        raise InvalidArgumentError(f"{field_name} cannot start or end with whitespace")
    if value == ISCSIConstants.EMPTY_VALUE:
        raise InvalidArgumentError(f"{field_name} cannot be {ISCSIConstants.EMPTY_VALUE}")


def check_path_component(field_name: str, value: str) -> None:
    """Reject a value that cannot be used as a single database file name."""
    if not value:
        return
    if "/" in value or "\0" in value or value in (".", ".."):
        raise InvalidArgumentError(f"Invalid {field_name.lower()}: {value!r}")


class AuthMethod(Enum):
    """Authentication method tags."""

    NONE = 0
    CHAP = 1


class DiscoveryType(Enum):
    """Discovery modes supported by the discovery orchestrator."""

    SENDTARGETS = "sendtargets"
    FIRMWARE = "fw"


class AgentRequest(Enum):
    """Requests understood by the login/logout agent."""

    LOGIN = "login"
    LOGOUT = "logout"


@dataclass(frozen=True)
class NodeIdentity:
    """Addressing key for login, logout and parameter access.

    The {name, tpgt, address, port} tuple is not unique: the same target
    portal may be bound to several interface records. ``iface`` narrows
    login to a single interface when set.
    """

    name: str
    tpgt: int
    address: str
    port: int
    iface: str = ""

    def __post_init__(self):
        if not self.name:
            raise InvalidArgumentError("Node name cannot be empty")
        check_length("Node name", self.name, ISCSIConstants.TARGET_NAME_MAXLEN)
        check_length("Address", self.address, ISCSIConstants.HOST_MAXLEN)
        check_length("Interface name", self.iface, ISCSIConstants.VALUE_MAXLEN)
        for label, value in (("Node name", self.name), ("Address", self.address),
                             ("Interface name", self.iface)):
            check_path_component(label, value)
            check_record_value(label, value)

    def matches(self, name: str, tpgt: int, address: str, port: int) -> bool:
        """Compare the match key, ignoring the interface name."""
        return (self.name == name and self.tpgt == tpgt
                and self.address == address and self.port == port)


# Discovered nodes are reported with the same shape callers use to address them
PublicNode = NodeIdentity


@dataclass
class ChapAuthInfo:
    """CHAP credentials, optionally bidirectional."""

    username: str = ""
    password: str = ""
    reverse_username: str = ""
    reverse_password: str = ""


@dataclass
class AuthInfo:
    """Authentication descriptor: no auth, or CHAP credentials.

    ``method`` is not coerced; unknown tags are reported by verify_auth_info().
    """

    method: AuthMethod = AuthMethod.NONE
    chap: ChapAuthInfo = field(default_factory=ChapAuthInfo)

    @classmethod
    def none(cls) -> "AuthInfo":
        return cls(method=AuthMethod.NONE)

    @classmethod
    def chap_auth(cls, username: str, password: str,
                  reverse_username: str = "", reverse_password: str = "") -> "AuthInfo":
        return cls(method=AuthMethod.CHAP,
                   chap=ChapAuthInfo(username, password, reverse_username, reverse_password))


@dataclass
class SendTargetsSettings:
    """Type-specific defaults for a send-targets discovery record."""

    reopen_max: int = 5
    authmethod: str = ISCSIConstants.AUTH_METHOD_NONE
    username: str = ""
    password: str = ""
    username_in: str = ""
    password_in: str = ""
    login_timeout: int = 15
    auth_timeout: int = 45
    active_timeout: int = 30
    max_recv_data_segment_length: int = 32768
    use_discoveryd: bool = False
    discoveryd_poll_inval: int = 30

    def to_params(self) -> Dict[str, str]:
        """Render the settings as discovery record key/value pairs."""
        prefix = "discovery.sendtargets"
        return {
            f"{prefix}.reopen_max": str(self.reopen_max),
            f"{prefix}.auth.authmethod": self.authmethod,
            f"{prefix}.auth.username": self.username,
            f"{prefix}.auth.password": self.password,
            f"{prefix}.auth.username_in": self.username_in,
            f"{prefix}.auth.password_in": self.password_in,
            f"{prefix}.timeo.login_timeout": str(self.login_timeout),
            f"{prefix}.timeo.auth_timeout": str(self.auth_timeout),
            f"{prefix}.timeo.active_timeout": str(self.active_timeout),
            f"{prefix}.iscsi.MaxRecvDataSegmentLength": str(self.max_recv_data_segment_length),
            f"{prefix}.use_discoveryd": "Yes" if self.use_discoveryd else "No",
            f"{prefix}.discoveryd_poll_inval": str(self.discoveryd_poll_inval),
        }


@dataclass
class DiscoveryDescriptor:
    """Discovery request submitted to the record database.

    Firmware descriptors carry no address or port; their targets come from
    the firmware source instead.
    """

    type: DiscoveryType
    address: str = ""
    port: int = 0
    settings: SendTargetsSettings = field(default_factory=SendTargetsSettings)

    @property
    def portal(self) -> str:
        return format_portal(self.address, self.port)


@dataclass
class IfaceRecord:
    """A local interface that node records can be bound to."""

    name: str = ISCSIConstants.DEFAULT_IFACE
    transport_name: str = ISCSIConstants.DEFAULT_TRANSPORT
    hwaddress: str = ""
    ipaddress: str = ""
    net_ifacename: str = ""
    initiatorname: str = ""

    def to_params(self) -> Dict[str, str]:
        return {
            "iface.iscsi_ifacename": self.name,
            "iface.transport_name": self.transport_name,
            "iface.hwaddress": self.hwaddress,
            "iface.ipaddress": self.ipaddress,
            "iface.net_ifacename": self.net_ifacename,
            "iface.initiatorname": self.initiatorname,
        }

    @classmethod
    def from_params(cls, params: Dict[str, str]) -> "IfaceRecord":
        return cls(
            name=params.get("iface.iscsi_ifacename", ISCSIConstants.DEFAULT_IFACE),
            transport_name=params.get("iface.transport_name", ISCSIConstants.DEFAULT_TRANSPORT),
            hwaddress=params.get("iface.hwaddress", ""),
            ipaddress=params.get("iface.ipaddress", ""),
            net_ifacename=params.get("iface.net_ifacename", ""),
            initiatorname=params.get("iface.initiatorname", ""),
        )


@dataclass
class NodeRecord:
    """A node record bound to one interface (the database's unit of storage).

    ``settings`` holds every node key other than the identity and iface
    fields, e.g. ``node.session.auth.authmethod``.
    """

    name: str
    tpgt: int
    address: str
    port: int
    iface: IfaceRecord = field(default_factory=IfaceRecord)
    settings: Dict[str, str] = field(default_factory=dict)

    def identity(self) -> PublicNode:
        """Project the record onto its caller-visible summary."""
        return PublicNode(name=self.name, tpgt=self.tpgt, address=self.address,
                          port=self.port, iface=self.iface.name)

    @property
    def portal(self) -> str:
        return format_portal(self.address, self.port)


@dataclass
class SessionTimeout:
    """Session error-recovery timeouts, in seconds (-1 when unavailable)."""

    abort_tmo: int = -1
    lu_reset_tmo: int = -1
    recovery_tmo: int = -1
    tgt_reset_tmo: int = -1


@dataclass
class SessionInfo:
    """Live session as read from the introspection facility."""

    sid: int
    targetname: str = ""
    tpgt: int = ISCSIConstants.PORTAL_GROUP_TAG_UNKNOWN
    address: str = ""
    port: int = -1
    persistent_address: str = ""
    persistent_port: int = -1
    iface: str = ""
    tmo: SessionTimeout = field(default_factory=SessionTimeout)
    chap: ChapAuthInfo = field(default_factory=ChapAuthInfo)


@dataclass
class PublicSessionInfo:
    """Caller-visible session summary."""

    sid: int
    tmo: SessionTimeout
    chap: ChapAuthInfo
    targetname: str
    address: str
    persistent_address: str
    tpgt: int
    persistent_port: int

    @classmethod
    def from_session_info(cls, info: SessionInfo) -> "PublicSessionInfo":
        return cls(
            sid=info.sid,
            tmo=SessionTimeout(**vars(info.tmo)),
            chap=ChapAuthInfo(**vars(info.chap)),
            targetname=info.targetname,
            address=info.address,
            persistent_address=info.persistent_address,
            tpgt=info.tpgt,
            persistent_port=info.persistent_port,
        )


@dataclass
class BootContext:
    """One firmware-provided boot target together with its NIC settings."""

    targetname: str = ""
    target_ipaddr: str = ""
    target_port: int = ISCSIConstants.ISCSI_LISTEN_PORT
    chap_name: str = ""
    chap_password: str = ""
    chap_name_in: str = ""
    chap_password_in: str = ""
    initiatorname: str = ""
    iface: str = ""
    mac: str = ""
    ipaddr: str = ""
    mask: str = ""
    gateway: str = ""
    primary_dns: str = ""
    secondary_dns: str = ""
    dhcp: str = ""
    transport_name: str = ISCSIConstants.DEFAULT_TRANSPORT


@dataclass
class NetworkConfig:
    """Firmware network configuration for the boot interface."""

    dhcp: bool = False
    iface_name: str = ""
    mac_address: str = ""
    ip_address: str = ""
    netmask: str = ""
    gateway: str = ""
    primary_dns: str = ""
    secondary_dns: str = ""

    @classmethod
    def from_boot_context(cls, context: BootContext) -> "NetworkConfig":
        return cls(
            dhcp=bool(context.dhcp),
            iface_name=context.iface,
            mac_address=context.mac,
            ip_address=context.ipaddr,
            netmask=context.mask,
            gateway=context.gateway,
            primary_dns=context.primary_dns,
            secondary_dns=context.secondary_dns,
        )


def format_portal(address: str, port: int, tpgt: Optional[int] = None) -> str:
    """Format address:port[,tpgt], bracketing IPv6 addresses."""
    host = f"[{address}]" if ":" in address else address
    portal = f"{host}:{port}"
    if tpgt is not None:
        portal = f"{portal},{tpgt}"
    return portal
