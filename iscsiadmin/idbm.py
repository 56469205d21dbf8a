"""
iSCSI node record database.

This module implements the persistent record store used by the initiator:
an open-iscsi style directory tree of plain-text records.

Layout under the database root (normally /etc/iscsi):
    iscsid.conf                                   node and discovery defaults
    ifaces/<iface>                                interface records
    send_targets/<address>,<port>/st_config       send-targets discovery records
    nodes/<target>/<address>,<port>,<tpgt>/<iface>  node records, one per interface

Every record file is a list of ``key = value`` lines between
``# BEGIN RECORD`` and ``# END RECORD`` markers; empty values are written as
``<empty>``. Node records expose a fixed table of keys (NODE_RECORD_KEYS),
which is also the descriptor table parameter reads scan.
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .config import (
    DiscoveryDescriptor, DiscoveryType, IfaceRecord, NodeIdentity, NodeRecord,
    SendTargetsSettings, BootContext, check_length, check_path_component, check_record_value
)
from .constants import ISCSIConstants
from .exceptions import ISCSIError, InvalidArgumentError, OutOfMemoryError, UpstreamError
from .firmware import iface_name_from_boot_context


@dataclass(frozen=True)
class RecordKey:
    """One entry of the node record descriptor table."""

    name: str
    default: str = ""
    visible: bool = True
    editable: bool = True
    numeric: bool = False


@dataclass
class RecInfo:
    """A descriptor table entry filled in with a record's value."""

    name: str
    value: str
    visible: bool = True


@dataclass
class UserParam:
    """A key/value pair to apply to node records."""

    name: str
    value: str


IDENTITY_KEYS = ("node.name", "node.tpgt", "node.conn[0].address", "node.conn[0].port")

NODE_RECORD_KEYS: Tuple[RecordKey, ...] = (
    RecordKey("node.name", editable=False),
    RecordKey("node.tpgt", editable=False, numeric=True),
    RecordKey("node.startup", "manual"),
    RecordKey("node.leading_login", "No"),
    RecordKey("iface.iscsi_ifacename", ISCSIConstants.DEFAULT_IFACE, editable=False),
    RecordKey("iface.transport_name", ISCSIConstants.DEFAULT_TRANSPORT, editable=False),
    RecordKey("iface.hwaddress", editable=False),
    RecordKey("iface.ipaddress", editable=False),
    RecordKey("iface.net_ifacename", editable=False),
    RecordKey("iface.initiatorname", editable=False),
    RecordKey("node.discovery_address"),
    RecordKey("node.discovery_port", "0", numeric=True),
    RecordKey("node.discovery_type", "static"),
    RecordKey("node.session.initial_cmdsn", "0", numeric=True),
    RecordKey("node.session.initial_login_retry_max", "8", numeric=True),
    RecordKey("node.session.cmds_max", "128", numeric=True),
    RecordKey("node.session.queue_depth", "32", numeric=True),
    RecordKey("node.session.nr_sessions", "1", numeric=True),
    RecordKey("node.session.auth.authmethod", ISCSIConstants.AUTH_METHOD_NONE),
    RecordKey("node.session.auth.username"),
    RecordKey("node.session.auth.password"),
    RecordKey("node.session.auth.username_in"),
    RecordKey("node.session.auth.password_in"),
    RecordKey("node.session.auth.password_length", "0", visible=False, editable=False, numeric=True),
    RecordKey("node.session.auth.password_in_length", "0", visible=False, editable=False, numeric=True),
    RecordKey("node.session.timeo.replacement_timeout", "120", numeric=True),
    RecordKey("node.session.err_timeo.abort_timeout", "15", numeric=True),
    RecordKey("node.session.err_timeo.lu_reset_timeout", "30", numeric=True),
    RecordKey("node.session.err_timeo.tgt_reset_timeout", "30", numeric=True),
    RecordKey("node.session.err_timeo.host_reset_timeout", "60", numeric=True),
    RecordKey("node.session.iscsi.FastAbort", "Yes"),
    RecordKey("node.session.iscsi.InitialR2T", "No"),
    RecordKey("node.session.iscsi.ImmediateData", "Yes"),
    RecordKey("node.session.iscsi.FirstBurstLength", "262144", numeric=True),
    RecordKey("node.session.iscsi.MaxBurstLength", "16776192", numeric=True),
    RecordKey("node.session.iscsi.DefaultTime2Retain", "0", numeric=True),
    RecordKey("node.session.iscsi.DefaultTime2Wait", "2", numeric=True),
    RecordKey("node.session.iscsi.MaxConnections", "1", numeric=True),
    RecordKey("node.session.iscsi.MaxOutstandingR2T", "1", numeric=True),
    RecordKey("node.session.iscsi.ERL", "0", numeric=True),
    RecordKey("node.conn[0].address", editable=False),
    RecordKey("node.conn[0].port", editable=False, numeric=True),
    RecordKey("node.conn[0].startup", "manual"),
    RecordKey("node.conn[0].tcp.window_size", "524288", numeric=True),
    RecordKey("node.conn[0].tcp.type_of_service", "0", numeric=True),
    RecordKey("node.conn[0].timeo.logout_timeout", "15", numeric=True),
    RecordKey("node.conn[0].timeo.login_timeout", "15", numeric=True),
    RecordKey("node.conn[0].timeo.auth_timeout", "45", numeric=True),
    RecordKey("node.conn[0].timeo.noop_out_interval", "5", numeric=True),
    RecordKey("node.conn[0].timeo.noop_out_timeout", "5", numeric=True),
    RecordKey("node.conn[0].iscsi.MaxXmitDataSegmentLength", "0", numeric=True),
    RecordKey("node.conn[0].iscsi.MaxRecvDataSegmentLength", "262144", numeric=True),
    RecordKey("node.conn[0].iscsi.HeaderDigest", "None"),
    RecordKey("node.conn[0].iscsi.DataDigest", "None"),
    RecordKey("node.conn[0].iscsi.IFMarker", "No"),
    RecordKey("node.conn[0].iscsi.OFMarker", "No"),
)

RECORD_KEY_MAP: Dict[str, RecordKey] = {key.name: key for key in NODE_RECORD_KEYS}

# Number of entries in the descriptor table
MAX_KEYS = len(NODE_RECORD_KEYS)

# iscsid.conf keys that override SendTargetsSettings fields
SENDTARGETS_CONF_FIELDS = {
    "discovery.sendtargets.reopen_max": "reopen_max",
    "discovery.sendtargets.auth.authmethod": "authmethod",
    "discovery.sendtargets.auth.username": "username",
    "discovery.sendtargets.auth.password": "password",
    "discovery.sendtargets.auth.username_in": "username_in",
    "discovery.sendtargets.auth.password_in": "password_in",
    "discovery.sendtargets.timeo.login_timeout": "login_timeout",
    "discovery.sendtargets.timeo.auth_timeout": "auth_timeout",
    "discovery.sendtargets.timeo.active_timeout": "active_timeout",
    "discovery.sendtargets.iscsi.MaxRecvDataSegmentLength": "max_recv_data_segment_length",
    "discovery.sendtargets.use_discoveryd": "use_discoveryd",
    "discovery.sendtargets.discoveryd_poll_inval": "discoveryd_poll_inval",
}

SendTargetsTransport = Callable[[DiscoveryDescriptor, IfaceRecord], List[NodeIdentity]]
IfaceCallback = Callable[[NodeRecord], bool]


def parse_record_text(text: str) -> Dict[str, str]:
    """Parse ``key = value`` lines, skipping comments and blank lines."""
    params: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        params[key.strip()] = "" if value == ISCSIConstants.EMPTY_VALUE else value
    return params


def format_record_text(params: Dict[str, str]) -> str:
    """Render a record file; every value must survive parse_record_text unchanged."""
    lines = [f"{ISCSIConstants.RECORD_BEGIN} {ISCSIConstants.RECORD_VERSION}"]
    for key, value in params.items():
        check_record_value(key, value)
        lines.append(f"{key} = {value if value != '' else ISCSIConstants.EMPTY_VALUE}")
    lines.append(ISCSIConstants.RECORD_END)
    return "\n".join(lines) + "\n"


def parse_portal_dir(entry: str) -> Optional[Tuple[str, int, int]]:
    """Split an ``<address>,<port>,<tpgt>`` directory name."""
    parts = entry.rsplit(",", 2)
    if len(parts) != 3:
        return None
    address, port, tpgt = parts
    try:
        return address, int(port), int(tpgt)
    except ValueError:
        return None


class NodeDatabase:
    """File-backed store for discovery, interface and node records.

    Args:
        root: Database root directory
        sendtargets: Callable performing the SendTargets query for one
            interface; it returns the discovered portals as NodeIdentity values
    """

    def __init__(self, root: str = ISCSIConstants.DEFAULT_DB_ROOT,
                 sendtargets: Optional[SendTargetsTransport] = None):
        self.root = root
        self.sendtargets = sendtargets
        self.nodes_dir = os.path.join(root, ISCSIConstants.NODES_DIR)
        self.sendtargets_dir = os.path.join(root, ISCSIConstants.SENDTARGETS_DIR)
        self.ifaces_dir = os.path.join(root, ISCSIConstants.IFACES_DIR)
        self.logger = logging.getLogger(__name__)
        self.conf = self._load_conf()

    # ----------------------------------------------------------------- files

    def _load_conf(self) -> Dict[str, str]:
        path = os.path.join(self.root, ISCSIConstants.ISCSID_CONFIG)
        if not os.path.isfile(path):
            return {}
        try:
            with open(path, "r") as f:
                conf = parse_record_text(f.read())
        except OSError as e:
            raise UpstreamError(f"Error reading {path}: {e}")
        self.logger.debug("Loaded %d settings from %s", len(conf), path)
        return conf

    def _read_params(self, path: str) -> Dict[str, str]:
        try:
            with open(path, "r") as f:
                return parse_record_text(f.read())
        except OSError as e:
            raise UpstreamError(f"Could not read record {path}: {e}")

    def _write_params(self, path: str, params: Dict[str, str]) -> None:
        self.logger.debug("Writing record %s", path)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w") as f:
                f.write(format_record_text(params))
        except OSError as e:
            raise UpstreamError(f"Could not write record {path}: {e}")

    # --------------------------------------------------------------- records

    def node_defaults(self) -> Dict[str, str]:
        """Settings for a new node record: built-in defaults, then iscsid.conf."""
        settings = {}
        for key in NODE_RECORD_KEYS:
            if key.name in IDENTITY_KEYS or key.name.startswith("iface."):
                continue
            settings[key.name] = self.conf.get(key.name, key.default) if key.editable else key.default
        return settings

    def sendtargets_defaults(self) -> SendTargetsSettings:
        """Send-targets discovery defaults, overridden by iscsid.conf."""
        settings = SendTargetsSettings()
        types = {f.name: f.type for f in fields(SendTargetsSettings)}
        for conf_key, attr in SENDTARGETS_CONF_FIELDS.items():
            if conf_key not in self.conf:
                continue
            value = self.conf[conf_key]
            kind = types[attr]
            if kind is bool:
                setattr(settings, attr, value.lower() in ("yes", "1", "true"))
            elif kind is int:
                try:
                    setattr(settings, attr, int(value))
                except ValueError:
                    self.logger.warning("Ignoring invalid %s value %r", conf_key, value)
            else:
                setattr(settings, attr, value)
        return settings

    def node_setup_defaults(self, name: str, tpgt: int, address: str, port: int,
                            iface: Optional[IfaceRecord] = None) -> NodeRecord:
        return NodeRecord(name=name, tpgt=tpgt, address=address, port=port,
                          iface=iface or IfaceRecord(), settings=self.node_defaults())

    def record_to_params(self, rec: NodeRecord) -> Dict[str, str]:
        """Render a record in descriptor table order."""
        values = {
            "node.name": rec.name,
            "node.tpgt": str(rec.tpgt),
            "node.conn[0].address": rec.address,
            "node.conn[0].port": str(rec.port),
        }
        values.update(rec.iface.to_params())
        for secret in ("password", "password_in"):
            value = rec.settings.get(f"node.session.auth.{secret}", "")
            values[f"node.session.auth.{secret}_length"] = str(len(value))
        params = {}
        for key in NODE_RECORD_KEYS:
            if key.name in values:
                params[key.name] = values[key.name]
            else:
                params[key.name] = rec.settings.get(key.name, key.default)
        return params

    def params_to_record(self, params: Dict[str, str]) -> NodeRecord:
        try:
            rec = NodeRecord(
                name=params["node.name"],
                tpgt=int(params["node.tpgt"]),
                address=params["node.conn[0].address"],
                port=int(params["node.conn[0].port"]),
                iface=IfaceRecord.from_params(params),
            )
        except (KeyError, ValueError) as e:
            raise UpstreamError(f"Corrupt node record: {e}")
        settings = self.node_defaults()
        for key, value in params.items():
            if key in IDENTITY_KEYS or key.startswith("iface."):
                continue
            settings[key] = value
        rec.settings = settings
        return rec

    def recinfo(self, rec: NodeRecord) -> List[RecInfo]:
        """Fill the descriptor table with a record's values."""
        params = self.record_to_params(rec)
        return [RecInfo(key.name, params[key.name], key.visible) for key in NODE_RECORD_KEYS]

    def _portal_dir(self, name: str, address: str, port: int, tpgt: int) -> str:
        return os.path.join(self.nodes_dir, name, f"{address},{port},{tpgt}")

    def node_path(self, rec: NodeRecord) -> str:
        for label, value in (("Node name", rec.name), ("Address", rec.address),
                             ("Interface name", rec.iface.name)):
            check_path_component(label, value)
        return os.path.join(self._portal_dir(rec.name, rec.address, rec.port, rec.tpgt), rec.iface.name)

    def write_node(self, rec: NodeRecord) -> None:
        self._write_params(self.node_path(rec), self.record_to_params(rec))

    def read_node(self, path: str) -> NodeRecord:
        return self.params_to_record(self._read_params(path))

    # ---------------------------------------------------------------- ifaces

    def load_ifaces(self) -> List[IfaceRecord]:
        """Return the configured interfaces, or the default one if none are."""
        ifaces = []
        for entry in sorted(self._list(self.ifaces_dir)):
            path = os.path.join(self.ifaces_dir, entry)
            if not os.path.isfile(path):
                continue
            params = self._read_params(path)
            params.setdefault("iface.iscsi_ifacename", entry)
            ifaces.append(IfaceRecord.from_params(params))
        if not ifaces:
            ifaces.append(IfaceRecord())
        return ifaces

    def _list(self, path: str) -> List[str]:
        try:
            return os.listdir(path)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise UpstreamError(f"Could not list {path}: {e}")

    # ------------------------------------------------------------- discovery

    def add_discovery(self, drec: DiscoveryDescriptor) -> None:
        """Persist a send-targets discovery record.

        Firmware discovery has no portal and is not persisted.
        """
        if drec.type is not DiscoveryType.SENDTARGETS:
            self.logger.debug("Not persisting %s discovery record", drec.type.value)
            return
        check_path_component("Address", drec.address)
        params = {
            "discovery.startup": "manual",
            "discovery.type": drec.type.value,
            "discovery.sendtargets.address": drec.address,
            "discovery.sendtargets.port": str(drec.port),
        }
        params.update(drec.settings.to_params())
        path = os.path.join(self.sendtargets_dir, f"{drec.address},{drec.port}",
                            ISCSIConstants.SENDTARGETS_CONFIG)
        self._write_params(path, params)

    def _apply_discovery(self, rec: NodeRecord, drec: DiscoveryDescriptor) -> None:
        rec.settings["node.discovery_address"] = drec.address
        rec.settings["node.discovery_port"] = str(drec.port)
        rec.settings["node.discovery_type"] = (
            "send_targets" if drec.type is DiscoveryType.SENDTARGETS else "fw")

    def _rec_from_boot_context(self, context: BootContext, iface: IfaceRecord) -> NodeRecord:
        rec = self.node_setup_defaults(context.targetname, ISCSIConstants.PORTAL_GROUP_TAG_UNKNOWN,
                                       context.target_ipaddr, context.target_port, iface)
        rec.settings["node.startup"] = "onboot"
        rec.settings["node.conn[0].startup"] = "onboot"
        rec.settings["node.discovery_type"] = "fw"
        if context.chap_name:
            rec.settings["node.session.auth.authmethod"] = ISCSIConstants.AUTH_METHOD_CHAP
            rec.settings["node.session.auth.username"] = context.chap_name
            rec.settings["node.session.auth.password"] = context.chap_password
            rec.settings["node.session.auth.username_in"] = context.chap_name_in
            rec.settings["node.session.auth.password_in"] = context.chap_password_in
        return rec

    def bind_interfaces_to_nodes(self, kind: DiscoveryType, drec: DiscoveryDescriptor,
                                 ifaces: Optional[List[IfaceRecord]] = None,
                                 targets: Optional[List[BootContext]] = None) -> List[NodeRecord]:
        """Run discovery on each interface and return one record per binding.

        Args:
            kind: Discovery mode
            drec: Discovery descriptor
            ifaces: Interfaces to bind to; the configured ones when None
            targets: Firmware boot contexts (firmware discovery only)

        Raises:
            UpstreamError: If discovery fails on an interface
        """
        if ifaces is None:
            ifaces = self.load_ifaces()

        bound: List[NodeRecord] = []
        if kind is DiscoveryType.SENDTARGETS:
            if self.sendtargets is None:
                raise UpstreamError("No send-targets transport configured")
            for iface in ifaces:
                self.logger.debug("Running send-targets discovery to %s on iface %s",
                                  drec.portal, iface.name)
                for node in self.sendtargets(drec, iface):
                    rec = self.node_setup_defaults(node.name, node.tpgt, node.address,
                                                   node.port, iface)
                    self._apply_discovery(rec, drec)
                    bound.append(rec)
        elif kind is DiscoveryType.FIRMWARE:
            by_name = {iface.name: iface for iface in ifaces}
            for context in targets or []:
                iface = by_name.get(iface_name_from_boot_context(context))
                if iface is None:
                    self.logger.warning("No interface for firmware target %s", context.targetname)
                    continue
                bound.append(self._rec_from_boot_context(context, iface))
        else:
            raise InvalidArgumentError(f"Unknown discovery type: {kind}")
        return bound

    def add_node(self, rec: NodeRecord, drec: Optional[DiscoveryDescriptor] = None,
                 overwrite: bool = False) -> None:
        """Persist a node record, replacing an existing one when ``overwrite``."""
        if drec is not None:
            self._apply_discovery(rec, drec)
        path = self.node_path(rec)
        if os.path.exists(path) and not overwrite:
            raise UpstreamError(f"Record {path} already exists")
        self.write_node(rec)

    # --------------------------------------------------------------- fan-out

    def iter_bound_interfaces(self, identity: NodeIdentity) -> Iterator[NodeRecord]:
        """Yield every interface record bound to {name, tpgt, address, port}.

        Order: portal directories sorted by name, then interface files
        sorted by name.
        """
        target_dir = os.path.join(self.nodes_dir, identity.name)
        for entry in sorted(self._list(target_dir)):
            portal = parse_portal_dir(entry)
            if portal is None:
                continue
            address, port, tpgt = portal
            if not identity.matches(identity.name, tpgt, address, port):
                continue
            portal_dir = os.path.join(target_dir, entry)
            if not os.path.isdir(portal_dir):
                continue
            for iface_name in sorted(self._list(portal_dir)):
                yield self.read_node(os.path.join(portal_dir, iface_name))

    def for_each_bound_interface(self, identity: NodeIdentity,
                                 callback: IfaceCallback) -> Tuple[int, Optional[ISCSIError]]:
        """Invoke ``callback`` on every record bound to ``identity``.

        ``callback`` returns True when the record counts as a match and False
        to skip it. The first ISCSIError stops the enumeration and is
        returned together with the number of matches counted so far.
        """
        found = 0
        try:
            for rec in self.iter_bound_interfaces(identity):
                if callback(rec):
                    found += 1
        except ISCSIError as e:
            return found, e
        return found, None

    # ------------------------------------------------------------ parameters

    def alloc_parameter_list(self, name: str, value: str) -> List[UserParam]:
        check_length("Parameter value", value, ISCSIConstants.VALUE_MAXLEN)
        check_record_value("Parameter value", value)
        try:
            return [UserParam(name, value)]
        except MemoryError:
            raise OutOfMemoryError("Can't allocate memory for parameter")

    def verify_param(self, param: UserParam) -> None:
        key = RECORD_KEY_MAP.get(param.name)
        if key is None:
            raise InvalidArgumentError(f"Cannot modify {param.name}. Invalid param name.")
        if not key.editable:
            raise InvalidArgumentError(f"Cannot modify {param.name}. It is a read-only value.")
        if key.numeric:
            try:
                int(param.value)
            except ValueError:
                raise InvalidArgumentError(
                    f"Cannot modify {param.name}. Invalid value {param.value!r}.")
        try:
            check_record_value("Value", param.value)
        except InvalidArgumentError as e:
            raise InvalidArgumentError(f"Cannot modify {param.name}. {e}.")

    def node_set_params(self, params: List[UserParam], rec: NodeRecord) -> bool:
        """Apply parameters to a record and write it back."""
        for param in params:
            self.verify_param(param)
        for param in params:
            rec.settings[param.name] = param.value
        self.write_node(rec)
        return True
