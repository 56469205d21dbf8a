"""
Login/logout agent.

Session login, logout and SendTargets queries are performed by iscsid; this
module reaches it through the iscsiadm management tool, one blocking
subprocess per request. iscsiadm exit codes are mapped to the open-iscsi
error messages and raised as UpstreamError.
"""

import logging
import re
import subprocess
from typing import List

from .config import AgentRequest, DiscoveryDescriptor, IfaceRecord, NodeIdentity, NodeRecord, format_portal
from .constants import ISCSIConstants
from .exceptions import InvalidArgumentError, UpstreamError

logger = logging.getLogger(__name__)

# "10.0.0.1:3260,1 iqn.2001-04.com.example:disk" or "[fe80::1]:3260,1 iqn..."
_DISCOVERY_LINE_RE = re.compile(
    r"^\s*(?:\[(?P<ip6>[^\]]+)\]|(?P<ip4>[^\s:,]+)):(?P<port>\d+),(?P<tpgt>-?\d+)\s+(?P<name>\S+)")


def iscsi_err_msg(exit_code: int) -> str:
    """Return the open-iscsi message for an iscsiadm exit code."""
    return ISCSIConstants.ISCSI_ERR_MESSAGES.get(exit_code, f"unknown error {exit_code}")


def parse_discovery_output(output: str) -> List[NodeIdentity]:
    """Parse the portal/target lines printed by a SendTargets discovery."""
    nodes = []
    for line in output.splitlines():
        match = _DISCOVERY_LINE_RE.match(line)
        if not match:
            continue
        try:
            nodes.append(NodeIdentity(
                name=match.group("name"),
                tpgt=int(match.group("tpgt")),
                address=match.group("ip6") or match.group("ip4"),
                port=int(match.group("port")),
            ))
        except InvalidArgumentError as e:
            logger.warning("Ignoring discovered target %r: %s", line.strip(), e)
    return nodes


class IscsidAgent:
    """Sends login, logout and discovery requests to iscsid via iscsiadm."""

    def __init__(self, iscsiadm: str = ISCSIConstants.DEFAULT_ISCSIADM):
        self.iscsiadm = iscsiadm
        self.logger = logging.getLogger(__name__)

    def _run(self, args: List[str]) -> str:
        cmd = [self.iscsiadm] + args
        self.logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise UpstreamError(f"could not run {self.iscsiadm}: {e}")

        if result.returncode != 0:
            detail = result.stderr.strip()
            message = iscsi_err_msg(result.returncode)
            self.logger.error("%s failed: %s", " ".join(args[:2]), detail or message)
            raise UpstreamError(detail or message, exit_code=result.returncode)
        return result.stdout

    def request_by_record(self, request: AgentRequest, rec: NodeRecord) -> None:
        """Issue a request addressed by node record (login)."""
        if request is not AgentRequest.LOGIN:
            raise InvalidArgumentError(f"Unsupported record request: {request}")
        self._run([
            "-m", "node",
            "-T", rec.name,
            "-p", format_portal(rec.address, rec.port, rec.tpgt),
            "-I", rec.iface.name,
            "--login",
        ])
        self.logger.info("Logged in to %s on %s via %s", rec.name, rec.portal, rec.iface.name)

    def request_by_session_id(self, request: AgentRequest, sid: int) -> None:
        """Issue a request addressed by session id (logout)."""
        if request is not AgentRequest.LOGOUT:
            raise InvalidArgumentError(f"Unsupported session request: {request}")
        self._run(["-m", "session", "-r", str(sid), "--logout"])
        self.logger.info("Logged out of session %d", sid)

    def send_targets(self, drec: DiscoveryDescriptor, iface: IfaceRecord) -> List[NodeIdentity]:
        """Query a portal for its targets without touching iscsiadm's database.

        The discovery record persisted for the portal supplies the CHAP
        settings used for the query.
        """
        output = self._run([
            "-m", "discoverydb",
            "-t", "sendtargets",
            "-p", drec.portal,
            "-I", iface.name,
            "--discover",
            "-o", "nonpersistent",
        ])
        nodes = parse_discovery_output(output)
        self.logger.debug("Portal %s reported %d targets", drec.portal, len(nodes))
        return nodes
