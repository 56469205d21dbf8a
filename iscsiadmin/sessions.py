"""
iSCSI session introspection and aggregation.

SessionIntrospector reads live sessions from the kernel's iscsi_session and
iscsi_connection sysfs classes. SessionAggregator collects them into a
SessionCollection that grows in powers of two and is trimmed to its exact
length before it is handed to the caller.
"""

import logging
import os
import re
from typing import Callable, Iterator, List, Optional, Union

from .config import ChapAuthInfo, NodeIdentity, PublicSessionInfo, SessionInfo, SessionTimeout
from .constants import ISCSIConstants
from .exceptions import NotFoundError, OutOfMemoryError, UpstreamError
from .sysfs import ISCSISysfs

SESSION_PREFIX = "session"
_SESSION_NAME_RE = re.compile(r"^session(\d+)$")


def parse_session_id(session: Union[int, str]) -> int:
    """Accept 3, "3" or "session3" and return the numeric session id."""
    if isinstance(session, int):
        return session
    match = _SESSION_NAME_RE.match(session)
    if match:
        return int(match.group(1))
    if session.isdigit():
        return int(session)
    raise UpstreamError(f"Invalid session id: {session}")


def session_matches(identity: NodeIdentity, info: SessionInfo) -> bool:
    """Check whether a live session belongs to a node identity.

    The portal may match either the persistent (configured) portal or the
    current one after a redirect. An unknown tpgt on either side matches any
    tpgt; the interface name is only compared when the identity sets one.
    """
    if identity.name != info.targetname:
        return False
    unknown = ISCSIConstants.PORTAL_GROUP_TAG_UNKNOWN
    if unknown not in (identity.tpgt, info.tpgt) and identity.tpgt != info.tpgt:
        return False
    if identity.iface and identity.iface != info.iface:
        return False
    portals = {(info.persistent_address, info.persistent_port), (info.address, info.port)}
    return (identity.address, identity.port) in portals


class SessionIntrospector:
    """Reads live iSCSI sessions from sysfs."""

    def __init__(self, sysfs: ISCSISysfs):
        self.sysfs = sysfs
        self.logger = logging.getLogger(__name__)

    def session_ids(self) -> List[int]:
        """Return the ids of all live sessions in kernel id order."""
        ids = []
        for entry in self.sysfs.list_directory(self.sysfs.session_class, SESSION_PREFIX):
            match = _SESSION_NAME_RE.match(entry)
            if match:
                ids.append(int(match.group(1)))
        return sorted(ids)

    def _connection_path(self, sid: int) -> Optional[str]:
        connections = sorted(self.sysfs.list_directory(
            self.sysfs.connection_class, f"connection{sid}:"))
        if not connections:
            return None
        return os.path.join(self.sysfs.connection_class, connections[0])

    def get_session_by_id(self, session: Union[int, str]) -> SessionInfo:
        """Read one session's attributes.

        Raises:
            UpstreamError: If the session does not exist or cannot be read
        """
        sid = parse_session_id(session)
        session_path = os.path.join(self.sysfs.session_class, f"{SESSION_PREFIX}{sid}")
        if not self.sysfs.valid_path(session_path):
            raise UpstreamError(f"Could not find session {sid} in sysfs")

        def attr(name: str) -> str:
            return os.path.join(session_path, name)

        info = SessionInfo(
            sid=sid,
            targetname=self.sysfs.read_sysfs(attr("targetname")),
            tpgt=self.sysfs.read_int(attr("tpgt"), ISCSIConstants.PORTAL_GROUP_TAG_UNKNOWN),
            iface=self.sysfs.read_optional(attr("ifacename")),
            tmo=SessionTimeout(
                abort_tmo=self.sysfs.read_int(attr("abort_tmo")),
                lu_reset_tmo=self.sysfs.read_int(attr("lu_reset_tmo")),
                recovery_tmo=self.sysfs.read_int(attr("recovery_tmo")),
                tgt_reset_tmo=self.sysfs.read_int(attr("tgt_reset_tmo")),
            ),
            chap=ChapAuthInfo(
                username=self.sysfs.read_optional(attr("username")),
                password=self.sysfs.read_optional(attr("password")),
                reverse_username=self.sysfs.read_optional(attr("username_in")),
                reverse_password=self.sysfs.read_optional(attr("password_in")),
            ),
        )

        conn_path = self._connection_path(sid)
        if conn_path is not None:
            info.address = self.sysfs.read_optional(os.path.join(conn_path, "address"))
            info.port = self.sysfs.read_int(os.path.join(conn_path, "port"))
            info.persistent_address = self.sysfs.read_optional(
                os.path.join(conn_path, "persistent_address"))
            info.persistent_port = self.sysfs.read_int(os.path.join(conn_path, "persistent_port"))
        else:
            self.logger.debug("Session %d has no connection entry", sid)

        return info

    def for_each_session(self, callback: Callable[[SessionInfo], None],
                         matcher: Optional[Callable[[SessionInfo], bool]] = None) -> int:
        """Invoke ``callback`` for every live session accepted by ``matcher``.

        Sessions that disappear or cannot be read while enumerating are
        skipped. Exceptions raised by ``callback`` stop the enumeration.

        Returns:
            Number of sessions passed to ``callback``
        """
        count = 0
        for sid in self.session_ids():
            try:
                info = self.get_session_by_id(sid)
            except UpstreamError as e:
                self.logger.warning("Could not read session %d: %s", sid, e)
                continue
            if matcher is not None and not matcher(info):
                continue
            callback(info)
            count += 1
        return count


class SessionCollection:
    """Growable ordered sequence of PublicSessionInfo.

    Backing storage starts empty, grows to 4 slots and then doubles each
    time it fills. ``shrink_to_fit()`` trims it to exactly ``count`` slots.

    Attributes:
        count: Number of stored sessions
        size: Number of allocated slots
    """

    def __init__(self):
        self.count = 0
        self.size = 0
        self._data: List[Optional[PublicSessionInfo]] = []

    def _grow(self) -> None:
        if self.size == 0:
            new_size = ISCSIConstants.SESSION_ARRAY_INITIAL_SIZE
        else:
            new_size = self.size * ISCSIConstants.SESSION_ARRAY_GROWTH_FACTOR
        try:
            self._data.extend([None] * (new_size - self.size))
        except MemoryError:
            raise OutOfMemoryError("Can't allocate memory for session infos")
        self.size = new_size

    def append(self, info: PublicSessionInfo) -> None:
        if self.size == self.count:
            self._grow()
        self._data[self.count] = info
        self.count += 1

    def shrink_to_fit(self) -> None:
        """Release every slot past ``count``."""
        del self._data[self.count:]
        self.size = self.count

    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[PublicSessionInfo]:
        for i in range(self.count):
            yield self._data[i]

    def __getitem__(self, index: int) -> PublicSessionInfo:
        if isinstance(index, slice):
            return [self._data[i] for i in range(self.count)[index]]
        if index < 0:
            index += self.count
        if not 0 <= index < self.count:
            raise IndexError("session index out of range")
        return self._data[index]

    def __repr__(self) -> str:
        return f"SessionCollection(count={self.count}, size={self.size})"


class SessionAggregator:
    """Collects live sessions into caller-owned SessionCollections."""

    def __init__(self, introspector: SessionIntrospector, logger: Optional[logging.Logger] = None):
        self.introspector = introspector
        self.logger = logger or logging.getLogger(__name__)

    def get_session_infos(self) -> SessionCollection:
        """Collect every live session.

        Raises:
            NotFoundError: If there are no sessions or enumeration fails
            OutOfMemoryError: If the collection cannot grow
        """
        collection = SessionCollection()

        def collect(info: SessionInfo) -> None:
            collection.append(PublicSessionInfo.from_session_info(info))

        try:
            found = self.introspector.for_each_session(collect)
        except OutOfMemoryError:
            raise
        except UpstreamError as e:
            self.logger.debug("Session enumeration failed: %s", e)
            raise NotFoundError("No matching session")

        if found == 0:
            raise NotFoundError("No matching session")

        collection.shrink_to_fit()
        self.logger.debug("Collected %d sessions", collection.count)
        return collection

    def get_session_info_by_id(self, session: Union[int, str]) -> PublicSessionInfo:
        """Look up a single session by id."""
        try:
            info = self.introspector.get_session_by_id(session)
        except UpstreamError as e:
            self.logger.debug("Session lookup for %s failed: %s", session, e)
            raise NotFoundError("No matching session")
        return PublicSessionInfo.from_session_info(info)
