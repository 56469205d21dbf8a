"""
Node parameter access.

Reads and writes named node record parameters across every interface record
bound to a node identity, and builds the auth helpers on top of them.

Reads have no merge policy: when several interface records match, the value
returned is the one from the last record enumerated.
"""

import logging
from typing import Optional

from .auth import resolve_auth_method, verify_auth_info
from .config import AuthInfo, AuthMethod, ChapAuthInfo, NodeIdentity, NodeRecord
from .constants import ISCSIConstants
from .exceptions import InvalidArgumentError
from .fanout import IfaceFanout
from .idbm import NodeDatabase

AUTHMETHOD_KEY, USERNAME_KEY, PASSWORD_KEY, USERNAME_IN_KEY, PASSWORD_IN_KEY = ISCSIConstants.AUTH_KEYS


class ParameterReader:
    """Fan-out operation looking up one key in each matched record."""

    def __init__(self, db: NodeDatabase, parameter: str):
        self.db = db
        self.parameter = parameter
        self.value: Optional[str] = None
        self.found = False

    def __call__(self, rec: NodeRecord) -> bool:
        for info in self.db.recinfo(rec):
            if not info.visible or info.name != self.parameter:
                continue
            self.value = info.value
            self.found = True
            break
        return True


class ParameterAccessor:
    """Gets and sets node parameters through the interface fan-out."""

    def __init__(self, db: NodeDatabase, fanout: IfaceFanout,
                 logger: Optional[logging.Logger] = None):
        self.db = db
        self.fanout = fanout
        self.logger = logger or logging.getLogger(__name__)

    def set_parameter(self, node: NodeIdentity, parameter: str, value: str) -> int:
        """Write ``parameter`` on every interface record bound to ``node``.

        Returns:
            Number of records updated

        Raises:
            InvalidArgumentError: Unknown or read-only key, or bad value
            NotFoundError: No record is bound to ``node``
        """
        params = self.db.alloc_parameter_list(parameter, value)
        try:
            result = self.fanout.for_each(node, lambda rec: self.db.node_set_params(params, rec))
        finally:
            params.clear()
        count = result.raise_for_result("No such node")
        self.logger.debug("Set %s on %d records of %s", parameter, count, node.name)
        return count

    def get_parameter(self, node: NodeIdentity, parameter: str) -> str:
        """Read ``parameter`` from the records bound to ``node``.

        Raises:
            InvalidArgumentError: The key is not a visible parameter
            NotFoundError: No record is bound to ``node``
        """
        reader = ParameterReader(self.db, parameter)
        self.fanout.for_each(node, reader).raise_for_result("No such node")
        if not reader.found:
            raise InvalidArgumentError("No such parameter")
        return reader.value

    def set_auth(self, node: NodeIdentity, auth_info: Optional[AuthInfo]) -> None:
        verify_auth_info(auth_info)
        if resolve_auth_method(auth_info) is AuthMethod.CHAP:
            chap = auth_info.chap
            values = (ISCSIConstants.AUTH_METHOD_CHAP, chap.username, chap.password,
                      chap.reverse_username, chap.reverse_password)
        else:
            values = (ISCSIConstants.AUTH_METHOD_NONE, "", "", "", "")
        for key, value in zip(ISCSIConstants.AUTH_KEYS, values):
            self.set_parameter(node, key, value)

    def get_auth(self, node: NodeIdentity) -> AuthInfo:
        """Read the auth settings stored for ``node``.

        Raises:
            InvalidArgumentError: The stored method is neither "None" nor "CHAP"
        """
        method = self.get_parameter(node, AUTHMETHOD_KEY)
        if method == ISCSIConstants.AUTH_METHOD_NONE:
            return AuthInfo.none()
        if method == ISCSIConstants.AUTH_METHOD_CHAP:
            return AuthInfo(method=AuthMethod.CHAP, chap=ChapAuthInfo(
                username=self.get_parameter(node, USERNAME_KEY),
                password=self.get_parameter(node, PASSWORD_KEY),
                reverse_username=self.get_parameter(node, USERNAME_IN_KEY),
                reverse_password=self.get_parameter(node, PASSWORD_IN_KEY),
            ))
        raise InvalidArgumentError(f"unknown authentication method: {method}")
