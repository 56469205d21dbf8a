"""
Exception classes for iSCSI administration operations.

This module defines the exception hierarchy used throughout the iSCSI
administration library. Every failure carries an ISCSIErrorCode so callers
can tell the error kind apart without parsing the message.
"""

from enum import Enum
from typing import Optional


class ISCSIErrorCode(Enum):
    """Error classification codes.

    Attributes:
        INVALID_ARGUMENT: Malformed auth info, bad identity, unknown enum tag or key
        NOT_FOUND: Zero matches for an identity-scoped operation
        OUT_OF_MEMORY: Allocation or growth failure
        UPSTREAM: Failure propagated from the record database, agent or sysfs
    """

    INVALID_ARGUMENT = "ISCSI_ERR_INVAL"
    NOT_FOUND = "ISCSI_ERR_NO_OBJS_FOUND"
    OUT_OF_MEMORY = "ISCSI_ERR_NOMEM"
    UPSTREAM = "ISCSI_ERR"


class ISCSIError(Exception):
    """Base exception class for all iSCSI administration errors.

    This exception is raised for all operation failures including:
    - Invalid authentication info or node identities
    - Identity-scoped operations that match no record or session
    - Record database, sysfs and iscsiadm failures

    The message is informational only; use ``code`` to branch on the kind.
    """

    code = ISCSIErrorCode.UPSTREAM


class InvalidArgumentError(ISCSIError, ValueError):
    """Malformed argument, unknown method tag or unknown parameter key."""

    code = ISCSIErrorCode.INVALID_ARGUMENT


class NotFoundError(ISCSIError):
    """No node record or session matched the requested identity."""

    code = ISCSIErrorCode.NOT_FOUND


class OutOfMemoryError(ISCSIError):
    """Allocation failed while collecting results."""

    code = ISCSIErrorCode.OUT_OF_MEMORY


class UpstreamError(ISCSIError):
    """Failure reported by the record database, iscsiadm or sysfs.

    Attributes:
        exit_code: iscsiadm exit status, when the failure came from the agent
    """

    code = ISCSIErrorCode.UPSTREAM

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code
