"""
iSCSI Initiator Administration Library

This module provides a Python interface for managing iSCSI initiator state:
target discovery, node records, session login/logout and per-node
parameters.

Main Classes:
    ISCSIAdmin: High-level administration interface and call context
    NodeDatabase: Persistent node, interface and discovery records
    IscsidAgent: Login/logout requests to iscsid
    SessionIntrospector: Live session reads from sysfs
    FirmwareSource: Firmware (iBFT) boot targets

Exceptions:
    ISCSIError: Base exception for iSCSI operations
    InvalidArgumentError, NotFoundError, OutOfMemoryError, UpstreamError

Enums:
    AuthMethod: Authentication method tags
    ISCSIErrorCode: Error classification codes
"""

from .constants import ISCSIConstants
from .exceptions import (
    ISCSIError, ISCSIErrorCode, InvalidArgumentError, NotFoundError, OutOfMemoryError, UpstreamError
)
from .config import (
    AuthInfo, AuthMethod, ChapAuthInfo, NodeIdentity, PublicNode, SessionTimeout,
    PublicSessionInfo, NetworkConfig
)
from .agent import IscsidAgent
from .firmware import FirmwareSource
from .idbm import NodeDatabase
from .sessions import SessionCollection, SessionIntrospector
from .sysfs import ISCSISysfs
from .admin import ISCSIAdmin

__all__ = [
    'ISCSIAdmin',
    'NodeDatabase',
    'IscsidAgent',
    'SessionIntrospector',
    'SessionCollection',
    'FirmwareSource',
    'ISCSISysfs',
    'ISCSIConstants',
    'ISCSIError',
    'ISCSIErrorCode',
    'InvalidArgumentError',
    'NotFoundError',
    'OutOfMemoryError',
    'UpstreamError',
    'AuthInfo',
    'AuthMethod',
    'ChapAuthInfo',
    'NodeIdentity',
    'PublicNode',
    'SessionTimeout',
    'PublicSessionInfo',
    'NetworkConfig'
]
