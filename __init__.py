"""
iSCSI Initiator Administration Package

A Python library for managing the iSCSI initiator: discovering targets,
maintaining node records, logging sessions in and out, and reading or
writing per-node parameters, with consistent error reporting.
"""

from .iscsiadmin import (
    ISCSIAdmin,
    NodeDatabase,
    IscsidAgent,
    SessionIntrospector,
    SessionCollection,
    FirmwareSource,
    ISCSISysfs,
    ISCSIConstants,
    ISCSIError,
    ISCSIErrorCode,
    InvalidArgumentError,
    NotFoundError,
    OutOfMemoryError,
    UpstreamError,
    AuthInfo,
    AuthMethod,
    ChapAuthInfo,
    NodeIdentity,
    PublicNode,
    SessionTimeout,
    PublicSessionInfo,
    NetworkConfig
)

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
