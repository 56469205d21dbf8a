"""
Constants for iSCSI initiator administration.

This module contains the constants used throughout the iSCSI administration
library, including protocol defaults, field length limits, sysfs and record
database locations, and iscsiadm exit code messages.
"""


class ISCSIConstants:
    """Constants for iSCSI initiator configuration and operation."""

    # Well-known iSCSI port used for discovery and login
    ISCSI_LISTEN_PORT = 3260

    # Target portal group tag used when firmware does not supply one
    PORTAL_GROUP_TAG_UNKNOWN = -1

    # Field length limits (longest accepted value, in characters)
    TARGET_NAME_MAXLEN = 223
    VALUE_MAXLEN = 255
    AUTH_STR_MAXLEN = 255
    HOST_MAXLEN = 1024

    # Session collection growth policy
    SESSION_ARRAY_INITIAL_SIZE = 4
    SESSION_ARRAY_GROWTH_FACTOR = 2

    # Default locations
    DEFAULT_DB_ROOT = "/etc/iscsi"
    DEFAULT_SYSFS_ROOT = "/sys"
    DEFAULT_ISCSIADM = "iscsiadm"
    DEFAULT_IFACE = "default"
    DEFAULT_TRANSPORT = "tcp"

    # Record database layout (relative to the database root)
    NODES_DIR = "nodes"
    SENDTARGETS_DIR = "send_targets"
    IFACES_DIR = "ifaces"
    SENDTARGETS_CONFIG = "st_config"
    ISCSID_CONFIG = "iscsid.conf"

    # Record file markers
    RECORD_BEGIN = "# BEGIN RECORD"
    RECORD_END = "# END RECORD"
    RECORD_VERSION = "2.1"
    EMPTY_VALUE = "<empty>"

    # Sysfs locations (relative to the sysfs root)
    SESSION_CLASS = "class/iscsi_session"
    CONNECTION_CLASS = "class/iscsi_connection"
    IBFT_ROOT = "firmware/ibft"

    # Auth method string encodings stored in node records
    AUTH_METHOD_NONE = "None"
    AUTH_METHOD_CHAP = "CHAP"

    # Node record keys used by the auth helpers
    AUTH_KEYS = (
        "node.session.auth.authmethod",
        "node.session.auth.username",
        "node.session.auth.password",
        "node.session.auth.username_in",
        "node.session.auth.password_in",
    )

    # iscsiadm exit codes (subset of open-iscsi iscsi_err.h)
    ISCSI_ERR_MESSAGES = {
        1: "unknown error",
        2: "session not found",
        3: "no available memory",
        4: "encountered connection failure",
        5: "encountered iSCSI login failure",
        6: "encountered iSCSI database failure",
        7: "invalid parameter",
        8: "connection timed out",
        9: "internal error",
        10: "iSCSI logout failed",
        11: "iSCSI PDU timed out",
        12: "iSCSI driver not found",
        13: "daemon access denied",
        14: "iSCSI driver does not support requested capability",
        15: "session exists",
        16: "Unknown request",
        17: "iSNS service not supported",
        18: "could not communicate to iscsid",
        19: "encountered non-retryable iSCSI login failure",
        20: "could not connect to iscsid",
        21: "no records found",
        22: "could not lookup object in sysfs",
        23: "could not find host",
        24: "iSCSI login failed due to authorization failure",
        25: "iSNS query failed",
        26: "iSNS registration failed",
        27: "operation not supported",
        28: "device or resource in use",
        29: "operation failed but retry may succeed",
        30: "unknown discovery type",
        31: "child process terminated",
        32: "iSCSI login failed due to authentication failure",
    }
