"""
iSCSI Sysfs Interface Module

This module provides the low-level read interface to the kernel's iSCSI
transport class and firmware (iBFT) trees under /sys. It is the foundation
for session introspection and firmware boot context discovery.

The ISCSISysfs class implements:
- Attribute reads with whitespace and "(null)" normalization
- Directory listing for session, connection and firmware entries
- Process-wide initialization guarded by a lock and a reference count
"""

import os
import logging
import threading
from typing import List, Optional

from .constants import ISCSIConstants
from .exceptions import UpstreamError


class ISCSISysfs:
    """Sysfs reader for iSCSI session and firmware information.

    Attributes:
        root: Sysfs mount point (normally /sys)
        session_class: Path to /sys/class/iscsi_session
        connection_class: Path to /sys/class/iscsi_connection
        ibft_root: Path to /sys/firmware/ibft
    """

    # Kernel attribute value printed for an unset string
    NULL_VALUE = "(null)"

    _init_lock = threading.Lock()
    _init_count = 0

    def __init__(self, root: str = ISCSIConstants.DEFAULT_SYSFS_ROOT):
        self.root = root
        self.session_class = os.path.join(root, ISCSIConstants.SESSION_CLASS)
        self.connection_class = os.path.join(root, ISCSIConstants.CONNECTION_CLASS)
        self.ibft_root = os.path.join(root, ISCSIConstants.IBFT_ROOT)
        self.logger = logging.getLogger(__name__)

    @classmethod
    def initialize(cls) -> None:
        """Register one user of the process-wide sysfs state.

        Safe to call from several threads and several contexts; only the
        first call does any work.
        """
        with cls._init_lock:
            if cls._init_count == 0:
                logging.getLogger(__name__).debug("Initializing iSCSI sysfs access")
            cls._init_count += 1

    @classmethod
    def cleanup(cls) -> None:
        """Release one user of the process-wide sysfs state."""
        with cls._init_lock:
            if cls._init_count > 0:
                cls._init_count -= 1
                if cls._init_count == 0:
                    logging.getLogger(__name__).debug("Released iSCSI sysfs access")

    @classmethod
    def is_initialized(cls) -> bool:
        with cls._init_lock:
            return cls._init_count > 0

    def valid_path(self, path: str) -> bool:
        """Check if a sysfs path is valid and accessible"""
        return os.path.exists(path) and os.access(path, os.R_OK)

    def read_sysfs(self, path: str) -> str:
        """Read a sysfs attribute with whitespace stripped.

        Args:
            path: Absolute sysfs path to read from

        Returns:
            File contents with whitespace stripped; "(null)" reads as ""

        Raises:
            UpstreamError: On path validation or read failures
        """
        try:
            if not self.valid_path(path):
                raise UpstreamError(f"Cannot read from {path}")

            with open(path, 'r') as f:
                value = f.read().strip()

        except OSError as e:
            raise UpstreamError(f"Error reading from {path}: {e}")

        self.logger.debug("Read %r from %s", value, path)
        return "" if value == self.NULL_VALUE else value

    def read_optional(self, path: str, default: str = "") -> str:
        """Read an attribute that some kernels or transports do not expose."""
        if not self.valid_path(path):
            return default
        return self.read_sysfs(path)

    def read_int(self, path: str, default: int = -1) -> int:
        """Read an integer attribute, falling back to ``default``."""
        value = self.read_optional(path)
        try:
            return int(value)
        except ValueError:
            return default

    def list_directory(self, path: str, prefix: Optional[str] = None) -> List[str]:
        """List contents of a sysfs directory, optionally filtered by prefix"""
        try:
            if not self.valid_path(path):
                return []
            entries = [f for f in os.listdir(path) if not f.startswith('.')]
        except OSError:
            return []
        if prefix is not None:
            entries = [f for f in entries if f.startswith(prefix)]
        return entries
