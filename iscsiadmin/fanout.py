"""
Interface fan-out dispatcher.

A node identity may be bound to several interface records. IfaceFanout
applies one operation to every bound record in the database's enumeration
order and reports a structured FanoutResult.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .config import NodeIdentity, NodeRecord
from .exceptions import ISCSIError, NotFoundError
from .idbm import NodeDatabase

# Returns True when the record counts as a match, False to skip it
IfaceOperation = Callable[[NodeRecord], bool]


@dataclass
class FanoutResult:
    """Outcome of one fan-out.

    Attributes:
        match_count: Records the operation accepted before stopping
        error: The failure that stopped the enumeration, if any
    """

    match_count: int
    error: Optional[ISCSIError] = None

    def raise_for_result(self, not_found_msg: str = "No such node") -> int:
        """Raise the recorded error, or NotFoundError when nothing matched.

        Returns:
            The match count
        """
        if self.error is not None:
            raise self.error
        if self.match_count == 0:
            raise NotFoundError(not_found_msg)
        return self.match_count


class IfaceFanout:
    """Dispatches an operation across every record bound to an identity."""

    def __init__(self, db: NodeDatabase):
        self.db = db
        self.logger = logging.getLogger(__name__)

    def for_each(self, identity: NodeIdentity, operation: IfaceOperation) -> FanoutResult:
        """Apply ``operation`` to every record matching {name, tpgt, address, port}.

        Records are neither reordered nor deduplicated. The first ISCSIError
        raised by ``operation`` stops the enumeration.
        """
        found, error = self.db.for_each_bound_interface(identity, operation)
        self.logger.debug("Fan-out over %s matched %d records%s", identity.name, found,
                          f" (stopped: {error})" if error else "")
        return FanoutResult(found, error)
