"""
Error taxonomy for gtidfix.

Library modules raise these; only the CLI turns them into output and exit
codes. Every error can carry the repair stage and the node it concerns.
"""

from typing import Optional, Sequence


class GtidFixError(Exception):
    """Base class for all gtidfix failures."""

    def __init__(self, message: str, stage: Optional[str] = None, node: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.node = node

    def __str__(self) -> str:
        context = []
        if self.stage:
            context.append(f"stage={self.stage}")
        if self.node:
            context.append(f"node={self.node}")
        if context:
            return f"[{' '.join(context)}] {self.message}"
        return self.message


class NodeConnectionError(GtidFixError):
    """Raised when a node cannot be reached or drops the connection."""
    pass


class QueryError(GtidFixError):
    """Raised when a node rejects or fails a statement."""
    pass


class PreconditionError(GtidFixError):
    """Raised when a channel that would be reset lacks auto-position."""
    pass


class ConfirmationDeclined(GtidFixError):
    """Raised when the operator declines the purge plan. Not a failure."""
    pass


class ApplyError(GtidFixError):
    """
    Raised when one of the destructive statements fails mid-sequence.

    The node may be reset but not purged; nothing is retried or rolled back.
    """

    def __init__(self, message: str, completed: Sequence[str] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.completed = list(completed)


class ResumeError(GtidFixError):
    """Raised when replication could not be restarted after STOP."""

    def __init__(self, message: str, purge_applied: bool = False,
                 prior_error: Optional[BaseException] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.purge_applied = purge_applied
        self.prior_error = prior_error


class SessionError(GtidFixError):
    """Raised when the pre-repair session record cannot be written."""
    pass
