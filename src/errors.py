"""
Error kinds raised by the routing and monitoring core.
"""

from typing import Optional


class RoutingError(Exception):
    """Base class for all routing/monitoring errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamUnreachable(RoutingError):
    """A capacity or session/client query failed or timed out"""


class NoEffectiveProvider(RoutingError):
    """The content item has no resolvable owning provider"""


class NotFound(RoutingError):
    """A referenced content item or provider does not exist"""


class CommandFailed(RoutingError):
    """The session registry rejected a stop command"""

    def __init__(self, message: str, stream_id: Optional[str] = None):
        super().__init__(message)
        self.stream_id = stream_id
