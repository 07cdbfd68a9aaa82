"""
Domain errors raised by the session coordination core.

Each error carries the HTTP status used by the REST layer and a short code
sent back over the WebSocket in `error` frames.
"""


class TableError(Exception):
    """Base class for errors surfaced to the requester."""

    status_code = 400
    code = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotFound(TableError):
    """Unknown room code, session, member or record."""

    status_code = 404
    code = "not_found"


class RoomFull(TableError):
    """The session already holds the maximum number of members."""

    status_code = 403
    code = "room_full"


class PersistenceFailure(TableError):
    """A write to the record store failed; durable state is unchanged."""

    status_code = 503
    code = "persistence_failure"


class CombatNotActive(TableError):
    """A turn-order action that needs an active combat arrived while idle."""

    status_code = 409
    code = "combat_not_active"


class NotPermitted(TableError):
    """The connection's role may not send this event."""

    status_code = 403
    code = "not_permitted"


class ProtocolError(TableError):
    """Malformed frame or an event that does not fit the connection state."""

    status_code = 400
    code = "protocol_error"


class ChannelUnavailable(Exception):
    """Raised internally when a connection can no longer accept frames."""
