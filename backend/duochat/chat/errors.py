"""Error taxonomy for the chat protocol.

Every failure the core can report derives from ChatError and carries a
stable wire ``code``. Action-level errors are turned into an ``error`` event
for the offending session; they never close the connection. AuthInvalid and
TransportFailure are connection-level.
"""
from typing import Optional


class ChatError(Exception):
    """Base class for protocol failures reported to a client."""

    code = "CHAT_ERROR"

    def __init__(self, detail: str, *, client_ref: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.client_ref = client_ref


class AuthInvalid(ChatError):
    """Token missing, malformed, expired or not signed by us."""

    code = "AUTH_INVALID"


class NotAMember(ChatError):
    """Participant is not one of the room's two members."""

    code = "NOT_A_MEMBER"


class NotActiveMember(ChatError):
    """Session has not joined the room it is sending to."""

    code = "NOT_ACTIVE_MEMBER"


class UnknownMessage(ChatError):
    """Message id does not resolve to a persisted message."""

    code = "UNKNOWN_MESSAGE"


class ProtocolViolation(ChatError):
    """Malformed event or unknown event type."""

    code = "BAD_EVENT"

    def __init__(
        self,
        detail: str,
        *,
        code: Optional[str] = None,
        client_ref: Optional[str] = None,
    ) -> None:
        super().__init__(detail, client_ref=client_ref)
        if code is not None:
            self.code = code


class TransportFailure(ChatError):
    """The connection can no longer carry events (closed, slow consumer)."""

    code = "TRANSPORT_FAILURE"
