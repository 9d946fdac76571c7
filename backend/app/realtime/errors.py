class DiscussionEventError(Exception):
    """Recoverable failure of a realtime event, reported to the sender only."""

    code = "DiscussionEventError"
    default_message = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_payload(self) -> dict:
        return {"message": self.message, "code": self.code}


class DiscussionNotFound(DiscussionEventError):
    code = "DiscussionNotFound"
    default_message = "Discussion does not exist."


class Unauthorized(DiscussionEventError):
    code = "Unauthorized"
    default_message = "Only the discussion author can do this."


class Banned(DiscussionEventError):
    code = "Banned"
    default_message = "You are banned from this discussion."


class NotJoined(DiscussionEventError):
    code = "NotJoined"
    default_message = "Join the discussion first."


class UserNotFound(DiscussionEventError):
    code = "UserNotFound"
    default_message = "No user with that nickname."


class InvalidPayload(DiscussionEventError):
    code = "InvalidPayload"
    default_message = "Invalid payload."


class PresenceTargetOffline(DiscussionEventError):
    code = "PresenceTargetOffline"
    default_message = "Target user has no live connection."


class UnknownConnection(DiscussionEventError):
    code = "UnknownConnection"
    default_message = "Connection is not registered."
