class ProtocolError(Exception):
    """Base for errors reported to the requesting client as an `error` envelope."""

    message = "Failed to process message"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class NotInRoom(ProtocolError):
    message = "Not in a room"


class EmptyInput(ProtocolError):
    message = "Empty input"


class IdeaNotFound(ProtocolError):
    message = "Idea not found"


class CollaboratorFailure(ProtocolError):
    message = "Failed to process idea with AI"


class InvalidEnvelope(ProtocolError):
    message = "Invalid message"
