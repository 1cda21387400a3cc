from typing import Optional


class ChatError(Exception):
    """Base for errors that map onto a client-facing status code."""

    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        if message:
            self.message = message
        super().__init__(self.message)


class RoomNotFound(ChatError):
    status_code = 404
    message = "Room not found"


class RoomInactive(ChatError):
    status_code = 404
    message = "Room not found or inactive"


class RoomFull(ChatError):
    status_code = 400
    message = "Room is full"


class NotRoomCreator(ChatError):
    status_code = 403
    message = "Unauthorized"


class RoomUpdateConflict(ChatError):
    status_code = 500
    message = "Room is busy, please retry"
