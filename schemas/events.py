"""Frames sent by clients over the WebSocket, keyed by their ``action``."""
from typing import Any, Optional

from pydantic import Field

from schemas.rooms import CamelModel


class RoomFrame(CamelModel):
    room_id: str = Field(min_length=1)


class JoinRoomFrame(RoomFrame):
    user_name: Optional[str] = None
    user_icon: Optional[Any] = None
    user_color: Optional[str] = None


class SendMessageFrame(RoomFrame):
    message_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    user_name: Optional[str] = None
    user_icon: Optional[Any] = None
    user_color: Optional[str] = None


class UserTypingFrame(RoomFrame):
    user_name: Optional[str] = None


class RoomInfoFrame(RoomFrame):
    pass


class CloseRoomFrame(RoomFrame):
    pass
