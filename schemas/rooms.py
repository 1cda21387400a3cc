from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # wire format is camelCase, Python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(BaseModel):
    latitude: float
    longitude: float


class Room(CamelModel):
    id: str
    location: Location
    radius: int
    road_name: Optional[str] = None
    creator: str
    participants: List[str]
    max_participants: int
    last_activity: int
    status: Literal["active", "closed"] = "active"
    room_type: Literal["public", "private"] = "public"


class CreateRoomRequest(CamelModel):
    user_id: str = Field(min_length=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    road_name: Optional[str] = None
    room_type: Optional[Literal["public", "private"]] = None
    max_participants: Optional[int] = None

class CreateRoomResponse(CamelModel):
    room_id: str
    room_info: Dict[str, Any]

class JoinRoomRequest(CamelModel):
    room_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)

class JoinRoomResponse(CamelModel):
    success: bool = True
    room_info: Dict[str, Any]
    creator_id: str

class CloseRoomRequest(CamelModel):
    room_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)

class CloseRoomResponse(CamelModel):
    success: bool = True
