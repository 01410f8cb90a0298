"""
app.schemas.messages
~~~~~~~~~~~~~~~~~~~~

WebSocket 帧协议模型。

每一帧都是 ``{"event": <名称>, "data": <载荷>}`` 形式的 JSON 文本：

- 入站命令是一个按 ``event`` 字段区分的联合类型（``InboundCommand``），
  由 ``parse_command()`` 一次性完成解析与校验。
- 出站事件都继承 ``OutboundEvent``，通过 ``to_frame()`` 序列化。
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import ConfigDict, Field, TypeAdapter

from app.schemas.rooms import CamelModel, ParticipantInfo, RoomSummary


# ── 入站载荷 ──────────────────────────────────────────────────────────

class FingerprintPayload(CamelModel):
    """设备指纹注册载荷。"""

    fingerprint: str = Field(..., max_length=512, description="外部生成的设备指纹")


class CreateRoomPayload(CamelModel):
    """创建房间请求。人数下限由 ``RoomStore`` 校验，这里只做类型转换。"""

    name: str = Field(..., max_length=100, description="房间显示名称")
    max_participants: int = Field(..., description="最大成员数（≥2）")
    one_connection_per_machine: bool = Field(default=False, description="是否限制每台设备一个连接")


class JoinRoomPayload(CamelModel):
    """加入房间请求。"""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    room_pin: str = Field(..., description="目标房间 PIN")
    nickname: str = Field(..., min_length=1, max_length=50, description="成员昵称")


class ChatMessagePayload(CamelModel):
    """聊天消息，原样转发给房间内所有成员。"""

    author: str = Field(..., max_length=50, description="作者昵称")
    message: str = Field(..., min_length=1, max_length=2000, description="消息正文")
    timestamp: int | float | None = Field(default=None, description="客户端时间戳（毫秒）")


# ── 入站命令 ──────────────────────────────────────────────────────────

class RegisterFingerprint(CamelModel):
    event: Literal["register_fingerprint"]
    data: FingerprintPayload


class CreateRoom(CamelModel):
    event: Literal["create_room"]
    data: CreateRoomPayload


class JoinRoom(CamelModel):
    event: Literal["join_room"]
    data: JoinRoomPayload


class SendMessage(CamelModel):
    event: Literal["send_message"]
    data: ChatMessagePayload


class GetRooms(CamelModel):
    event: Literal["get_rooms"]
    data: Any = None


class DeleteRoom(CamelModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    event: Literal["delete_room"]
    data: str = Field(..., description="要删除的房间 PIN")


class LeaveRoom(CamelModel):
    event: Literal["leave_room"]
    data: Any = None


InboundCommand = Annotated[
    Union[
        RegisterFingerprint,
        CreateRoom,
        JoinRoom,
        SendMessage,
        GetRooms,
        DeleteRoom,
        LeaveRoom,
    ],
    Field(discriminator="event"),
]

_command_adapter: TypeAdapter[InboundCommand] = TypeAdapter(InboundCommand)


def parse_command(raw: str | bytes) -> InboundCommand:
    """解析一帧入站 JSON 文本。

    Raises:
        pydantic.ValidationError: JSON 非法、事件名未知或载荷不合法。
    """
    return _command_adapter.validate_json(raw)


# ── 出站事件 ──────────────────────────────────────────────────────────

class OutboundEvent(CamelModel):
    """所有出站事件的基类。"""

    event: str
    data: Any = None

    def to_frame(self) -> str:
        """序列化为发送给客户端的 JSON 文本帧。"""
        return self.model_dump_json(by_alias=True)


class HostInfoData(CamelModel):
    ip: str
    host: str
    fingerprint: str


class RoomCreatedData(CamelModel):
    pin: str
    name: str
    max_participants: int
    one_connection_per_machine: bool


class NicknameData(CamelModel):
    nickname: str


class ErrorData(CamelModel):
    message: str


class HostInfo(OutboundEvent):
    event: Literal["host_info"] = "host_info"
    data: HostInfoData


class CreatorRooms(OutboundEvent):
    event: Literal["creator_rooms"] = "creator_rooms"
    data: list[str]


class RoomCreated(OutboundEvent):
    event: Literal["room_created"] = "room_created"
    data: RoomCreatedData


class RoomNotFound(OutboundEvent):
    event: Literal["room_not_found"] = "room_not_found"


class RoomFull(OutboundEvent):
    event: Literal["room_full"] = "room_full"


class ErrorEvent(OutboundEvent):
    event: Literal["error"] = "error"
    data: ErrorData

    @classmethod
    def of(cls, message: str) -> ErrorEvent:
        return cls(data=ErrorData(message=message))


class UserJoined(OutboundEvent):
    event: Literal["user_joined"] = "user_joined"
    data: NicknameData


class UserLeft(OutboundEvent):
    event: Literal["user_left"] = "user_left"
    data: NicknameData


class ParticipantsUpdate(OutboundEvent):
    event: Literal["participants_update"] = "participants_update"
    data: list[ParticipantInfo]


class RoomsUpdate(OutboundEvent):
    event: Literal["rooms_update"] = "rooms_update"


class ReceiveMessage(OutboundEvent):
    event: Literal["receive_message"] = "receive_message"
    data: ChatMessagePayload


class RoomsList(OutboundEvent):
    event: Literal["rooms_list"] = "rooms_list"
    data: list[RoomSummary]


class RoomDeleted(OutboundEvent):
    event: Literal["room_deleted"] = "room_deleted"
    data: str


class RoomDeletedSuccess(OutboundEvent):
    event: Literal["room_deleted_success"] = "room_deleted_success"
    data: str


class RoomLeft(OutboundEvent):
    event: Literal["room_left"] = "room_left"
