"""
app.schemas.rooms
~~~~~~~~~~~~~~~~~

房间相关的 Pydantic 视图模型（只读投影），供 WebSocket 事件与 REST 接口共用。

字段在 JSON 中统一使用 camelCase（``maxParticipants`` 等），与前端约定一致。
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON 字段使用 camelCase，Python 侧仍用 snake_case。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParticipantInfo(CamelModel):
    """房间成员的公开信息。"""

    id: str = Field(..., description="成员的会话 ID")
    nickname: str = Field(..., description="成员昵称（不要求唯一）")
    is_creator: bool = Field(default=False, description="该成员是否为房间创建者的设备")


class RoomSummary(CamelModel):
    """房间摘要信息，``is_creator`` 按请求方指纹计算。"""

    id: str = Field(..., description="房间 ID（与 PIN 相同）")
    pin: str = Field(..., description="6 位房间 PIN")
    name: str = Field(..., description="房间显示名称")
    max_participants: int = Field(..., description="最大成员数")
    current_participants: int = Field(..., description="当前在线成员数")
    one_connection_per_machine: bool = Field(..., description="是否限制每台设备一个连接")
    created_at: datetime = Field(..., description="创建时间（UTC）")
    is_creator: bool = Field(default=False, description="请求方是否为创建者")
