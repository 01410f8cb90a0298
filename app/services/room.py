"""
app.services.room
~~~~~~~~~~~~~~~~~

房间领域模型 —— ``Room`` 与其成员 ``Participant``。

``Room`` 只保存状态，所有修改都通过 ``RoomStore`` 完成，
保证人数上限、PIN 唯一等不变量只在一处维护。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from app.schemas.rooms import ParticipantInfo, RoomSummary


class Cancellable(Protocol):
    """定时器句柄（``asyncio.TimerHandle`` 或测试替身）。"""

    def cancel(self) -> None: ...


@dataclass
class Participant:
    """某个会话在一个房间内的成员记录。

    Attributes:
        session_id: 会话 ID，在一条连接的生命周期内保持不变。
        nickname: 显示昵称，不要求唯一。
        fingerprint: 设备指纹。
        client_address: 客户端网络地址。
    """

    session_id: str
    nickname: str
    fingerprint: str
    client_address: str


@dataclass
class Room:
    """一个以 PIN 标识的临时聊天房间。

    Attributes:
        pin: 6 位数字 PIN。
        name: 显示名称。
        max_participants: 最大成员数（≥2）。
        one_connection_per_machine: 是否限制每台设备一个连接。
        creator_fingerprint: 创建者的设备指纹，只有它能删除房间。
        created_at: 创建时间（UTC）。
        participants: 会话 ID → 成员。
        expiry_handle: 待执行的空闲删除定时器，至多一个。
    """

    pin: str
    name: str
    max_participants: int
    one_connection_per_machine: bool
    creator_fingerprint: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    participants: dict[str, Participant] = field(default_factory=dict)
    expiry_handle: Cancellable | None = field(default=None, repr=False)

    @property
    def online_count(self) -> int:
        """当前成员数。"""
        return len(self.participants)

    @property
    def is_full(self) -> bool:
        return self.online_count >= self.max_participants

    @property
    def is_empty(self) -> bool:
        return not self.participants

    def is_creator(self, fingerprint: str | None) -> bool:
        """指纹是否与房间创建者一致。"""
        return fingerprint is not None and fingerprint == self.creator_fingerprint

    def participant_list(self) -> list[ParticipantInfo]:
        """返回成员公开信息列表（附带 ``is_creator`` 标记）。"""
        return [
            ParticipantInfo(
                id=p.session_id,
                nickname=p.nickname,
                is_creator=self.is_creator(p.fingerprint),
            )
            for p in self.participants.values()
        ]

    def info(self, requester_fingerprint: str | None = None) -> RoomSummary:
        """返回房间摘要信息，``is_creator`` 按请求方指纹计算。"""
        return RoomSummary(
            id=self.pin,
            pin=self.pin,
            name=self.name,
            max_participants=self.max_participants,
            current_participants=self.online_count,
            one_connection_per_machine=self.one_connection_per_machine,
            created_at=self.created_at,
            is_creator=self.is_creator(requester_fingerprint),
        )
