"""
app.services.session
~~~~~~~~~~~~~~~~~~~~

每条连接一个的会话状态机。

状态流转::

    UNIDENTIFIED ──注册指纹──▶ IDENTIFIED ──加入房间──▶ IN_ROOM
                                   ▲                      │
                                   └──── 退出 / 房间被删 ──┘
    任意状态 ──连接关闭──▶ CLOSED（先执行与退出相同的清理）

入站命令通过一张 ``命令类型 → 处理函数`` 表分发；业务异常在这里统一
转换为发给本会话的出站事件，不会影响其他会话。
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from app.core.errors import (
    CoordinatorError,
    RoomFullError,
    RoomNotFoundError,
    RoomValidationError,
    SessionStateError,
    UnregisteredError,
)
from app.core.logging import get_logger
from app.schemas.messages import (
    CreateRoom,
    CreatorRooms,
    DeleteRoom,
    ErrorEvent,
    GetRooms,
    HostInfo,
    HostInfoData,
    InboundCommand,
    JoinRoom,
    LeaveRoom,
    NicknameData,
    OutboundEvent,
    ParticipantsUpdate,
    ReceiveMessage,
    RegisterFingerprint,
    RoomCreated,
    RoomCreatedData,
    RoomDeletedSuccess,
    RoomFull,
    RoomLeft,
    RoomNotFound,
    RoomsList,
    SendMessage,
    UserJoined,
    UserLeft,
)

if TYPE_CHECKING:
    from app.services.coordinator import RoomCoordinator

logger = get_logger(__name__)


class SessionState(str, Enum):
    UNIDENTIFIED = "unidentified"
    IDENTIFIED = "identified"
    IN_ROOM = "in_room"
    CLOSED = "closed"


class SessionManager:
    """单条连接的会话控制器。

    Attributes:
        session_id: 会话 ID。
        client_ip: 客户端地址。
        fingerprint: 设备指纹，注册后不可更改。
        current_pin: 当前所在房间 PIN，至多一个。
        nickname: 加入房间时使用的昵称。
    """

    def __init__(self, session_id: str, client_ip: str, coordinator: RoomCoordinator) -> None:
        self.session_id = session_id
        self.client_ip = client_ip
        self.coordinator = coordinator
        self.fingerprint: str | None = None
        self.current_pin: str | None = None
        self.nickname: str | None = None
        self._closed = False
        self._lookup_task: asyncio.Task[None] | None = None
        self._handlers: dict[type, Callable[[Any], None]] = {
            RegisterFingerprint: self._on_register,
            CreateRoom: self._on_create_room,
            JoinRoom: self._on_join_room,
            SendMessage: self._on_send_message,
            GetRooms: self._on_get_rooms,
            DeleteRoom: self._on_delete_room,
            LeaveRoom: self._on_leave_room,
        }

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if self.current_pin is not None:
            return SessionState.IN_ROOM
        if self.fingerprint is not None:
            return SessionState.IDENTIFIED
        return SessionState.UNIDENTIFIED

    # ── 入口 ──────────────────────────────────────────────────────────

    async def handle(self, command: InboundCommand) -> None:
        """分发一条入站命令。业务失败只回报给本会话。"""
        if self._closed:
            return
        handler = self._handlers.get(type(command))
        if handler is None:
            logger.warning("未知命令类型: %s", type(command).__name__)
            return
        try:
            handler(command)
        except CoordinatorError as e:
            self._report(command.event, e)

    def close(self) -> None:
        """连接关闭：执行与退出房间相同的清理后注销。可重复调用。"""
        if self._closed:
            return
        self._leave(notify_self=False)
        self._closed = True
        if self._lookup_task is not None and not self._lookup_task.done():
            self._lookup_task.cancel()
        self.coordinator.relay.unregister(self.session_id)

    def on_room_deleted(self, pin: str) -> None:
        """所在房间被创建者删除，回到 IDENTIFIED。"""
        if self.current_pin == pin:
            self.current_pin = None
            self.nickname = None

    # ── 命令处理 ──────────────────────────────────────────────────────

    def _on_register(self, command: RegisterFingerprint) -> None:
        fingerprint = command.data.fingerprint
        if not fingerprint.strip():
            raise SessionStateError("设备指纹不能为空")
        if self.fingerprint is not None and fingerprint != self.fingerprint:
            raise SessionStateError("该连接已注册了其他设备指纹")
        if self.fingerprint is None:
            self.fingerprint = fingerprint
            logger.info("设备指纹已注册 | ip=%s | fingerprint=%s", self.client_ip, fingerprint)

        self._send(CreatorRooms(data=self.coordinator.admin.creator_rooms(fingerprint)))
        self._start_host_lookup()

    def _on_create_room(self, command: CreateRoom) -> None:
        fingerprint = self._require_identity()
        payload = command.data
        room = self.coordinator.store.create_room(
            name=payload.name,
            max_participants=payload.max_participants,
            one_connection_per_machine=payload.one_connection_per_machine,
            creator_fingerprint=fingerprint,
        )
        self._send(
            RoomCreated(
                data=RoomCreatedData(
                    pin=room.pin,
                    name=room.name,
                    max_participants=room.max_participants,
                    one_connection_per_machine=room.one_connection_per_machine,
                ),
            ),
        )
        self.coordinator.notify_rooms_changed()

    def _on_join_room(self, command: JoinRoom) -> None:
        fingerprint = self._require_identity()
        if self.current_pin is not None:
            raise SessionStateError("请先退出当前房间")
        pin = command.data.room_pin.strip()
        nickname = command.data.nickname.strip()
        if not nickname:
            raise RoomValidationError("请输入昵称")

        store = self.coordinator.store
        store.add_participant(
            pin=pin,
            session_id=self.session_id,
            nickname=nickname,
            fingerprint=fingerprint,
            client_address=self.client_ip,
        )
        self.current_pin = pin
        self.nickname = nickname

        relay = self.coordinator.relay
        relay.broadcast(pin, UserJoined(data=NicknameData(nickname=nickname)))
        self._broadcast_participants(pin)
        self.coordinator.notify_rooms_changed()

    def _on_send_message(self, command: SendMessage) -> None:
        if self.current_pin is None:
            logger.debug("不在房间内，消息已丢弃")
            return
        self.coordinator.relay.broadcast(self.current_pin, ReceiveMessage(data=command.data))
        logger.debug(
            "消息已转发 | pin=%s | author=%s | %s",
            self.current_pin, command.data.author, command.data.message[:80],
        )

    def _on_get_rooms(self, command: GetRooms) -> None:
        fingerprint = self._require_identity()
        self._send(RoomsList(data=self.coordinator.admin.list_rooms(fingerprint)))

    def _on_delete_room(self, command: DeleteRoom) -> None:
        fingerprint = self._require_identity()
        pin = command.data.strip()
        self.coordinator.delete_room(pin, fingerprint)
        self._send(RoomDeletedSuccess(data=pin))
        self.coordinator.notify_rooms_changed()

    def _on_leave_room(self, command: LeaveRoom) -> None:
        self._leave(notify_self=True)

    # ── 内部 ──────────────────────────────────────────────────────────

    def _leave(self, notify_self: bool) -> None:
        pin = self.current_pin
        if pin is None:
            return
        nickname = self.nickname
        self.current_pin = None
        self.nickname = None

        participant = self.coordinator.store.remove_participant(pin, self.session_id)
        if participant is not None:
            relay = self.coordinator.relay
            relay.broadcast(pin, UserLeft(data=NicknameData(nickname=nickname or participant.nickname)))
            self._broadcast_participants(pin)
            self.coordinator.notify_rooms_changed()
        if notify_self:
            self._send(RoomLeft())

    def _broadcast_participants(self, pin: str) -> None:
        room = self.coordinator.store.get_room(pin)
        if room is not None:
            self.coordinator.relay.broadcast(pin, ParticipantsUpdate(data=room.participant_list()))

    def _require_identity(self) -> str:
        if self.fingerprint is None:
            raise UnregisteredError()
        return self.fingerprint

    def _send(self, event: OutboundEvent) -> None:
        self.coordinator.relay.send(self.session_id, event)

    def _report(self, command_name: str, error: CoordinatorError) -> None:
        logger.warning("命令被拒绝 | %s | %s: %s", command_name, type(error).__name__, error.message)
        if isinstance(error, RoomNotFoundError):
            self._send(RoomNotFound())
        elif isinstance(error, RoomFullError):
            self._send(RoomFull())
        else:
            self._send(ErrorEvent.of(error.message))

    def _start_host_lookup(self) -> None:
        if self._lookup_task is not None and not self._lookup_task.done():
            self._lookup_task.cancel()
        self._lookup_task = asyncio.create_task(self._send_host_info())

    async def _send_host_info(self) -> None:
        host = await self.coordinator.resolve_host(self.client_ip)
        if self._closed or self.fingerprint is None:
            return
        self._send(HostInfo(data=HostInfoData(ip=self.client_ip, host=host, fingerprint=self.fingerprint)))
