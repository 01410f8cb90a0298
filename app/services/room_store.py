"""
app.services.room_store
~~~~~~~~~~~~~~~~~~~~~~~

房间仓库 —— PIN → Room 映射的唯一可信来源。

所有方法都是同步的、不会中途挂起，在单线程事件循环中天然按调用顺序
完整执行，因此 PIN 唯一、人数上限和全局设备扫描都不需要额外加锁。
创建者索引（指纹 → PIN 集合）随每次创建/删除/过期同步更新。
"""
from __future__ import annotations

import random
from collections.abc import Callable

from app.core.errors import (
    RoomFullError,
    RoomNotFoundError,
    RoomValidationError,
    UnauthorizedError,
)
from app.core.logging import get_logger
from app.services.expiry import ExpiryScheduler
from app.services.membership import MembershipEnforcer
from app.services.pin_allocator import PinAllocator
from app.services.room import Participant, Room

logger = get_logger(__name__)

MIN_PARTICIPANTS: int = 2

ExpiryListener = Callable[[str], None]


class RoomStore:
    """进程内房间仓库。

    Attributes:
        scheduler: 空闲删除调度器。
        enforcer: 单设备准入策略。
        allocator: PIN 分配器。
    """

    def __init__(
        self,
        scheduler: ExpiryScheduler,
        enforcer: MembershipEnforcer | None = None,
        pin_max_attempts: int = 1000,
        rng: random.Random | None = None,
    ) -> None:
        self._rooms: dict[str, Room] = {}
        self._creator_index: dict[str, set[str]] = {}
        self._expiry_listeners: list[ExpiryListener] = []
        self.scheduler = scheduler
        self.enforcer = enforcer or MembershipEnforcer()
        self.allocator = PinAllocator(
            is_taken=self.__contains__,
            max_attempts=pin_max_attempts,
            rng=rng,
        )

    def __contains__(self, pin: object) -> bool:
        return pin in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    # ── 房间 ──────────────────────────────────────────────────────────

    def create_room(
        self,
        name: str,
        max_participants: int,
        one_connection_per_machine: bool,
        creator_fingerprint: str,
    ) -> Room:
        """创建房间并登记到创建者索引。

        新房间一开始就是空的，所以立即布置空闲定时器；有人加入时取消。

        Raises:
            RoomValidationError: 名称为空或人数上限小于 2。
            PinExhaustedError: 无法分配 PIN。
        """
        name = name.strip()
        if not name:
            raise RoomValidationError("请输入房间名称")
        if max_participants < MIN_PARTICIPANTS:
            raise RoomValidationError(f"房间人数上限至少为 {MIN_PARTICIPANTS}")

        pin = self.allocator.allocate()
        room = Room(
            pin=pin,
            name=name,
            max_participants=max_participants,
            one_connection_per_machine=one_connection_per_machine,
            creator_fingerprint=creator_fingerprint,
        )
        self._rooms[pin] = room
        self._creator_index.setdefault(creator_fingerprint, set()).add(pin)
        self.scheduler.arm(room, self._expire_if_idle)

        logger.info(
            "房间已创建 | pin=%s | name=%s | max=%d | one_per_machine=%s",
            pin, name, max_participants, one_connection_per_machine,
        )
        return room

    def get_room(self, pin: str) -> Room | None:
        return self._rooms.get(pin)

    def list_rooms(self) -> list[Room]:
        """返回当前所有房间的快照（顺序无意义）。"""
        return list(self._rooms.values())

    def delete_room(self, pin: str, requester_fingerprint: str | None) -> list[str]:
        """由创建者删除房间。

        Returns:
            删除前房间内所有成员的会话 ID，调用方据此通知成员。

        Raises:
            RoomNotFoundError: PIN 不存在。
            UnauthorizedError: 请求方不是创建者。
        """
        room = self._rooms.get(pin)
        if room is None:
            raise RoomNotFoundError()
        if not room.is_creator(requester_fingerprint):
            raise UnauthorizedError()

        member_ids = list(room.participants)
        self._drop(room)
        logger.info("房间已被创建者删除 | pin=%s | 成员 %d 人", pin, len(member_ids))
        return member_ids

    # ── 成员 ──────────────────────────────────────────────────────────

    def add_participant(
        self,
        pin: str,
        session_id: str,
        nickname: str,
        fingerprint: str,
        client_address: str,
    ) -> Participant:
        """把会话加入房间。

        Raises:
            RoomNotFoundError: PIN 不存在。
            RoomFullError: 人数已满。
            DeviceConflictError: 单设备策略拒绝。
        """
        room = self._rooms.get(pin)
        if room is None:
            raise RoomNotFoundError()
        if room.is_full:
            raise RoomFullError()
        self.enforcer.check_admission(room, self._rooms.values(), fingerprint)

        participant = Participant(
            session_id=session_id,
            nickname=nickname,
            fingerprint=fingerprint,
            client_address=client_address,
        )
        room.participants[session_id] = participant
        self.scheduler.disarm(room)
        logger.info(
            "成员加入房间 | pin=%s | nickname=%s | 在线: %d/%d",
            pin, nickname, room.online_count, room.max_participants,
        )
        return participant

    def remove_participant(self, pin: str, session_id: str) -> Participant | None:
        """把会话移出房间；房间或成员已不存在时什么也不做。

        房间因此变空时布置空闲定时器。
        """
        room = self._rooms.get(pin)
        if room is None:
            return None
        participant = room.participants.pop(session_id, None)
        if participant is None:
            return None

        logger.info(
            "成员离开房间 | pin=%s | nickname=%s | 在线: %d",
            pin, participant.nickname, room.online_count,
        )
        if room.is_empty:
            self.scheduler.arm(room, self._expire_if_idle)
        return participant

    # ── 创建者索引 ────────────────────────────────────────────────────

    def creator_pins(self, fingerprint: str) -> list[str]:
        """返回该指纹创建且仍存在的房间 PIN（升序）。"""
        return sorted(self._creator_index.get(fingerprint, ()))

    # ── 空闲过期 ──────────────────────────────────────────────────────

    def add_expiry_listener(self, listener: ExpiryListener) -> None:
        """注册空闲删除后的回调（参数为 PIN）。"""
        self._expiry_listeners.append(listener)

    def _expire_if_idle(self, pin: str) -> None:
        room = self._rooms.get(pin)
        if room is None or not room.is_empty:
            logger.debug("空闲检查跳过 | pin=%s", pin)
            return
        self._drop(room)
        logger.info("房间因长时间无人已自动删除 | pin=%s", pin)
        for listener in self._expiry_listeners:
            listener(pin)

    def _drop(self, room: Room) -> None:
        self.scheduler.disarm(room)
        self._rooms.pop(room.pin, None)
        pins = self._creator_index.get(room.creator_fingerprint)
        if pins is not None:
            pins.discard(room.pin)
            if not pins:
                del self._creator_index[room.creator_fingerprint]
