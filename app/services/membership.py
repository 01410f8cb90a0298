"""
app.services.membership
~~~~~~~~~~~~~~~~~~~~~~~

单设备准入策略。

同一台物理机器上不同浏览器生成的指纹形如 ``<硬件前缀>_<浏览器部分>``，
前缀相同即视为同一设备（"主指纹"）。没有 ``_`` 的指纹整体作为主指纹。

当目标房间开启了 ``one_connection_per_machine`` 时，只要任何一个同样开启该限制的
房间中已有相同主指纹的成员，就拒绝加入。这是全局扫描，而非只看目标房间。
"""
from __future__ import annotations

from collections.abc import Iterable

from app.core.errors import DeviceConflictError
from app.services.room import Room

FINGERPRINT_DELIMITER: str = "_"


def primary_fingerprint(fingerprint: str) -> str:
    """取第一个 ``_`` 之前的部分作为设备分组键。"""
    return fingerprint.split(FINGERPRINT_DELIMITER, 1)[0]


class MembershipEnforcer:
    """判断一个会话能否加入指定房间（只负责设备策略，不检查人数）。"""

    def find_conflict(self, rooms: Iterable[Room], fingerprint: str) -> Room | None:
        """返回已占用该设备的第一个限制型房间，没有则返回 ``None``。"""
        device = primary_fingerprint(fingerprint)
        for room in rooms:
            if not room.one_connection_per_machine:
                continue
            for participant in room.participants.values():
                if primary_fingerprint(participant.fingerprint) == device:
                    return room
        return None

    def check_admission(self, target: Room, rooms: Iterable[Room], fingerprint: str) -> None:
        """校验准入。

        Args:
            target: 目标房间。
            rooms: 当前所有房间的一致快照。
            fingerprint: 申请加入的会话指纹。

        Raises:
            DeviceConflictError: 同一设备已在某个限制型房间中。
        """
        if not target.one_connection_per_machine:
            return
        conflict = self.find_conflict(rooms, fingerprint)
        if conflict is None:
            return
        if conflict.pin == target.pin:
            raise DeviceConflictError("每台设备在该房间只允许一个连接。")
        raise DeviceConflictError("每台设备只允许一个连接，请先退出其他房间。")
