"""
app.services.expiry
~~~~~~~~~~~~~~~~~~~

空闲房间的延迟删除调度器。

每个房间最多持有一个待执行的定时器句柄（保存在 ``Room.expiry_handle``），
重新布置时总是先取消旧句柄，不会叠加。到期后是否真正删除由回调方
（``RoomStore``）重新检查房间是否仍然存在且为空。
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from app.core.logging import get_logger
from app.services.room import Cancellable, Room

logger = get_logger(__name__)

CallLater = Callable[..., Cancellable]


def _loop_call_later(delay: float, callback: Callable[..., Any], *args: Any) -> Cancellable:
    return asyncio.get_running_loop().call_later(delay, callback, *args)


class ExpiryScheduler:
    """基于事件循环 ``call_later`` 的一次性定时器管理。

    Attributes:
        idle_minutes: 房间清空后等待的分钟数。
    """

    def __init__(self, idle_minutes: float = 10, call_later: CallLater | None = None) -> None:
        self.idle_minutes = idle_minutes
        self._call_later: CallLater = call_later or _loop_call_later

    @property
    def idle_seconds(self) -> float:
        return self.idle_minutes * 60

    def arm(self, room: Room, on_fire: Callable[[str], None]) -> None:
        """为房间布置（或重新布置）空闲删除检查。"""
        self.disarm(room)
        room.expiry_handle = self._call_later(self.idle_seconds, self._fire, room, on_fire)
        logger.debug("空闲定时器已布置 | pin=%s | %.1f 分钟", room.pin, self.idle_minutes)

    def disarm(self, room: Room) -> None:
        """取消房间的待执行检查。定时器已触发时调用也是安全的。"""
        if room.expiry_handle is not None:
            room.expiry_handle.cancel()
            room.expiry_handle = None
            logger.debug("空闲定时器已取消 | pin=%s", room.pin)

    def is_armed(self, room: Room) -> bool:
        return room.expiry_handle is not None

    def _fire(self, room: Room, on_fire: Callable[[str], None]) -> None:
        room.expiry_handle = None
        on_fire(room.pin)
