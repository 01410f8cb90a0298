"""
app.services.admin_query
~~~~~~~~~~~~~~~~~~~~~~~~

管理端只读查询：房间列表（按请求方指纹标注 ``is_creator``）与创建者房间。
"""
from __future__ import annotations

from app.schemas.rooms import RoomSummary
from app.services.room_store import RoomStore


class AdminQuery:
    """``RoomStore`` 的只读投影，每次调用都反映当时的状态。"""

    def __init__(self, store: RoomStore) -> None:
        self.store = store

    def list_rooms(self, requester_fingerprint: str | None = None) -> list[RoomSummary]:
        """列出所有房间的摘要，按创建时间排序。"""
        rooms = sorted(self.store.list_rooms(), key=lambda r: r.created_at)
        return [room.info(requester_fingerprint) for room in rooms]

    def creator_rooms(self, fingerprint: str) -> list[str]:
        """返回该指纹创建的所有存活房间 PIN。"""
        return self.store.creator_pins(fingerprint)
