"""
app.api.rooms
~~~~~~~~~~~~~

管理端房间查询 REST 接口（只读）。

路由前缀 ``/api``。

端点:
  - ``GET /rooms``                         → 房间列表（可按指纹标注 isCreator）
  - ``GET /rooms/creators/{fingerprint}``  → 该指纹创建的房间 PIN
  - ``GET /rooms/{pin}``                   → 单个房间详情
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.api.deps import get_coordinator
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.schemas.api_response import ApiResponse
from app.schemas.rooms import RoomSummary
from app.services.coordinator import RoomCoordinator
from app.services.pin_allocator import is_valid_pin

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取房间列表", response_model=ApiResponse[list[RoomSummary]])
@limiter.limit(settings.API_RATE_LIMIT)
async def list_rooms(
    request: Request,
    fingerprint: str | None = Query(None, description="请求方设备指纹，用于计算 isCreator"),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """返回所有存活房间的摘要。"""
    return ApiResponse.ok(data=coordinator.admin.list_rooms(fingerprint))


@router.get(
    "/rooms/creators/{fingerprint}",
    summary="获取指纹创建的房间",
    response_model=ApiResponse[list[str]],
)
@limiter.limit(settings.API_RATE_LIMIT)
async def creator_rooms(
    request: Request,
    fingerprint: str,
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """返回该设备指纹创建且仍存在的房间 PIN。"""
    return ApiResponse.ok(data=coordinator.admin.creator_rooms(fingerprint))


@router.get("/rooms/{pin}", summary="获取房间详情", response_model=ApiResponse[RoomSummary])
@limiter.limit(settings.API_RATE_LIMIT)
async def room_info(
    request: Request,
    pin: str,
    fingerprint: str | None = Query(None, description="请求方设备指纹"),
    coordinator: RoomCoordinator = Depends(get_coordinator),
):
    """返回指定房间的摘要信息。

    Args:
        pin: 房间 PIN。
        fingerprint: (可选)请求方设备指纹。
    """
    room = coordinator.store.get_room(pin) if is_valid_pin(pin) else None
    if room is None:
        raise HTTPException(status_code=404, detail="房间不存在")
    return ApiResponse.ok(data=room.info(fingerprint))
