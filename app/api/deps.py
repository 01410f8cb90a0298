from fastapi import Request

from app.services.coordinator import RoomCoordinator


def get_coordinator(request: Request) -> RoomCoordinator:
    return request.app.state.coordinator
