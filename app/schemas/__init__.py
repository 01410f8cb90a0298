"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API and the WebSocket protocol.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.rooms import ParticipantInfo, RoomSummary

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

__all__ = ["ApiResponse", "ParticipantInfo", "RoomSummary"]
