"""
roomrelay.schemas
~~~~~~~~~~~~~~~~~
Pydantic schemas: REST payloads and WebSocket wire frames.
"""
from roomrelay.schemas.api_response import ApiResponse
from roomrelay.schemas.messages import ErrorCode, PlayerEntry, ServerFrame
from roomrelay.schemas.rooms import RoomInfoData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
