from typing import Annotated, Any, Dict, List, Literal, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from rambly_agent.domain.tool.room_tool import RoomTool, ROOM_TOOL_SCHEMA

router = APIRouter(prefix="/api/v1/room", tags=["room"])


class RoomActionRequest(BaseModel):
    """A single call of the room tool"""
    action: Literal["join", "leave", "speak", "move", "follow", "unfollow", "status", "list"]
    room: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class RoomActionResponse(BaseModel):
    content: List[TextContent] = Field(default_factory=list)


def get_room_tool(request: Request) -> RoomTool:
    return request.app.state.room_tool


@router.post("/action", response_model=RoomActionResponse)
async def room_action(
    request: RoomActionRequest,
    room_tool: Annotated[RoomTool, Depends(get_room_tool)]
):
    """Run one room action and return its text result"""
    text = await room_tool.execute(request.model_dump(exclude_none=True))
    return RoomActionResponse(content=[TextContent(text=text)])


@router.get("/tool")
async def room_tool_schema() -> Dict[str, Any]:
    return ROOM_TOOL_SCHEMA
