from typing import Dict, Any, Optional
import structlog

from rambly_agent.domain.orchestration.room_manager import RoomManager

logger = structlog.get_logger(__name__)

ROOM_ACTIONS = ["join", "leave", "speak", "move", "follow", "unfollow", "status", "list"]

ROOM_TOOL_SCHEMA: Dict[str, Any] = {
    "id": "rambly_room",
    "name": "rambly_room",
    "description": (
        "Interact with Rambly spatial voice chat rooms. "
        "Actions: join, leave, speak, move, follow, unfollow, status, list."
    ),
    "category": "communication",
    "parameters": {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ROOM_ACTIONS},
            "room": {"type": "string"},
            "name": {"type": "string"},
            "text": {"type": "string"},
            "x": {"type": "number"},
            "y": {"type": "number"},
        },
        "required": ["action"],
    },
}


class RoomTool:
    """Dispatches tool calls onto the room command surface"""

    def __init__(self, manager: RoomManager):
        self.manager = manager

    def get_tool_info(self) -> Dict[str, Any]:
        return ROOM_TOOL_SCHEMA

    async def execute(self, params: Dict[str, Any]) -> str:
        """Run one tool call and return the text shown to the caller"""

        action: Optional[str] = params.get("action")
        logger.debug("Room tool call", action=action)

        if action == "join":
            if not params.get("room"):
                return "Error: room required"
            result = await self.manager.join(params["room"], params.get("name"))
        elif action == "leave":
            result = await self.manager.leave()
        elif action == "speak":
            if not params.get("text"):
                return "Error: text required"
            result = await self.manager.speak(params["text"])
        elif action == "move":
            if params.get("x") is None or params.get("y") is None:
                return "Error: x,y required"
            result = await self.manager.move(params["x"], params["y"])
        elif action == "follow":
            if not params.get("name"):
                return "Error: name required"
            result = await self.manager.follow(params["name"])
        elif action == "unfollow":
            result = await self.manager.unfollow()
        elif action in ("status", "list"):
            result = await self.manager.status()
        else:
            return f"Unknown action: {action}"

        return str(result)
