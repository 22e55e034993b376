from typing import Optional
from datetime import datetime, timezone
from fastapi import FastAPI
import structlog

from .route.room import router as room_router
from rambly_agent.config import RamblySettings
from rambly_agent.domain.orchestration.room_manager import RoomManager
from rambly_agent.domain.tool.room_tool import RoomTool
from rambly_agent.infrastructure.observability.logging import setup_logging, metrics

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[RamblySettings] = None,
    manager: Optional[RoomManager] = None,
) -> FastAPI:
    """Build the HTTP surface around one room manager"""

    settings = settings or RamblySettings()
    manager = manager or RoomManager(settings)

    app = FastAPI(title="Rambly Room Agent")
    app.state.settings = settings
    app.state.room_manager = manager
    app.state.room_tool = RoomTool(manager)
    app.include_router(room_router)

    manager.set_transcript_handler(
        lambda from_id, name, text, distance: logger.info(
            "Heard", speaker=name, text=text, distance=distance
        )
    )
    manager.set_exit_handler(
        lambda code: logger.error("Room client exited; re-join required", exit_code=code)
    )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Leave the room on shutdown"""
        if manager.state.connected:
            await manager.leave()
        logger.info("Room agent shutdown")

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "room": manager.state.get_state_summary(),
            "daemon_running": manager.supervisor.running,
            "metrics": metrics.get_metrics_summary(),
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    return app


def main():
    settings = RamblySettings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    import uvicorn
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
