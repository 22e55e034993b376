import structlog
import logging
import sys
from typing import Dict, Any, Optional
import os

# Context keys copied onto every entry when bound
CONTEXT_KEYS = ("service", "environment", "version", "room", "agent_name")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "rambly-agent"
) -> None:
    """Route structlog through stdlib logging and bind the service context"""

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_room_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def bind_room_context(room: str, agent_name: str):
    """Tag log entries from this task, and tasks it starts, with the room"""
    structlog.contextvars.bind_contextvars(room=room, agent_name=agent_name)


def clear_room_context():
    structlog.contextvars.unbind_contextvars("room", "agent_name")


def add_room_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy bound service and room context onto the entry, explicit keys win"""

    context = structlog.contextvars.get_contextvars()
    for key in CONTEXT_KEYS:
        value = context.get(key)
        if value is not None and event_dict.get(key) is None:
            event_dict[key] = value
    return event_dict


class RoomLogger:
    """Specialized logger for room membership activity"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_room_event(
        self,
        event_type: str,
        room: Optional[str],
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log an inbound daemon event after it was applied"""

        self.logger.debug(
            "room_event",
            event_type=event_type,
            room=room,
            data=data or {},
            **kwargs
        )

    def log_command(
        self,
        command: str,
        room: Optional[str],
        success: bool = True,
        error_code: Optional[str] = None,
        detail: Optional[str] = None
    ):
        """Log a command surface invocation"""

        log = self.logger.info if success else self.logger.warning
        log(
            "room_command",
            command=command,
            room=room,
            success=success,
            error_code=error_code,
            detail=detail
        )

    def log_follow_step(
        self,
        target: str,
        position: Dict[str, Any],
        waypoint: Dict[str, Any],
        remaining_breadcrumbs: int
    ):
        """Log a single follow stepper move"""

        self.logger.debug(
            "follow_step",
            target=target,
            position=position,
            waypoint=waypoint,
            remaining_breadcrumbs=remaining_breadcrumbs
        )


# Global logger instance
room_logger = RoomLogger("rambly")


class MetricsCollector:
    """Collect and export metrics"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        if name not in self.metrics:
            self.metrics[name] = 0
        self.metrics[name] += value

        room_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Set a gauge metric"""

        self.metrics[name] = value

        room_logger.logger.debug(
            "metric",
            metric_type="gauge",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        return dict(self.metrics)

    def reset(self):
        self.metrics.clear()


# Global metrics collector
metrics = MetricsCollector()
