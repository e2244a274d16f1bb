import logging
import sys
import structlog
from typing import Any, Dict, Optional

from tradeloop.common.config import settings


def add_temporal_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Processor to shorten Temporal context keys.
    Temporal SDK attaches 'temporal_workflow_id' and friends through 'extra',
    ProcessorFormatter merges them into event_dict.
    """
    if "temporal_workflow_id" in event_dict:
        event_dict["workflow_id"] = event_dict.pop("temporal_workflow_id")
    if "temporal_run_id" in event_dict:
        event_dict["run_id"] = event_dict.pop("temporal_run_id")
    if "temporal_activity_id" in event_dict:
        event_dict["activity_id"] = event_dict.pop("temporal_activity_id")

    return event_dict


def configure_logging(level: Optional[str] = None):
    """
    Configure structured logging for the application.
    Interprets stdlib logging calls and outputs JSON.
    """
    processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.contextvars.merge_contextvars,
        add_temporal_context,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        # Route structlog through stdlib so Temporal and uvicorn logs share one handler
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=processors,
    ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level or settings.LOG_LEVEL)

    logging.getLogger("temporalio").setLevel(logging.INFO)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
