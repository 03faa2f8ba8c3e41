"""
Structured logging setup for Consult Assist
"""

import logging
import structlog
from datetime import datetime, timezone
from typing import Optional

from consult_assist.config import Environment, Settings


def setup_logging(settings: Settings):
    """Configures structured logging"""

    # Consistent timestamps
    timestamper = structlog.processors.TimeStamper(fmt="ISO")

    processors = [
        structlog.processors.add_log_level,
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.environment == Environment.DEVELOPMENT:
        # Development: Colored console output
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True)
        ])
    else:
        # Production: JSON output
        processors.extend([
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer()
        ])

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """Returns a configured logger"""
    return structlog.get_logger(name or __name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLogger:
    """Logger for audit events of outbound calls and advisory checks"""

    def __init__(self):
        self.logger = get_logger("audit")

    def log_external_api_call(
        self,
        service: str,
        endpoint: str,
        response_status: Optional[int],
        response_time_ms: int,
        **kwargs
    ):
        """Logs calls to external APIs"""
        self.logger.info(
            "external_api_call",
            service=service,
            endpoint=endpoint,
            response_status=response_status,
            response_time_ms=response_time_ms,
            timestamp=_now(),
            **kwargs
        )

    def log_transcription_event(
        self,
        provider: str,
        audio_size_bytes: int,
        outcome: str,
        processing_time_ms: int,
        **kwargs
    ):
        """Logs the outcome of one transcription attempt chain"""
        self.logger.info(
            "transcription_event",
            provider=provider,
            audio_size_bytes=audio_size_bytes,
            outcome=outcome,
            processing_time_ms=processing_time_ms,
            timestamp=_now(),
            **kwargs
        )

    def log_fact_check(
        self,
        check_type: str,
        has_issues: bool,
        issue_count: int,
        **kwargs
    ):
        """Logs fact-check results"""
        self.logger.info(
            "fact_check_event",
            check_type=check_type,
            has_issues=has_issues,
            issue_count=issue_count,
            timestamp=_now(),
            **kwargs
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        request_id: str = None,
        **kwargs
    ):
        """Logs error events"""
        self.logger.error(
            "error_event",
            request_id=request_id,
            error_type=error_type,
            error_message=error_message,
            timestamp=_now(),
            **kwargs
        )


# Global audit logger instance
audit_logger = AuditLogger()
