"""
Session Logging Client
Talks to the session/telemetry store over an opaque RPC. Sessions, messages,
feedback and recommendations must be written; operation logs and metrics
are fire-and-forget.
"""

import time
from typing import Any, Dict, Optional, Protocol

import httpx

from consult_assist.core.errors import (
    SessionLoggingError,
    UpstreamNetworkError,
    UpstreamStatusError,
)
from consult_assist.core.logging import get_logger
from consult_assist.models.session import (
    ExportFormat,
    FeedbackRecord,
    MessageRecord,
    OperationLog,
    PerformanceMetric,
    RecommendationRecord,
    SessionStatus,
    SessionType,
)

logger = get_logger(__name__)


class RpcTransport(Protocol):
    async def call(self, command: str, args: Dict[str, Any]) -> Any:
        ...


class HttpRpcTransport:
    """Posts each command as JSON to ``{base_url}/{command}``."""

    def __init__(self, base_url: str, timeout: float = 10, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def call(self, command: str, args: Dict[str, Any]) -> Any:
        try:
            response = await self.client.post(f"{self.base_url}/{command}", json=args)
        except httpx.TransportError as e:
            raise UpstreamNetworkError(f"Session store unreachable: {e}") from e
        if not response.is_success:
            raise UpstreamStatusError(response.status_code, response.text or response.reason_phrase)
        if not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        await self.client.aclose()


def _now_seconds() -> int:
    return int(time.time())


class SessionLogger:
    """Tracks the active session and records consultation activity against it."""

    def __init__(self, transport: RpcTransport):
        self.transport = transport
        self.current_session_id: Optional[str] = None

    async def _invoke(self, command: str, args: Dict[str, Any]) -> Any:
        try:
            return await self.transport.call(command, args)
        except Exception as e:
            logger.error(f"Session store command '{command}' failed: {e}")
            raise SessionLoggingError(f"{command} failed: {e}") from e

    def _require_session(self, session_id: Optional[str]) -> str:
        target = session_id or self.current_session_id
        if not target:
            raise SessionLoggingError("No active session")
        return target

    async def start_session(
        self,
        session_type: SessionType,
        patient_id: Optional[str] = None,
        patient_name: Optional[str] = None,
    ) -> str:
        session_id = await self._invoke("create_session", {
            "sessionType": session_type.value,
            "patientId": patient_id,
            "patientName": patient_name,
        })
        self.current_session_id = str(session_id)
        logger.info(f"Session started: {self.current_session_id} ({session_type.value})")
        return self.current_session_id

    async def end_session(
        self, session_id: Optional[str] = None, status: SessionStatus = SessionStatus.COMPLETED
    ) -> None:
        target = self._require_session(session_id)
        await self._invoke("update_session_status", {
            "sessionId": target,
            "status": status.value,
            "endTime": _now_seconds(),
        })
        if target == self.current_session_id:
            self.current_session_id = None
        logger.info(f"Session ended: {target} ({status.value})")

    async def save_message(self, message: MessageRecord) -> str:
        session_id = self._require_session(message.session_id)
        message_id = await self._invoke("save_message", {
            "sessionId": session_id,
            "role": message.role.value,
            "content": message.content,
            "images": message.images or None,
            "tokenCount": message.token_count,
            "llmModel": message.llm_model,
            "latencyMs": message.latency_ms,
        })
        return str(message_id)

    async def save_feedback(self, feedback: FeedbackRecord) -> str:
        session_id = self._require_session(feedback.session_id)
        feedback_id = await self._invoke("save_feedback", {
            "sessionId": session_id,
            "targetType": feedback.target_type.value,
            "targetId": feedback.target_id,
            "feedbackType": feedback.feedback_type.value,
            "rating": feedback.rating,
            "reason": feedback.reason,
            "originalValue": feedback.original_value,
            "modifiedValue": feedback.modified_value,
        })
        logger.info(f"Feedback saved: {feedback.feedback_type.value} on {feedback.target_type.value}")
        return str(feedback_id)

    async def save_recommendation(self, recommendation: RecommendationRecord) -> str:
        session_id = self._require_session(recommendation.session_id)
        content = recommendation.content
        if hasattr(content, "model_dump_json"):
            content = content.model_dump_json()
        elif not isinstance(content, str):
            content = str(content)
        rec_id = await self._invoke("save_recommendation", {
            "sessionId": session_id,
            "recType": recommendation.rec_type.value,
            "content": content,
            "matched": recommendation.matched,
            "matchConfidence": recommendation.match_confidence,
            "promptTokens": recommendation.prompt_tokens,
            "completionTokens": recommendation.completion_tokens,
            "latencyMs": recommendation.latency_ms,
        })
        return str(rec_id)

    async def log_operation(self, log: OperationLog) -> None:
        try:
            await self.transport.call("log_operation", {
                "sessionId": log.session_id or self.current_session_id,
                "operationType": log.operation_type.value,
                "operationName": log.operation_name,
                "details": log.details,
                "success": log.success,
                "durationMs": log.duration_ms,
            })
        except Exception as e:
            logger.warning(f"Failed to log operation '{log.operation_name}': {e}")

    async def record_metric(self, metric: PerformanceMetric) -> None:
        try:
            await self.transport.call("record_performance_metric", {
                "sessionId": metric.session_id or self.current_session_id,
                "metricType": metric.metric_type.value,
                "metricValue": metric.metric_value,
                "unit": metric.unit,
                "context": metric.context,
            })
        except Exception as e:
            logger.warning(f"Failed to record metric '{metric.metric_type.value}': {e}")

    @staticmethod
    def _range(start_date: Optional[int], end_date: Optional[int]) -> Dict[str, Any]:
        return {"startDate": start_date, "endDate": end_date}

    async def get_session_statistics(self, start_date: Optional[int] = None, end_date: Optional[int] = None) -> Any:
        return await self._invoke("get_session_statistics", self._range(start_date, end_date))

    async def get_feedback_statistics(self, start_date: Optional[int] = None, end_date: Optional[int] = None) -> Any:
        return await self._invoke("get_feedback_statistics", self._range(start_date, end_date))

    async def get_performance_statistics(
        self, start_date: Optional[int] = None, end_date: Optional[int] = None
    ) -> Any:
        return await self._invoke("get_performance_statistics", self._range(start_date, end_date))

    async def export_data(
        self,
        export_format: ExportFormat = ExportFormat.JSON,
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
    ) -> str:
        data = await self._invoke("export_data", {"format": export_format.value, **self._range(start_date, end_date)})
        logger.info(f"Session data exported as {export_format.value}")
        return data if isinstance(data, str) else str(data)
