"""
Models for the session logging collaborator
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from consult_assist.models.chat import ChatRole


class SessionType(str, Enum):
    CHAT = "chat"
    CONSULTATION = "consultation"
    VOICE = "voice"
    RECEPTION = "reception"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class FeedbackType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    ADOPTED = "adopted"
    REJECTED = "rejected"
    MODIFIED = "modified"


class TargetType(str, Enum):
    MESSAGE = "message"
    DIAGNOSIS = "diagnosis"
    MEDICATION = "medication"
    EXAMINATION = "examination"
    RECORD = "record"


class OperationType(str, Enum):
    VIEW_CHANGE = "view_change"
    BUTTON_CLICK = "button_click"
    FORM_SUBMIT = "form_submit"
    API_CALL = "api_call"
    ERROR = "error"


class MetricType(str, Enum):
    LLM_LATENCY = "llm_latency"
    API_LATENCY = "api_latency"
    UI_RENDER = "ui_render"
    MEMORY_USAGE = "memory_usage"


class RecommendationType(str, Enum):
    DIAGNOSIS = "diagnosis"
    MEDICATION = "medication"
    EXAMINATION = "examination"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


class MessageRecord(BaseModel):
    session_id: Optional[str] = None
    role: ChatRole = ChatRole.USER
    content: str = ""
    images: List[str] = Field(default_factory=list)
    token_count: Optional[int] = None
    llm_model: Optional[str] = None
    latency_ms: Optional[int] = None


class FeedbackRecord(BaseModel):
    session_id: Optional[str] = None
    target_type: TargetType
    target_id: str
    feedback_type: FeedbackType
    rating: Optional[int] = None
    reason: Optional[str] = None
    original_value: Optional[str] = None
    modified_value: Optional[str] = None


class RecommendationRecord(BaseModel):
    session_id: Optional[str] = None
    rec_type: RecommendationType = RecommendationType.DIAGNOSIS
    content: Any = ""
    matched: bool = False
    match_confidence: Optional[float] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    latency_ms: Optional[int] = None


class OperationLog(BaseModel):
    session_id: Optional[str] = None
    operation_type: OperationType
    operation_name: str
    details: Optional[Dict[str, Any]] = None
    success: bool = True
    duration_ms: Optional[int] = None


class PerformanceMetric(BaseModel):
    session_id: Optional[str] = None
    metric_type: MetricType
    metric_value: float
    unit: str
    context: Optional[Dict[str, Any]] = None
