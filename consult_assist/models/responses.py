"""
Pydantic Models for API Responses
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from consult_assist.models.catalog import DiagnosisEntry


class TranscriptionResponse(BaseModel):
    request_id: str = Field(description="Unique request ID")
    text: str = Field(description="Transcript text")
    test_mode: bool = Field(default=False, description="True when canned sample text was returned")
    processing_time_ms: int


class ChatResponse(BaseModel):
    content: str


class MatchResponse(BaseModel):
    """Outcome of resolving one query against the catalog"""
    query: str
    matched: bool
    score: Optional[float] = None
    method: Optional[str] = Field(default=None, description="exact, code_prefix or fuzzy")
    entry: Optional[Dict[str, Any]] = None


class RelatedDiagnosesResponse(BaseModel):
    code: str
    diagnoses: List[DiagnosisEntry]


class SessionResponse(BaseModel):
    session_id: str


class SavedRecordResponse(BaseModel):
    """Identifier assigned by the session store"""
    id: str


class HealthCheckResponse(BaseModel):
    """Health Check Response"""
    status: str = Field(description="Service status (healthy/degraded)")
    timestamp: datetime
    version: str
    uptime_seconds: int
    details: Optional[Dict[str, Any]] = Field(default=None, description="Detailed health information")


class ErrorResponse(BaseModel):
    """Standardized error response"""
    error: str = Field(description="Error type")
    message: str = Field(description="Error description")
    details: Optional[Dict[str, Any]] = None
    request_id: Optional[str] = Field(default=None, description="Request ID for debugging")
    timestamp: datetime
