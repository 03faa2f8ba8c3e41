"""
Consult Assist - FastAPI Main Application
"""

import json
import secrets
import time
import traceback
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncGenerator, Awaitable, Callable, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.responses import Response

from consult_assist.config import Settings, get_settings
from consult_assist.core.errors import (
    ConfigurationError,
    ConsultAssistError,
    RecordGenerationError,
    SessionLoggingError,
    TranscriptionError,
    UnsupportedAudioError,
    UpstreamError,
)
from consult_assist.core.logging import audit_logger, get_logger, setup_logging
from consult_assist.core.preferences import UserPreferences
from consult_assist.core.retry import RetryPolicy, TRANSCRIPTION_RETRY_POLICY
from consult_assist.models.catalog import CatalogKind
from consult_assist.models.fact_check import (
    DiagnosisCheckContext,
    ExaminationCheckContext,
    FactCheckResult,
    MedicalRecordCheckContext,
    MedicineCheckContext,
    PatientRiskContext,
    RiskItem,
)
from consult_assist.models.record import MedicalRecordDraft
from consult_assist.models.requests import (
    ChatRequest,
    EndSessionRequest,
    MatchRequest,
    RecordRequest,
    StartSessionRequest,
    TestModeRequest,
)
from consult_assist.models.responses import (
    ChatResponse,
    ErrorResponse,
    HealthCheckResponse,
    MatchResponse,
    RelatedDiagnosesResponse,
    SavedRecordResponse,
    SessionResponse,
    TranscriptionResponse,
)
from consult_assist.models.session import (
    ExportFormat,
    FeedbackRecord,
    MessageRecord,
    MetricType,
    OperationLog,
    PerformanceMetric,
    RecommendationRecord,
)
from consult_assist.services.entity_matcher import EntityMatcher
from consult_assist.services.fact_checker import FactCheckService
from consult_assist.services.llm_service import LLMService, resolve_llm_config
from consult_assist.services.medical_catalog import load_catalog_from_dir
from consult_assist.services.record_service import RecordGenerationService
from consult_assist.services.risk_service import RiskAnalysisService
from consult_assist.services.session_logger import HttpRpcTransport, SessionLogger
from consult_assist.services.stt_service import (
    AudioPayload,
    SpeechProxyClient,
    SpeechTranscriptionService,
    is_test_mode_enabled,
    set_test_mode,
)

logger = get_logger(__name__)

# Prometheus metrics
request_count = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
request_duration = Histogram("http_request_duration_seconds", "HTTP request duration")
transcription_duration = Histogram("transcription_duration_seconds", "Audio transcription duration")

@dataclass
class Services:
    """Explicitly constructed service graph shared by all requests"""
    settings: Settings
    preferences: UserPreferences
    llm: LLMService
    transcription: SpeechTranscriptionService
    matcher: EntityMatcher
    fact_checker: FactCheckService
    records: RecordGenerationService
    risk: RiskAnalysisService
    session_logger: Optional[SessionLogger] = None
    closers: List[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for close in self.closers:
            await close()


def build_services(settings: Settings) -> Services:
    preferences = UserPreferences(settings.preferences_path)
    llm = LLMService(settings, preferences, retry_policy=RetryPolicy(max_retries=settings.max_retries))
    proxy = SpeechProxyClient(settings)
    transcription = SpeechTranscriptionService(
        settings,
        llm,
        proxy,
        preferences,
        retry_policy=RetryPolicy(
            max_retries=settings.stt_max_retries,
            initial_delay_ms=TRANSCRIPTION_RETRY_POLICY.initial_delay_ms,
            max_delay_ms=TRANSCRIPTION_RETRY_POLICY.max_delay_ms,
        ),
    )
    matcher = EntityMatcher(load_catalog_from_dir(settings.catalog_dir))
    closers = [llm.aclose, proxy.aclose]

    session_logger = None
    if settings.session_rpc_url:
        transport = HttpRpcTransport(settings.session_rpc_url, timeout=settings.session_rpc_timeout)
        session_logger = SessionLogger(transport)
        closers.append(transport.aclose)

    return Services(
        settings=settings,
        preferences=preferences,
        llm=llm,
        transcription=transcription,
        matcher=matcher,
        fact_checker=FactCheckService(llm),
        records=RecordGenerationService(llm, matcher),
        risk=RiskAnalysisService(llm),
        session_logger=session_logger,
        closers=closers,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_session_logger(services: Services = Depends(get_services)) -> SessionLogger:
    if services.session_logger is None:
        raise ConfigurationError("Session logging is not configured. Set SESSION_RPC_URL.")
    return services.session_logger


class StatisticsKind(str, Enum):
    SESSIONS = "sessions"
    FEEDBACK = "feedback"
    PERFORMANCE = "performance"


def _error_body(request: Request, error: str, message: str) -> dict:
    return ErrorResponse(
        error=error,
        message=message,
        request_id=getattr(request.state, "request_id", None),
        timestamp=datetime.now(timezone.utc),
    ).model_dump(mode="json")


def _error_response(request: Request, status_code: int, error: str, message: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    audit_logger.log_error(error_type=error, error_message=message, request_id=request_id)
    return JSONResponse(
        status_code=status_code,
        content=_error_body(request, error, message),
        headers={"X-Request-ID": request_id},
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info("Consult Assist starting...")
        logger.info(f"Environment: {settings.environment.value}")
        app.state.started_at = time.time()
        owned = app.state.services is None
        if owned:
            app.state.services = build_services(settings)
        yield
        if owned:
            await app.state.services.aclose()
        logger.info("Consult Assist shutting down...")

    app = FastAPI(
        title=settings.api_title,
        description=settings.api_description,
        version=settings.api_version,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    # Rate limiter
    limiter = Limiter(key_func=get_remote_address)
    transcribe_rate_limit = f"{settings.rate_limit_requests}/{settings.rate_limit_window} seconds"
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Request tracking and Prometheus metrics"""
        start_time = time.time()
        request_id = secrets.token_urlsafe(16)
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            request_count.labels(method=request.method, endpoint=request.url.path, status=500).inc()
            logger.error(f"Request {request_id} failed: {e}")
            return JSONResponse(
                status_code=500,
                content=_error_body(request, "internal_server_error", "An internal error occurred"),
                headers={"X-Request-ID": request_id},
            )

        duration = time.time() - start_time
        request_count.labels(
            method=request.method, endpoint=request.url.path, status=response.status_code
        ).inc()
        request_duration.observe(duration)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time"] = f"{duration:.3f}s"
        return response

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        return _error_response(request, status.HTTP_503_SERVICE_UNAVAILABLE, "configuration_error", str(exc))

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        return _error_response(request, status.HTTP_502_BAD_GATEWAY, "upstream_error", str(exc))

    @app.exception_handler(TranscriptionError)
    async def transcription_error_handler(request: Request, exc: TranscriptionError):
        return _error_response(request, status.HTTP_502_BAD_GATEWAY, "transcription_failed", str(exc))

    @app.exception_handler(RecordGenerationError)
    async def record_error_handler(request: Request, exc: RecordGenerationError):
        return _error_response(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "record_generation_failed", str(exc)
        )

    @app.exception_handler(UnsupportedAudioError)
    async def unsupported_audio_handler(request: Request, exc: UnsupportedAudioError):
        return _error_response(
            request, status.HTTP_422_UNPROCESSABLE_ENTITY, "unsupported_audio_format", str(exc)
        )

    @app.exception_handler(SessionLoggingError)
    async def session_logging_error_handler(request: Request, exc: SessionLoggingError):
        return _error_response(request, status.HTTP_502_BAD_GATEWAY, "session_logging_failed", str(exc))

    @app.exception_handler(ConsultAssistError)
    async def service_error_handler(request: Request, exc: ConsultAssistError):
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "service_error", str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        request_id = getattr(request.state, "request_id", "unknown")
        body = _error_body(request, "validation_error", "Request validation failed")
        body["details"] = {"errors": json.loads(json.dumps(exc.errors(), default=str))}
        logger.warning(f"Request {request_id} failed validation")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=body,
            headers={"X-Request-ID": request_id},
        )

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        """Custom rate limit error handler"""
        response = _error_response(
            request, status.HTTP_429_TOO_MANY_REQUESTS, "rate_limit_exceeded",
            "Too many requests. Please try again later.",
        )
        response.headers["Retry-After"] = str(settings.rate_limit_window)
        return response

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors"""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(f"Unhandled error in request {request_id}: {exc}")
        logger.error(f"Stacktrace: {traceback.format_exc()}")
        return _error_response(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_server_error", "An unexpected error occurred"
        )

    @app.get("/health", response_model=HealthCheckResponse)
    async def health_check(request: Request, services: Services = Depends(get_services)):
        """Service health check"""
        catalog = services.matcher.catalog
        llm_configured = bool(resolve_llm_config(settings, services.preferences).api_key)
        speech_configured = bool(services.transcription.api_key())
        return HealthCheckResponse(
            status="healthy" if llm_configured else "degraded",
            timestamp=datetime.now(timezone.utc),
            version=settings.api_version,
            uptime_seconds=int(time.time() - request.app.state.started_at),
            details={
                "llm_configured": llm_configured,
                "speech_configured": speech_configured,
                "speech_test_mode": is_test_mode_enabled(settings, services.preferences),
                "session_logging": services.session_logger is not None,
                "catalog": {
                    "diagnoses": len(catalog.diagnoses),
                    "medicines": len(catalog.medicines),
                    "items": len(catalog.items),
                },
            },
        )

    @app.get(settings.metrics_path)
    async def metrics():
        """Prometheus metrics"""
        if not settings.enable_metrics:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post(
        "/v1/transcribe",
        response_model=TranscriptionResponse,
        responses={422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 502: {"model": ErrorResponse},
                   503: {"model": ErrorResponse}},
    )
    @limiter.limit(transcribe_rate_limit)
    async def transcribe_audio(
        request: Request,
        audio_file: UploadFile = File(..., alias="file"),
        allow_fallback: bool = Form(True),
        services: Services = Depends(get_services),
    ):
        """Transcribe one recorded consultation (primary recognizer, then fallback)."""
        start = time.time()
        audio_data = await audio_file.read()
        if not audio_data:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Audio file is empty")

        payload = AudioPayload(data=audio_data, content_type=audio_file.content_type or "audio/wav")
        with transcription_duration.time():
            text = await services.transcription.transcribe(payload, allow_fallback=allow_fallback)

        return TranscriptionResponse(
            request_id=request.state.request_id,
            text=text,
            test_mode=is_test_mode_enabled(settings, services.preferences),
            processing_time_ms=int((time.time() - start) * 1000),
        )

    @app.put("/v1/settings/test-mode")
    async def update_test_mode(body: TestModeRequest, services: Services = Depends(get_services)):
        set_test_mode(services.preferences, body.enabled)
        return {"enabled": is_test_mode_enabled(settings, services.preferences)}

    @app.post("/v1/chat", response_model=ChatResponse)
    async def chat(body: ChatRequest, services: Services = Depends(get_services)):
        start = time.time()
        content = await services.llm.chat([m.to_message() for m in body.messages])
        if services.session_logger is not None:
            await services.session_logger.record_metric(PerformanceMetric(
                metric_type=MetricType.LLM_LATENCY,
                metric_value=(time.time() - start) * 1000,
                unit="ms",
            ))
        return ChatResponse(content=content)

    @app.post("/v1/chat/stream")
    async def chat_stream(request: Request, body: ChatRequest, services: Services = Depends(get_services)):
        """Stream chat fragments as server-sent events."""
        # Surface a missing key as 503 before the stream starts
        services.llm.resolve_config()
        messages = [m.to_message() for m in body.messages]

        async def event_generator() -> AsyncGenerator[str, None]:
            try:
                async for fragment in services.llm.chat_stream(messages):
                    yield f"data: {json.dumps({'content': fragment}, ensure_ascii=False)}\n\n"
                yield "data: [DONE]\n\n"
            except ConsultAssistError as e:
                logger.error(f"Chat stream {request.state.request_id} failed: {e}")
                yield f"event: error\ndata: {json.dumps({'message': str(e)}, ensure_ascii=False)}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/v1/match/{kind}", response_model=MatchResponse)
    async def match_entity(kind: CatalogKind, body: MatchRequest, services: Services = Depends(get_services)):
        result = services.matcher.find(kind, body.query)
        if result is None:
            return MatchResponse(query=body.query, matched=False)
        return MatchResponse(
            query=body.query,
            matched=True,
            score=result.score,
            method=result.method.value,
            entry=result.entry.model_dump(),
        )

    @app.get("/v1/catalog/diagnoses/{code}/related", response_model=RelatedDiagnosesResponse)
    async def related_diagnoses(code: str, services: Services = Depends(get_services)):
        return RelatedDiagnosesResponse(code=code, diagnoses=services.matcher.get_related(code))

    @app.post("/v1/fact-check/diagnosis", response_model=FactCheckResult)
    async def fact_check_diagnosis(body: DiagnosisCheckContext, services: Services = Depends(get_services)):
        return await services.fact_checker.check_diagnosis(body)

    @app.post("/v1/fact-check/medicine", response_model=FactCheckResult)
    async def fact_check_medicine(body: MedicineCheckContext, services: Services = Depends(get_services)):
        return await services.fact_checker.check_medicine(body)

    @app.post("/v1/fact-check/examination", response_model=FactCheckResult)
    async def fact_check_examination(body: ExaminationCheckContext, services: Services = Depends(get_services)):
        return await services.fact_checker.check_examination(body)

    @app.post("/v1/fact-check/medical-record", response_model=FactCheckResult)
    async def fact_check_medical_record(
        body: MedicalRecordCheckContext, services: Services = Depends(get_services)
    ):
        return await services.fact_checker.check_medical_record(body)

    @app.post("/v1/records", response_model=MedicalRecordDraft)
    async def generate_record(body: RecordRequest, services: Services = Depends(get_services)):
        return await services.records.generate(body.transcript)

    @app.post("/v1/risk", response_model=List[RiskItem])
    async def analyze_risk(body: PatientRiskContext, services: Services = Depends(get_services)):
        return await services.risk.analyze(body)

    @app.post("/v1/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
    async def start_session(body: StartSessionRequest, session_logger: SessionLogger = Depends(get_session_logger)):
        session_id = await session_logger.start_session(body.session_type, body.patient_id, body.patient_name)
        return SessionResponse(session_id=session_id)

    @app.post("/v1/sessions/{session_id}/end", status_code=status.HTTP_204_NO_CONTENT)
    async def end_session(
        session_id: str, body: EndSessionRequest, session_logger: SessionLogger = Depends(get_session_logger)
    ):
        await session_logger.end_session(session_id, body.status)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/v1/sessions/{session_id}/messages", response_model=SavedRecordResponse)
    async def save_message(
        session_id: str, body: MessageRecord, session_logger: SessionLogger = Depends(get_session_logger)
    ):
        record_id = await session_logger.save_message(body.model_copy(update={"session_id": session_id}))
        return SavedRecordResponse(id=record_id)

    @app.post("/v1/sessions/{session_id}/feedback", response_model=SavedRecordResponse)
    async def save_feedback(
        session_id: str, body: FeedbackRecord, session_logger: SessionLogger = Depends(get_session_logger)
    ):
        record_id = await session_logger.save_feedback(body.model_copy(update={"session_id": session_id}))
        return SavedRecordResponse(id=record_id)

    @app.post("/v1/sessions/{session_id}/recommendations", response_model=SavedRecordResponse)
    async def save_recommendation(
        session_id: str, body: RecommendationRecord, session_logger: SessionLogger = Depends(get_session_logger)
    ):
        record_id = await session_logger.save_recommendation(body.model_copy(update={"session_id": session_id}))
        return SavedRecordResponse(id=record_id)

    @app.post("/v1/telemetry/operations", status_code=status.HTTP_202_ACCEPTED)
    async def log_operation(body: OperationLog, session_logger: SessionLogger = Depends(get_session_logger)):
        """Fire-and-forget: store failures are logged, never returned."""
        await session_logger.log_operation(body)
        return {"accepted": True}

    @app.post("/v1/telemetry/metrics", status_code=status.HTTP_202_ACCEPTED)
    async def record_metric(body: PerformanceMetric, session_logger: SessionLogger = Depends(get_session_logger)):
        await session_logger.record_metric(body)
        return {"accepted": True}

    @app.get("/v1/statistics/{kind}")
    async def statistics(
        kind: StatisticsKind,
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
        session_logger: SessionLogger = Depends(get_session_logger),
    ):
        """Aggregates computed by the session store over an optional time range."""
        query = {
            StatisticsKind.SESSIONS: session_logger.get_session_statistics,
            StatisticsKind.FEEDBACK: session_logger.get_feedback_statistics,
            StatisticsKind.PERFORMANCE: session_logger.get_performance_statistics,
        }[kind]
        return await query(start_date, end_date)

    @app.get("/v1/export")
    async def export_data(
        export_format: ExportFormat = Query(ExportFormat.JSON, alias="format"),
        start_date: Optional[int] = None,
        end_date: Optional[int] = None,
        session_logger: SessionLogger = Depends(get_session_logger),
    ):
        data = await session_logger.export_data(export_format, start_date, end_date)
        media_type = "text/csv" if export_format == ExportFormat.CSV else "application/json"
        return Response(content=data, media_type=media_type)

    return app


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "consult_assist.main:create_app",
        factory=True,
        host=_settings.api_host,
        port=_settings.api_port,
        reload=_settings.environment.value == "development",
    )
