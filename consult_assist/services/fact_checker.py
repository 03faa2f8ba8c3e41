"""
Fact-Check Service
Advisory LLM plausibility review of diagnoses, medicines, examinations and
whole records. Failures never reach the caller: they degrade to an empty
result.
"""

import json
import re
import time
from typing import Any, Callable, Dict, List, Optional

from consult_assist.core.errors import ResponseFormatError
from consult_assist.core.logging import audit_logger, get_logger
from consult_assist.models.chat import ChatMessage
from consult_assist.models.fact_check import (
    DiagnosisCheckContext,
    ExaminationCheckContext,
    FactCheckIssue,
    FactCheckResult,
    FactCheckType,
    MedicalRecordCheckContext,
    MedicineCheckContext,
    Severity,
)
from consult_assist.services import prompts
from consult_assist.services.llm_service import LLMService

logger = get_logger(__name__)

ISSUE_ID_PREFIX = {
    FactCheckType.DIAGNOSIS: "diagnosis",
    FactCheckType.MEDICINE: "medicine",
    FactCheckType.EXAMINATION: "examination",
    FactCheckType.MEDICAL_RECORD: "record",
}

_FENCE = re.compile(r"```[a-zA-Z]*")


def now_ms() -> int:
    return int(time.time() * 1000)


def strip_code_fences(raw: str) -> str:
    return _FENCE.sub("", raw).strip()


def extract_json_span(text: str, open_char: str = "{", close_char: str = "}") -> str:
    """
    Return the first balanced top-level ``open_char``..``close_char`` span.
    Brackets inside JSON string literals are ignored.
    """
    start = text.find(open_char)
    if start < 0:
        raise ResponseFormatError(f"No JSON value starting with '{open_char}' in model output")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    raise ResponseFormatError("Unbalanced JSON value in model output")


def extract_json_object(raw: str) -> Dict[str, Any]:
    span = extract_json_span(strip_code_fences(raw))
    try:
        data = json.loads(span)
    except ValueError as e:
        raise ResponseFormatError(f"Model output is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ResponseFormatError("Model output is not a JSON object")
    return data


def _severity(value: Any) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        return Severity.MEDIUM


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def normalize_fact_check_response(
    raw: str, check_type: FactCheckType, checked_at: Optional[int] = None
) -> FactCheckResult:
    """
    Decode one model reply into a validated result.

    Entries without a non-empty ``issue`` string are dropped, and
    ``has_issues`` is only true when the model said so and at least one
    entry survived. Raises ResponseFormatError when no JSON object can be
    decoded at all.
    """
    checked_at = checked_at if checked_at is not None else now_ms()
    data = extract_json_object(raw)

    claimed = data.get("hasIssues")
    raw_issues = data.get("issues")
    if not isinstance(claimed, bool) or not isinstance(raw_issues, list):
        return FactCheckResult(has_issues=False, issues=[], checked_at=checked_at)

    prefix = ISSUE_ID_PREFIX[check_type]
    issues: List[FactCheckIssue] = []
    for entry in raw_issues:
        if not isinstance(entry, dict):
            continue
        description = entry.get("issue")
        if not isinstance(description, str) or not description.strip():
            continue
        content = entry.get("content")
        issues.append(FactCheckIssue(
            id=f"{prefix}-{checked_at}-{len(issues)}",
            type=check_type,
            severity=_severity(entry.get("severity")),
            content=content if isinstance(content, str) else "",
            issue=description,
            suggestion=_optional_text(entry.get("suggestion")),
        ))

    has_issues = claimed and len(issues) > 0
    return FactCheckResult(
        has_issues=has_issues,
        issues=issues if has_issues else [],
        checked_at=checked_at,
    )


class FactCheckService:
    """Runs one advisory check per clinical artifact"""

    def __init__(self, llm_service: LLMService, clock: Callable[[], int] = now_ms):
        self.llm_service = llm_service
        self.clock = clock

    async def _check(self, check_type: FactCheckType, system_prompt: str, user_prompt: str) -> FactCheckResult:
        checked_at = self.clock()
        try:
            raw = await self.llm_service.chat([
                ChatMessage.system(system_prompt),
                ChatMessage.user(user_prompt),
            ])
            result = normalize_fact_check_response(raw, check_type, checked_at)
        except Exception as e:
            logger.error(f"{check_type.value} fact check failed: {e}", error_type=type(e).__name__)
            audit_logger.log_error(error_type=f"fact_check.{check_type.value}", error_message=str(e))
            return FactCheckResult(has_issues=False, issues=[], checked_at=checked_at)

        audit_logger.log_fact_check(
            check_type=check_type.value,
            has_issues=result.has_issues,
            issue_count=len(result.issues),
        )
        return result

    async def check_diagnosis(self, context: DiagnosisCheckContext) -> FactCheckResult:
        return await self._check(
            FactCheckType.DIAGNOSIS,
            prompts.DIAGNOSIS_CHECK_SYSTEM,
            prompts.build_diagnosis_check_prompt(context),
        )

    async def check_medicine(self, context: MedicineCheckContext) -> FactCheckResult:
        return await self._check(
            FactCheckType.MEDICINE,
            prompts.MEDICINE_CHECK_SYSTEM,
            prompts.build_medicine_check_prompt(context),
        )

    async def check_examination(self, context: ExaminationCheckContext) -> FactCheckResult:
        return await self._check(
            FactCheckType.EXAMINATION,
            prompts.EXAMINATION_CHECK_SYSTEM,
            prompts.build_examination_check_prompt(context),
        )

    async def check_medical_record(self, context: MedicalRecordCheckContext) -> FactCheckResult:
        return await self._check(
            FactCheckType.MEDICAL_RECORD,
            prompts.MEDICAL_RECORD_CHECK_SYSTEM,
            prompts.build_medical_record_check_prompt(context),
        )
