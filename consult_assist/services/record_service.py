"""
Record Generation Service
Drafts a structured medical record from a consultation transcript and
resolves its diagnoses, medications and examinations onto the catalog.
"""

import re
from typing import Any, Dict, List, Optional

from consult_assist.core.errors import RecordGenerationError, ResponseFormatError
from consult_assist.core.logging import get_logger
from consult_assist.models.catalog import CatalogKind
from consult_assist.models.chat import ChatMessage
from consult_assist.models.record import (
    DraftDiagnosis,
    DraftExamination,
    DraftMedication,
    MedicalRecordDraft,
)
from consult_assist.services import prompts
from consult_assist.services.entity_matcher import EntityMatcher, MatchResult
from consult_assist.services.fact_checker import extract_json_object
from consult_assist.services.llm_service import LLMService

logger = get_logger(__name__)

COMBINED_TERM_SEPARATORS = re.compile(r"\s*(?:\+|＋|和|及|、)\s*")


def split_combined_terms(name: str) -> List[str]:
    """Split "血常规+C反应蛋白" style names into separate items."""
    parts = [part.strip() for part in COMBINED_TERM_SEPARATORS.split(name or "")]
    parts = [part for part in parts if part]
    return parts or ([name.strip()] if name and name.strip() else [])


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _optional(data: Dict[str, Any], key: str) -> Optional[str]:
    return _text(data, key) or None


def _rows(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [row for row in value if isinstance(row, dict)]


def _match_fields(result: Optional[MatchResult]) -> dict:
    if result is None:
        return {"matched": False, "match_score": None, "catalog_entry": None}
    return {"matched": True, "match_score": result.score, "catalog_entry": result.entry}


class RecordGenerationService:
    def __init__(self, llm_service: LLMService, matcher: EntityMatcher):
        self.llm_service = llm_service
        self.matcher = matcher

    async def generate(self, transcript: str) -> MedicalRecordDraft:
        if not transcript or not transcript.strip():
            raise RecordGenerationError("Transcript is empty")

        raw = await self.llm_service.chat([
            ChatMessage.system(prompts.RECORD_GENERATION_SYSTEM),
            ChatMessage.user(prompts.build_record_generation_prompt(transcript.strip())),
        ])
        try:
            data = extract_json_object(raw)
        except ResponseFormatError as e:
            logger.error(f"Record draft could not be decoded: {e}")
            raise RecordGenerationError(f"Model returned an unreadable record: {e}") from e

        if data.get("error"):
            message = _text(data, "message") or _text(data, "error")
            logger.warning(f"Record generation rejected the transcript: {message}")
            raise RecordGenerationError(message)

        draft = self.build_draft(data)
        logger.info(
            "Record draft generated",
            diagnoses=len(draft.diagnoses),
            medications=len(draft.medications),
            examinations=len(draft.examinations),
        )
        return draft

    def build_draft(self, data: Dict[str, Any]) -> MedicalRecordDraft:
        return MedicalRecordDraft(
            chief_complaint=_text(data, "chiefComplaint"),
            history_of_present_illness=_text(data, "historyOfPresentIllness"),
            past_medical_history=_text(data, "pastMedicalHistory"),
            diagnoses=[d for row in _rows(data, "diagnosisList") for d in self._diagnoses(row)],
            medications=[m for row in _rows(data, "medications") for m in self._medications(row)],
            examinations=[e for row in _rows(data, "examinations") for e in self._examinations(row)],
            treatment_plan=_text(data, "treatmentPlan"),
            health_education=_text(data, "healthEducation"),
        )

    def _diagnoses(self, row: Dict[str, Any]) -> List[DraftDiagnosis]:
        name = _text(row, "name")
        if not name:
            return []
        code = _optional(row, "code")
        result = self.matcher.find(CatalogKind.DIAGNOSIS, name)
        if result is None and code:
            result = self.matcher.find(CatalogKind.DIAGNOSIS, code)
        if result is not None:
            code = result.entry.code or code
        return [DraftDiagnosis(name=name, code=code, **_match_fields(result))]

    def _medications(self, row: Dict[str, Any]) -> List[DraftMedication]:
        medications = []
        for name in split_combined_terms(_text(row, "name")):
            medications.append(DraftMedication(
                name=name,
                spec=_optional(row, "spec"),
                dosage=_optional(row, "dosage"),
                frequency=_optional(row, "frequency"),
                usage=_optional(row, "usage"),
                count=_optional(row, "count"),
                **_match_fields(self.matcher.find(CatalogKind.MEDICINE, name)),
            ))
        return medications

    def _examinations(self, row: Dict[str, Any]) -> List[DraftExamination]:
        return [
            DraftExamination(
                name=name,
                goal=_optional(row, "goal"),
                **_match_fields(self.matcher.find(CatalogKind.EXAMINATION, name)),
            )
            for name in split_combined_terms(_text(row, "name"))
        ]
