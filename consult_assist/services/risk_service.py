"""
Patient risk analysis (advisory)
"""

import json
from typing import List

from pydantic import ValidationError

from consult_assist.core.errors import ResponseFormatError
from consult_assist.core.logging import audit_logger, get_logger
from consult_assist.models.chat import ChatMessage
from consult_assist.models.fact_check import PatientRiskContext, RiskItem
from consult_assist.services import prompts
from consult_assist.services.fact_checker import extract_json_span, strip_code_fences
from consult_assist.services.llm_service import LLMService

logger = get_logger(__name__)


def parse_risk_items(raw: str) -> List[RiskItem]:
    """Decode a JSON array of risk items; invalid entries are dropped."""
    span = extract_json_span(strip_code_fences(raw), "[", "]")
    try:
        data = json.loads(span)
    except ValueError as e:
        raise ResponseFormatError(f"Risk analysis output is not valid JSON: {e}") from e

    items = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(RiskItem.model_validate(entry))
        except ValidationError as e:
            logger.debug(f"Dropping invalid risk item: {e.error_count()} errors", entry=entry)
    return sorted(items, key=lambda item: item.level)


class RiskAnalysisService:
    def __init__(self, llm_service: LLMService):
        self.llm_service = llm_service

    async def analyze(self, context: PatientRiskContext) -> List[RiskItem]:
        try:
            raw = await self.llm_service.chat([
                ChatMessage.system(prompts.RISK_ANALYSIS_SYSTEM),
                ChatMessage.user(prompts.build_risk_analysis_prompt(context)),
            ])
            items = parse_risk_items(raw)
        except Exception as e:
            logger.error(f"Risk analysis failed: {e}", error_type=type(e).__name__)
            audit_logger.log_error(error_type="risk_analysis", error_message=str(e))
            return []

        logger.info("Risk analysis completed", risk_count=len(items))
        return items
