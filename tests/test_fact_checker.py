"""Tests for fact-check normalization and the fact-check service."""

import json

import pytest

from consult_assist.core.errors import ResponseFormatError, UpstreamStatusError
from consult_assist.models.chat import ChatRole
from consult_assist.models.fact_check import (
    DiagnosisCheckContext,
    FactCheckType,
    MedicalRecordCheckContext,
    MedicineCheckContext,
    Severity,
)
from consult_assist.services.fact_checker import (
    FactCheckService,
    extract_json_object,
    normalize_fact_check_response,
    strip_code_fences,
)

CHECKED_AT = 1700000000000


class TestExtractJson:
    def test_strips_fences(self):
        assert strip_code_fences("```json\n{}\n```") == "{}"

    def test_first_top_level_object(self):
        raw = 'prefix {"a": {"b": 1}} trailing {"c": 2}'
        assert extract_json_object(raw) == {"a": {"b": 1}}

    def test_braces_inside_strings(self):
        raw = '{"issue": "剂量 } 过大 {", "ok": true}'
        assert extract_json_object(raw) == {"issue": "剂量 } 过大 {", "ok": True}

    @pytest.mark.parametrize("raw", ["no json here", '{"unterminated": 1', "{not: json}"])
    def test_unreadable_output(self, raw):
        with pytest.raises(ResponseFormatError):
            extract_json_object(raw)


class TestNormalize:
    def test_claimed_issues_without_entries(self):
        raw = "Here's the result:\n```json\n{\"hasIssues\": true, \"issues\": []}\n```"

        result = normalize_fact_check_response(raw, FactCheckType.DIAGNOSIS, CHECKED_AT)

        assert result.has_issues is False
        assert result.issues == []
        assert result.checked_at == CHECKED_AT

    def test_entries_without_issue_text_are_dropped(self):
        raw = json.dumps({
            "hasIssues": True,
            "issues": [
                {"severity": "high", "content": "头孢", "issue": ""},
                {"content": "阿莫西林 3g", "issue": "剂量过大", "suggestion": "0.5g tid"},
            ],
        }, ensure_ascii=False)

        result = normalize_fact_check_response(raw, FactCheckType.MEDICINE, CHECKED_AT)

        assert result.has_issues is True
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.issue == "剂量过大"
        assert issue.severity == Severity.MEDIUM
        assert issue.suggestion == "0.5g tid"
        assert issue.type == FactCheckType.MEDICINE
        assert issue.id == f"medicine-{CHECKED_AT}-0"

    @pytest.mark.parametrize("payload", [
        {"hasIssues": "yes", "issues": [{"issue": "x"}]},
        {"hasIssues": True, "issues": {"issue": "x"}},
        {"issues": [{"issue": "x"}]},
    ])
    def test_invalid_structure_means_no_issues(self, payload):
        result = normalize_fact_check_response(json.dumps(payload), FactCheckType.EXAMINATION, CHECKED_AT)
        assert result.has_issues is False
        assert result.issues == []

    def test_false_claim_with_entries(self):
        raw = json.dumps({"hasIssues": False, "issues": [{"issue": "x"}]})
        result = normalize_fact_check_response(raw, FactCheckType.DIAGNOSIS, CHECKED_AT)
        assert result.has_issues is False
        assert result.issues == []

    def test_ids_and_unknown_severity(self):
        raw = json.dumps({
            "hasIssues": True,
            "issues": ["bogus", {"issue": "a", "severity": "critical"}, {"issue": "b", "severity": "low"}],
        })

        result = normalize_fact_check_response(raw, FactCheckType.MEDICAL_RECORD, CHECKED_AT)

        assert [issue.id for issue in result.issues] == [f"record-{CHECKED_AT}-0", f"record-{CHECKED_AT}-1"]
        assert [issue.severity for issue in result.issues] == [Severity.MEDIUM, Severity.LOW]


class TestFactCheckService:
    @pytest.mark.asyncio
    async def test_check_diagnosis_prompt(self, scripted_llm):
        llm = scripted_llm('{"hasIssues": false, "issues": []}')
        service = FactCheckService(llm, clock=lambda: CHECKED_AT)

        result = await service.check_diagnosis(DiagnosisCheckContext(
            diagnosis="急性咽炎",
            chief_complaint="咽痛2天",
            symptoms=["咽痛", "发热"],
        ))

        assert result.has_issues is False
        system, user = llm.calls[0]
        assert system.role == ChatRole.SYSTEM
        assert user.role == ChatRole.USER
        assert "诊断：急性咽炎" in user.content
        assert "主诉：咽痛2天" in user.content
        assert "症状：咽痛、发热" in user.content
        assert "现病史" not in user.content

    @pytest.mark.asyncio
    async def test_check_medicine_issue(self, scripted_llm):
        llm = scripted_llm('```json\n{"hasIssues": true, "issues": [{"severity": "high", "issue": "剂量过大"}]}\n```')
        service = FactCheckService(llm, clock=lambda: CHECKED_AT)

        result = await service.check_medicine(MedicineCheckContext(medicine_name="布洛芬", dosage="2g"))

        assert result.has_issues is True
        assert result.issues[0].severity == Severity.HIGH
        assert result.issues[0].id == f"medicine-{CHECKED_AT}-0"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [UpstreamStatusError(500, "down"), "抱歉，我无法回答", RuntimeError("boom")])
    async def test_failures_yield_empty_result(self, scripted_llm, reply):
        service = FactCheckService(scripted_llm(reply), clock=lambda: CHECKED_AT)

        result = await service.check_medical_record(MedicalRecordCheckContext(diagnoses=["急性咽炎"]))

        assert result.has_issues is False
        assert result.issues == []
        assert result.checked_at == CHECKED_AT
