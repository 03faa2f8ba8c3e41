"""Tests for catalog entity matching."""

import pytest

from consult_assist.models.catalog import CatalogKind, DiagnosisEntry, MedicineEntry
from consult_assist.services import entity_matcher
from consult_assist.services.entity_matcher import (
    MatchMethod,
    calculate_score,
    find_best_match,
    get_related,
    match,
)


class TestCalculateScore:
    def test_target_contains_query(self):
        assert calculate_score("炎", "咽炎") == 0.9

    def test_query_contains_target(self):
        assert calculate_score("咽炎急性", "咽炎") == 0.8

    def test_keyword_contained_in_query(self):
        assert calculate_score("病人说嗓子疼", "急性咽喉部感染", ["嗓子疼"]) == 0.85

    def test_containment_outranks_keywords(self):
        assert calculate_score("咽炎", "急性咽炎", ["咽炎"]) == 0.9

    def test_character_jaccard_fallback(self):
        # {a, b, c} vs {b, c, d}: 2 shared of 4 distinct
        assert calculate_score("abc", "bcd") == pytest.approx(0.5)

    def test_case_insensitive(self):
        assert calculate_score("crp", "CRP") == 0.9

    def test_empty_inputs_score_zero(self):
        assert calculate_score("", "咽炎") == 0.0
        assert calculate_score("咽炎", "") == 0.0


class TestExactMatch:
    @pytest.mark.parametrize("query", ["急性咽炎", "  急性咽炎  ", "j02.900", "J02.900"])
    def test_exact_name_or_code(self, catalog, query):
        result = find_best_match(query, catalog.diagnoses)
        assert result.method == MatchMethod.EXACT
        assert result.score == 1.0
        assert result.entry.id == "d3"

    def test_exact_match_skips_scoring(self, catalog, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("fuzzy scoring should not run")

        monkeypatch.setattr(entity_matcher, "calculate_score", fail)
        assert match("原发性高血压", catalog.diagnoses).id == "d4"

    @pytest.mark.parametrize("query", [None, "", "   "])
    def test_empty_query_is_no_match(self, catalog, query):
        assert match(query, catalog.diagnoses) is None
        assert match(query, catalog.medicines) is None


class TestCodePrefix:
    def test_shortest_code_wins(self, catalog):
        result = find_best_match("J0", catalog.diagnoses)
        assert result.method == MatchMethod.CODE_PREFIX
        assert result.entry.code == "J06"

    def test_query_equal_to_shorter_code_is_exact(self, catalog):
        result = find_best_match("J06", catalog.diagnoses)
        assert result.entry.code == "J06"
        assert result.method == MatchMethod.EXACT

    def test_prefix_picks_shorter_code_deterministically(self):
        entries = [
            DiagnosisEntry(id="b", code="J06.9", name="乙"),
            DiagnosisEntry(id="a", code="J06", name="甲"),
        ]
        result = find_best_match("j0", entries)
        assert result.entry.code == "J06"
        assert result.score == pytest.approx(2 / 3)


class TestFuzzyThreshold:
    def _entries(self):
        return [DiagnosisEntry(id="x", code="Z99", name="目标")]

    def test_score_at_threshold_is_no_match(self, monkeypatch):
        monkeypatch.setattr(entity_matcher, "calculate_score", lambda q, t, k=None: 0.3)
        assert match("其他", self._entries()) is None

    def test_score_just_above_threshold_matches(self, monkeypatch):
        monkeypatch.setattr(entity_matcher, "calculate_score", lambda q, t, k=None: 0.31)
        result = find_best_match("其他", self._entries())
        assert result.entry.id == "x"
        assert result.method == MatchMethod.FUZZY
        assert result.score == 0.31

    def test_first_best_entry_wins_ties(self):
        entries = [
            DiagnosisEntry(id="first", code="A01", name="咽炎甲"),
            DiagnosisEntry(id="second", code="A02", name="咽炎乙"),
        ]
        assert match("咽炎", entries).id == "first"


class TestMedicineMatching:
    def test_generic_name_containment(self):
        entries = [
            MedicineEntry(id="m", name="阿莫西林胶囚", generic_name="阿莫西林", spec="0.25g*6片/盒"),
        ]
        result = find_best_match("阿莫西林", entries)
        assert result.entry.id == "m"
        assert result.score == 0.9
        assert result.method == MatchMethod.FUZZY

    def test_keyword_alias(self, matcher):
        result = matcher.find(CatalogKind.MEDICINE, "开了希舒美")
        assert result.entry.id == "m2"
        assert result.score == 0.85

    def test_unrelated_query_is_no_match(self, matcher):
        assert matcher.match_medicine("胰岛素注射液") is None


class TestRelatedDiagnoses:
    def test_category_prefix(self, catalog):
        related = get_related("J06.900", catalog.diagnoses)
        assert {entry.id for entry in related} == {"d1", "d2"}

    def test_lowercase_code(self, matcher):
        assert {entry.id for entry in matcher.get_related("j06")} == {"d1", "d2"}

    def test_empty_code(self, matcher):
        assert matcher.get_related("") == []


class TestEntityMatcher:
    def test_examination_lookup(self, matcher):
        assert matcher.match_examination("血常规").id == "e1"

    def test_diagnosis_keyword(self, matcher):
        assert matcher.match_diagnosis("患者感冒三天").id == "d1"
