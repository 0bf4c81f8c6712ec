"""
Tests for parser.py module.

Tests:
- extract_json and clean_code_response
- StructuredResponseParser totality and fallbacks
- check_structure_quality scoring
"""

import json

import pytest

from matura.artifacts import ARTIFACT_TYPES, ArtifactModel, GeneratedCode, Insight, ReleaseInfo, TalkReply, UIStyleChoice, UXDesign
from matura.parser import (
    StructuredResponseParser,
    check_structure_quality,
    clean_code_response,
    extract_json,
)
from matura.state import Phase

from conftest import CODE_HTML, INSIGHT, RELEASE, UI_STYLE, UX_DESIGN, as_json


# =============================================================================
# Test extract_json
# =============================================================================

class TestExtractJson:
    """Tests for extract_json."""

    def test_bare_json(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert extract_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_after_prose(self):
        assert extract_json('はい、こちらです。\n{"a": 1}\n以上です。') == {"a": 1}

    def test_no_json_raises(self):
        with pytest.raises(ValueError, match="No JSON"):
            extract_json("not json")


class TestCleanCodeResponse:
    """Tests for clean_code_response."""

    def test_strips_fences(self):
        assert clean_code_response(f"```html\n{CODE_HTML}\n```") == CODE_HTML

    def test_extracts_fenced_block_from_prose(self):
        text = f"以下がコードです。\n```html\n{CODE_HTML}\n```\nご確認ください。"
        assert clean_code_response(text) == CODE_HTML

    def test_drops_text_after_closing_html(self):
        assert clean_code_response(CODE_HTML + "\n\nこのコードは…") == CODE_HTML


# =============================================================================
# Test StructuredResponseParser
# =============================================================================

VALID_RESPONSES = {
    Phase.INSIGHT_REFINE: as_json(INSIGHT),
    Phase.SKETCH_VIEW: as_json(UI_STYLE),
    Phase.UX_BUILD: as_json(UX_DESIGN),
    Phase.RELEASE_BOARD: as_json(RELEASE),
}

GARBAGE = [
    "",
    "   ",
    "not json",
    '{"vision": "truncated',
    "[1, 2, 3]",
    "null",
    "42",
    '{"unexpected": true}',
    "```json\n{}\n```",
    "{" * 500,
]


class TestStructuredResponseParser:
    """Tests for StructuredResponseParser."""

    @pytest.fixture
    def parser(self):
        return StructuredResponseParser()

    @pytest.mark.parametrize("phase", list(VALID_RESPONSES))
    def test_valid_json_parses(self, parser, phase):
        outcome = parser.parse_outcome(phase, VALID_RESPONSES[phase])

        assert not outcome.used_fallback
        assert isinstance(outcome.artifact, ARTIFACT_TYPES[phase])
        assert outcome.artifact != ARTIFACT_TYPES[phase].fallback()

    @pytest.mark.parametrize("phase", list(Phase))
    @pytest.mark.parametrize("text", GARBAGE)
    def test_parse_is_total(self, parser, phase, text):
        """Any text yields a complete artifact of the phase's type."""
        artifact = parser.parse(phase, text)
        assert isinstance(artifact, ARTIFACT_TYPES[phase])

    def test_not_json_insight_falls_back(self, parser):
        outcome = parser.parse_outcome(Phase.INSIGHT_REFINE, "not json")

        assert outcome.used_fallback
        assert outcome.artifact == Insight.fallback()
        assert outcome.error

    def test_fallback_is_deterministic(self, parser):
        first = parser.parse(Phase.UX_BUILD, "garbage")
        second = parser.parse(Phase.UX_BUILD, "other garbage")
        assert first == second == UXDesign.fallback()
        assert len(first.components) == 4

    def test_every_phase_artifact_has_a_fallback(self):
        for phase, artifact_type in ARTIFACT_TYPES.items():
            assert isinstance(artifact_type.fallback(), artifact_type), phase

    def test_base_artifact_has_no_fallback(self):
        with pytest.raises(NotImplementedError):
            ArtifactModel.fallback()

    def test_missing_required_field_falls_back(self, parser):
        data = dict(INSIGHT)
        del data["motivation"]
        outcome = parser.parse_outcome(Phase.INSIGHT_REFINE, json.dumps(data))
        assert outcome.used_fallback

    def test_blank_required_field_falls_back(self, parser):
        data = dict(INSIGHT, vision="   ")
        assert parser.parse_outcome(Phase.INSIGHT_REFINE, json.dumps(data)).used_fallback

    def test_empty_feature_list_falls_back(self, parser):
        data = dict(INSIGHT, features=[])
        assert parser.parse_outcome(Phase.INSIGHT_REFINE, json.dumps(data)).used_fallback

    def test_no_hybrid_artifacts(self, parser):
        """A partly valid object never leaks into the artifact."""
        data = {"vision": "本物のビジョン", "target": "本物のターゲット"}
        artifact = parser.parse(Phase.INSIGHT_REFINE, json.dumps(data))
        assert artifact == Insight.fallback()

    def test_ux_accepts_camel_case(self, parser):
        artifact = parser.parse(Phase.UX_BUILD, as_json(UX_DESIGN))
        assert artifact.color_scheme == "ブルー系ライトテーマ"

    def test_ui_style_bad_spacing_falls_back(self, parser):
        data = dict(UI_STYLE, spacing="huge")
        assert parser.parse(Phase.SKETCH_VIEW, json.dumps(data)) == UIStyleChoice.fallback()

    def test_free_talk_uses_raw_text(self, parser):
        artifact = parser.parse(Phase.FREE_TALK, "  素敵なアイデアですね！  ")
        assert artifact == TalkReply(reply="素敵なアイデアですね！")

    def test_code_is_cleaned_with_metadata(self, parser):
        outcome = parser.parse_outcome(
            Phase.CODE_PLAYGROUND,
            f"```html\n{CODE_HTML}\n```",
            code_metadata={"pattern_id": "medical-appointment"},
        )

        assert not outcome.used_fallback
        assert outcome.artifact.code == CODE_HTML
        assert outcome.artifact.metadata["language"] == "html"
        assert outcome.artifact.metadata["line_count"] == 4
        assert outcome.artifact.metadata["pattern_id"] == "medical-appointment"

    def test_empty_code_falls_back(self, parser):
        outcome = parser.parse_outcome(Phase.CODE_PLAYGROUND, "```html\n```")
        assert outcome.used_fallback
        assert outcome.artifact == GeneratedCode.fallback()

    def test_release_fallback(self, parser):
        assert parser.parse(Phase.RELEASE_BOARD, "{}") == ReleaseInfo.fallback()


# =============================================================================
# Test check_structure_quality
# =============================================================================

class TestCheckStructureQuality:
    """Tests for check_structure_quality."""

    def test_rich_insight_is_ready(self):
        report = check_structure_quality(Insight.model_validate(INSIGHT))

        assert report.consistency == 100
        assert report.clarity == 100
        assert report.ready_for_generation
        assert 0 <= report.quality_score <= 100

    def test_fallback_insight_scores_low(self):
        report = check_structure_quality(Insight.fallback())

        assert report.completeness == 0
        assert report.consistency == 90
        assert report.clarity == 80
        assert report.quality_score == 57
        assert not report.ready_for_generation

    def test_duplicates_and_empty_lists(self):
        report = check_structure_quality({
            "features": ["予約管理", "予約管理"],
            "components": [],
        })
        assert report.consistency == 100 - 15 - 10

    def test_short_fields_hurt_clarity(self):
        report = check_structure_quality({"vision": "アプリ", "target": "人"})
        # no reasoning marker, no digits, two short fields
        assert report.clarity == 60

    def test_threshold_is_configurable(self):
        report = check_structure_quality(Insight.fallback(), ready_threshold=50)
        assert report.ready_for_generation

    def test_no_fields(self):
        report = check_structure_quality({"count": 3})
        assert report.quality_score == 0
        assert not report.ready_for_generation
