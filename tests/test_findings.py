"""Tests for the inference response normalization adapter."""

from __future__ import annotations

import pytest

from video_evidence_mcp.errors import InferenceFailure
from video_evidence_mcp.findings import DEFAULT_SUMMARY, normalize_finding, parse_findings


class TestNormalizeFinding:
    def test_canonical_fields(self):
        event = normalize_finding(
            {"from": "00:00:10", "to": "00:00:12", "summary": "Door opens", "confidence": 0.7}
        )
        assert (event.from_time, event.to_time, event.summary, event.confidence) == (
            10, 12, "Door opens", 0.7,
        )

    @pytest.mark.parametrize("raw", [
        {"start": "1:00", "end": "1:05", "description": "x"},
        {"timestamp": 60, "end_time": "01:05", "text": "x"},
        {"start_time": "00:01:00", "to_time": 65, "label": "x"},
        {"fromTimestamp": 60, "toTimestamp": 65, "summary": "x"},
    ])
    def test_synonymous_field_names(self, raw):
        event = normalize_finding(raw)
        assert (event.from_time, event.to_time, event.summary) == (60, 65, "x")

    def test_start_takes_priority_over_from(self):
        event = normalize_finding({"start": 5, "from": 9, "end": 10})
        assert event.from_time == 5

    def test_defaults_when_fields_missing(self):
        event = normalize_finding({}, fallback_confidence=0.95)
        assert event.from_time == 0
        assert event.to_time == 0
        assert event.summary == DEFAULT_SUMMARY
        assert event.confidence == 0.95

    def test_missing_end_collapses_to_start(self):
        assert normalize_finding({"from": "00:30"}).to_time == 30

    def test_inverted_range_is_clamped(self):
        event = normalize_finding({"from": 20, "to": 10})
        assert event.from_time == 20
        assert event.to_time == 20

    def test_negative_times_clamped_to_zero(self):
        event = normalize_finding({"from": -5, "to": -1})
        assert event.from_time == 0
        assert event.to_time == 0

    @pytest.mark.parametrize("raw_conf, expected", [
        ("0.4", 0.4), (1.7, 1.0), (-0.2, 0.0), ("high", 1.0), (None, 1.0), (True, 1.0), (10**400, 1.0),
    ])
    def test_confidence_coercion(self, raw_conf, expected):
        event = normalize_finding({"from": 1, "confidence": raw_conf})
        assert event.confidence == expected

    def test_blank_summary_gets_default(self):
        assert normalize_finding({"from": 1, "summary": "   "}).summary == DEFAULT_SUMMARY

    def test_non_mapping_returns_none(self):
        assert normalize_finding("00:10") is None


class TestParseFindings:
    def test_timestamps_key(self):
        findings = parse_findings({
            "description": "Overview",
            "timestamps": [{"from": "00:01", "to": "00:02", "summary": "A"}],
        })
        assert findings.summary == "Overview"
        assert len(findings.events) == 1

    def test_findings_key_and_json_text(self):
        findings = parse_findings('{"findings": [{"start": 3, "end": 4}]}')
        assert findings.events[0].from_time == 3

    def test_empty_list_is_well_formed(self):
        assert parse_findings({"timestamps": []}).events == ()

    def test_malformed_items_skipped(self):
        findings = parse_findings({"events": ["junk", {"from": 1}, 7]})
        assert len(findings.events) == 1

    def test_oversized_numbers_do_not_sink_the_batch(self):
        huge = "1" + "0" * 400
        text = (
            '{"timestamps": ['
            f'{{"from": "00:01", "summary": "A", "confidence": {huge}}},'
            f'{{"from": {huge}, "summary": "B"}}]}}'
        )
        findings = parse_findings(text, fallback_confidence=0.5)
        assert [(e.from_time, e.summary, e.confidence) for e in findings.events] == [
            (1, "A", 0.5), (0, "B", 0.5),
        ]

    @pytest.mark.parametrize("response", [
        "not json",
        ["a", "list"],
        {"answer": "no list here"},
        {"timestamps": "00:10"},
        None,
    ])
    def test_unparseable_responses_raise(self, response):
        with pytest.raises(InferenceFailure):
            parse_findings(response)
