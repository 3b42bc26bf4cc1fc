import json
from unittest.mock import Mock

import pytest
from google.api_core import exceptions as google_exceptions

from openpulpit.domain.errors import AnalysisError
from openpulpit.domain.models import ClipCandidate
from openpulpit.infrastructure import gemini_adapter
from openpulpit.infrastructure.gemini_adapter import GeminiAnalyzer, parse_analysis

SERMON = {
    "summary": "A sermon about hope.",
    "viral_clips": [
        {"start_time": 10, "end_time": 40, "reason": "hook"},
        {"start_time": 120, "end_time": 150, "reason": "altar call"},
    ],
    "social_posts": ["Post A", "Post B"],
}


def test_parse_analysis_builds_typed_result():
    result = parse_analysis(json.dumps(SERMON))

    assert result.summary == "A sermon about hope."
    assert result.clips == (
        ClipCandidate(start=10.0, end=40.0, reason="hook"),
        ClipCandidate(start=120.0, end=150.0, reason="altar call"),
    )
    assert result.social_posts == ("Post A", "Post B")


def test_parse_analysis_strips_markdown_fence():
    raw = "```json\n" + json.dumps(SERMON) + "\n```"

    assert len(parse_analysis(raw).clips) == 2


def test_parse_analysis_accepts_start_and_end_keys():
    payload = dict(SERMON, viral_clips=[{"start": 5, "end": 20.5, "reason": "opening"}])

    result = parse_analysis(json.dumps(payload))

    assert result.clips == (ClipCandidate(start=5.0, end=20.5, reason="opening"),)


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json at all",
        json.dumps(["a", "list"]),
        json.dumps({k: v for k, v in SERMON.items() if k != "summary"}),
        json.dumps({k: v for k, v in SERMON.items() if k != "viral_clips"}),
        json.dumps({k: v for k, v in SERMON.items() if k != "social_posts"}),
        json.dumps(dict(SERMON, viral_clips=[{"start_time": 40, "end_time": 10, "reason": "backwards"}])),
        json.dumps(dict(SERMON, viral_clips=[{"start_time": -1, "end_time": 10, "reason": "negative"}])),
        json.dumps(dict(SERMON, viral_clips=[{"start_time": 1, "end_time": 10}])),
    ],
)
def test_parse_analysis_rejects_malformed_payloads(raw):
    with pytest.raises(AnalysisError):
        parse_analysis(raw)


@pytest.fixture
def fake_genai(monkeypatch):
    genai = Mock()
    monkeypatch.setattr(gemini_adapter, "genai", genai)
    return genai


def test_analyzer_sends_credential_and_transcript(fake_genai):
    model = fake_genai.GenerativeModel.return_value
    model.generate_content.return_value = Mock(text=json.dumps(SERMON))

    result = GeminiAnalyzer("gemini-test", temperature=0.1).analyze("valid-key", "Grace and peace to you.")

    fake_genai.configure.assert_called_once_with(api_key="valid-key")
    fake_genai.GenerativeModel.assert_called_once_with("gemini-test")
    prompt = model.generate_content.call_args.args[0]
    assert "Grace and peace to you." in prompt
    config = model.generate_content.call_args.kwargs["generation_config"]
    assert config == {"temperature": 0.1, "response_mime_type": "application/json"}
    assert len(result.clips) == 2


def test_analyzer_maps_rejected_key_to_analysis_error(fake_genai):
    model = fake_genai.GenerativeModel.return_value
    model.generate_content.side_effect = google_exceptions.InvalidArgument("API key not valid")

    with pytest.raises(AnalysisError, match="API key not valid"):
        GeminiAnalyzer().analyze("bad-key", "transcript")


def test_analyzer_maps_blocked_response_to_analysis_error(fake_genai):
    class BlockedResponse:
        @property
        def text(self):
            raise ValueError("response was blocked")

    fake_genai.GenerativeModel.return_value.generate_content.return_value = BlockedResponse()

    with pytest.raises(AnalysisError, match="no usable text"):
        GeminiAnalyzer().analyze("valid-key", "transcript")


def test_analyzer_rejects_wrong_shape(fake_genai):
    model = fake_genai.GenerativeModel.return_value
    model.generate_content.return_value = Mock(text=json.dumps({"summary": "only this"}))

    with pytest.raises(AnalysisError, match="Malformed"):
        GeminiAnalyzer().analyze("valid-key", "transcript")
