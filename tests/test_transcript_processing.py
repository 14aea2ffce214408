from __future__ import annotations

from datetime import datetime

import pytest

from yolo_transcript.models import Transcription
from yolo_transcript.services import export
from yolo_transcript.services.transcript_processing import (
    NO_SENTIMENT_SUMMARY,
    completion_counts,
    enrich_transcript,
    speaker_stats,
    summarize_sentiment,
    utterances_from_words,
)

WORDS = [
    {"text": "Good", "start": 0, "end": 400, "speaker": "A"},
    {"text": "morning.", "start": 400, "end": 900, "speaker": "A"},
    {"text": "Hi", "start": 1000, "end": 1300, "speaker": "B"},
    {"text": "ignored", "start": 1300, "end": 1400},
    {"text": "Bye.", "start": 2000, "end": 2500, "speaker": "A"},
]


def test_summarize_sentiment_without_results():
    assert summarize_sentiment([]) == {"overall": "neutral", "segments": [], "summary": NO_SENTIMENT_SUMMARY}


def test_summarize_sentiment_majority_and_percentages():
    results = [{"sentiment": "POSITIVE"}, {"sentiment": "POSITIVE"}, {"sentiment": "NEGATIVE"}]
    summary = summarize_sentiment(results)
    assert summary["overall"] == "positive"
    assert summary["summary"] == (
        "Overall sentiment is positive. The transcript contains 67% positive, 33% negative, and 0% neutral segments."
    )


def test_summarize_sentiment_ties_stay_neutral():
    assert summarize_sentiment([{"sentiment": "POSITIVE"}, {"sentiment": "NEGATIVE"}])["overall"] == "neutral"


def test_utterances_group_consecutive_speaker_words():
    utterances = utterances_from_words(WORDS)

    assert [(u["id"], u["speaker"], u["text"]) for u in utterances] == [
        ("utterance_1", "A", "Good morning."),
        ("utterance_2", "B", "Hi"),
        ("utterance_3", "A", "Bye."),
    ]
    assert utterances[0]["start"] == 0
    assert utterances[0]["end"] == 900


def test_speaker_stats_use_labels_and_seconds():
    stats = speaker_stats(utterances_from_words(WORDS), {"B": "Bob"})

    assert stats == [
        {"id": "A", "label": "Speaker A", "utterances": 2, "word_count": 3, "total_duration": 1.4},
        {"id": "B", "label": "Bob", "utterances": 1, "word_count": 1, "total_duration": 0.3},
    ]


def test_enrich_prefers_provider_utterances():
    transcript = {
        "status": "completed",
        "utterances": [{"speaker": "A", "start": 0, "end": 1000, "text": "Provider says hi"}],
        "words": WORDS,
    }
    enriched = enrich_transcript(transcript, {"utterance_edits": {"utterance_1": {"updated_text": "Edited"}}})

    assert enriched["utterances"][0]["id"] == "utterance_1"
    assert enriched["utterances"][0]["text"] == "Edited"
    assert enriched["utterances"][0]["original_text"] == "Provider says hi"
    assert enriched["speakers"][0]["total_duration"] == 1.0


def test_enrich_skips_utterances_until_completed():
    enriched = enrich_transcript({"status": "processing", "words": WORDS})
    assert enriched["utterances"] == []
    assert enriched["speakers"] == []
    assert enriched["sentiment"]["summary"] == NO_SENTIMENT_SUMMARY


def test_completion_counts():
    assert completion_counts({"words": WORDS}) == {"utterances_count": 3, "words_count": 5, "speakers_count": 2}


def _record(**values) -> Transcription:
    defaults = {
        "file_name": "weekly sync.m4a",
        "transcription_text": "Good morning. Hi",
        "duration": 125.0,
        "created_at": datetime(2024, 5, 1, 9, 30),
        "extra_metadata": {"speaker_labels": {"A": "Ana"}},
    }
    defaults.update(values)
    return Transcription(**defaults)


def test_export_filename_uses_file_stem():
    assert export.export_filename(_record(), "srt") == "weekly sync_transcript.srt"


def test_export_markdown_lists_speakers():
    content, media_type = export.render_export(
        _record(),
        "md",
        speakers=[{"id": "A", "label": "Ana", "utterances": 2, "word_count": 3}],
    )
    assert media_type == "text/markdown"
    assert content.startswith("# Transcript: weekly sync.m4a\n\nDate: 2024-05-01\n")
    assert "- Ana: 2 utterances, 3 words" in content


def test_export_html_escapes_text_and_uses_labels():
    utterances = [{"speaker": "A", "start": 61000, "end": 65000, "text": "<b>hi</b>"}]
    content, media_type = export.render_export(_record(), "html", utterances=utterances)

    assert media_type == "text/html"
    assert "Duration: 2 minutes, 5 seconds" in content
    assert "Ana <span class=\"timestamp\">(01:01 - 01:05)</span>" in content
    assert "&lt;b&gt;hi&lt;/b&gt;" in content


def test_export_srt_without_utterances_uses_whole_text():
    content, media_type = export.render_export(_record(), "srt")
    assert media_type == "application/x-subrip"
    assert content == "1\n00:00:00,000 --> 00:02:05,000\nGood morning. Hi\n"


def test_export_rejects_unknown_format():
    with pytest.raises(ValueError):
        export.render_export(_record(), "pdf")
