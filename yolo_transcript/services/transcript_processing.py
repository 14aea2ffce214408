"""Turn raw AssemblyAI transcript payloads into the enriched view the dashboard shows.

AssemblyAI reports word and utterance timings in milliseconds; everything in
this module keeps that unit except ``total_duration`` which is in seconds.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

NO_SENTIMENT_SUMMARY = "No sentiment data available"


def _percent(part: int, total: int) -> int:
    # Half-up rounding, matching what the dashboard shows.
    return int(part * 100 / total + 0.5)


def summarize_sentiment(results: Optional[Iterable[Mapping[str, Any]]]) -> dict[str, Any]:
    segments = list(results or [])
    if not segments:
        return {"overall": "neutral", "segments": [], "summary": NO_SENTIMENT_SUMMARY}

    counts = {"positive": 0, "negative": 0, "neutral": 0}
    for segment in segments:
        label = str(segment.get("sentiment") or "").lower()
        if label in ("positive", "negative"):
            counts[label] += 1
        else:
            counts["neutral"] += 1

    overall = "neutral"
    if counts["positive"] > counts["negative"] and counts["positive"] > counts["neutral"]:
        overall = "positive"
    elif counts["negative"] > counts["positive"] and counts["negative"] > counts["neutral"]:
        overall = "negative"

    total = len(segments)
    summary = (
        f"Overall sentiment is {overall}. The transcript contains "
        f"{_percent(counts['positive'], total)}% positive, "
        f"{_percent(counts['negative'], total)}% negative, and "
        f"{_percent(counts['neutral'], total)}% neutral segments."
    )
    return {"overall": overall, "segments": segments, "summary": summary}


def utterances_from_words(words: Optional[Iterable[Mapping[str, Any]]]) -> list[dict[str, Any]]:
    """Group consecutive words spoken by the same speaker into utterances."""

    utterances: list[dict[str, Any]] = []
    current: Optional[dict[str, Any]] = None
    for word in words or []:
        speaker = word.get("speaker")
        if not speaker:
            continue
        if current is None or current["speaker"] != speaker:
            if current is not None:
                utterances.append(current)
            current = {
                "id": f"utterance_{len(utterances) + 1}",
                "speaker": speaker,
                "start": word.get("start"),
                "end": word.get("end"),
                "text": word.get("text", ""),
                "words": [dict(word)],
            }
        else:
            current["text"] = f"{current['text']} {word.get('text', '')}"
            current["end"] = word.get("end")
            current["words"].append(dict(word))
    if current is not None:
        utterances.append(current)
    return utterances


def normalize_utterances(utterances: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Give provider utterances the same stable ids as word-grouped ones."""

    normalized = []
    for index, utterance in enumerate(utterances, start=1):
        item = dict(utterance)
        item.setdefault("id", f"utterance_{index}")
        item.setdefault("words", [])
        normalized.append(item)
    return normalized


def speaker_stats(
    utterances: Iterable[Mapping[str, Any]],
    labels: Optional[Mapping[str, str]] = None,
) -> list[dict[str, Any]]:
    labels = labels or {}
    speakers: dict[str, dict[str, Any]] = {}
    for utterance in utterances:
        speaker = utterance.get("speaker")
        if not speaker:
            continue
        entry = speakers.setdefault(
            speaker,
            {
                "id": speaker,
                "label": labels.get(speaker) or f"Speaker {speaker}",
                "utterances": 0,
                "word_count": 0,
                "total_duration": 0.0,
            },
        )
        entry["utterances"] += 1
        entry["word_count"] += len(utterance.get("words") or [])
        start, end = utterance.get("start"), utterance.get("end")
        if isinstance(start, (int, float)) and isinstance(end, (int, float)) and end >= start:
            entry["total_duration"] += (end - start) / 1000.0
    for entry in speakers.values():
        entry["total_duration"] = round(entry["total_duration"], 2)
    return list(speakers.values())


def apply_utterance_edits(
    utterances: list[dict[str, Any]],
    edits: Optional[Mapping[str, Mapping[str, Any]]],
) -> list[dict[str, Any]]:
    if not edits:
        return utterances
    for utterance in utterances:
        edit = edits.get(utterance.get("id", ""))
        if edit and edit.get("updated_text") is not None:
            utterance["original_text"] = utterance.get("text")
            utterance["text"] = edit["updated_text"]
            utterance["edited"] = True
    return utterances


def completion_counts(transcript: Mapping[str, Any]) -> dict[str, int]:
    """Counts stored on the local row once a job completes."""

    words = transcript.get("words") or []
    utterances = transcript.get("utterances") or utterances_from_words(words)
    speakers = {u.get("speaker") for u in utterances if u.get("speaker")}
    return {
        "utterances_count": len(utterances),
        "words_count": len(words),
        "speakers_count": len(speakers),
    }


def enrich_transcript(
    transcript: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    """Build the dashboard response: sentiment, utterances and speakers."""

    metadata = metadata or {}
    enriched = dict(transcript)
    enriched["sentiment"] = summarize_sentiment(transcript.get("sentiment_analysis_results"))
    enriched["utterances"] = []
    enriched["speakers"] = []

    if transcript.get("status") == "completed":
        if transcript.get("utterances"):
            utterances = normalize_utterances(transcript["utterances"])
        else:
            utterances = utterances_from_words(transcript.get("words"))
        utterances = apply_utterance_edits(utterances, metadata.get("utterance_edits"))
        enriched["utterances"] = utterances
        enriched["speakers"] = speaker_stats(utterances, metadata.get("speaker_labels"))
    return enriched
