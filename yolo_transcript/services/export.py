"""Render a transcription as a downloadable document."""
from __future__ import annotations

import html
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Mapping, Optional, Sequence

from ..models import Transcription

EXPORT_FORMATS = {
    "txt": "text/plain",
    "md": "text/markdown",
    "html": "text/html",
    "srt": "application/x-subrip",
}


def _speaker_name(speaker: str, labels: Mapping[str, str]) -> str:
    return labels.get(speaker) or f"Speaker {speaker.replace('spk_', '')}"


def _clock(milliseconds: Optional[float]) -> str:
    seconds = int((milliseconds or 0) / 1000)
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def _srt_timestamp(milliseconds: Optional[float]) -> str:
    total = int(milliseconds or 0)
    hours, rest = divmod(total, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def _date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else ""


def export_filename(transcription: Transcription, fmt: str) -> str:
    stem = PurePosixPath(transcription.file_name or "transcript").stem or "transcript"
    return f"{stem}_transcript.{fmt}"


def to_txt(transcription: Transcription) -> str:
    return transcription.transcription_text or ""


def to_markdown(transcription: Transcription, speakers: Sequence[Mapping[str, Any]] = ()) -> str:
    lines = [f"# Transcript: {transcription.file_name}", "", f"Date: {_date(transcription.created_at)}", ""]
    if transcription.transcription_text:
        lines += ["## Full Transcript", "", transcription.transcription_text, ""]
    if speakers:
        lines += ["## Speakers", ""]
        for speaker in speakers:
            lines.append(
                f"- {speaker.get('label') or _speaker_name(speaker['id'], {})}: "
                f"{speaker.get('utterances', 0)} utterances, {speaker.get('word_count', 0)} words"
            )
        lines.append("")
    return "\n".join(lines)


def to_html(
    transcription: Transcription,
    utterances: Sequence[Mapping[str, Any]],
    labels: Optional[Mapping[str, str]] = None,
) -> str:
    if not utterances:
        return to_txt(transcription)
    labels = labels or {}
    duration = transcription.duration
    duration_text = f"{int(duration // 60)} minutes, {int(duration % 60)} seconds" if duration else "Unknown"
    title = html.escape(transcription.file_name or "")
    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        f"  <title>Transcript: {title}</title>",
        "  <style>",
        "    body { font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }",
        "    .meta { color: #666; margin-bottom: 20px; }",
        "    .utterance { margin-bottom: 15px; }",
        "    .speaker { font-weight: bold; }",
        "    .timestamp { color: #777; font-size: 0.85em; }",
        "  </style>",
        "</head>",
        "<body>",
        f"  <h1>Transcript: {title}</h1>",
        '  <div class="meta">',
        f"    <p>Date: {_date(transcription.created_at)}</p>",
        f"    <p>Duration: {duration_text}</p>",
        "  </div>",
        '  <div class="transcript">',
    ]
    for utterance in utterances:
        name = html.escape(_speaker_name(str(utterance.get("speaker", "")), labels))
        parts += [
            '    <div class="utterance">',
            f'      <div class="speaker">{name} <span class="timestamp">'
            f"({_clock(utterance.get('start'))} - {_clock(utterance.get('end'))})</span></div>",
            f'      <div class="text">{html.escape(str(utterance.get("text", "")))}</div>',
            "    </div>",
        ]
    parts += ["  </div>", "</body>", "</html>"]
    return "\n".join(parts)


def to_srt(
    transcription: Transcription,
    utterances: Sequence[Mapping[str, Any]],
    labels: Optional[Mapping[str, str]] = None,
) -> str:
    if not utterances:
        end = (transcription.duration or 0) * 1000
        utterances = [{"start": 0, "end": end, "text": transcription.transcription_text or ""}]
    labels = labels or {}
    lines: list[str] = []
    for index, utterance in enumerate(utterances, start=1):
        text = str(utterance.get("text", "")).strip()
        speaker = utterance.get("speaker")
        if speaker:
            text = f"{_speaker_name(str(speaker), labels)}: {text}"
        lines += [
            str(index),
            f"{_srt_timestamp(utterance.get('start'))} --> {_srt_timestamp(utterance.get('end'))}",
            text,
            "",
        ]
    return "\n".join(lines).strip() + "\n"


def render_export(
    transcription: Transcription,
    fmt: str,
    *,
    utterances: Sequence[Mapping[str, Any]] = (),
    speakers: Sequence[Mapping[str, Any]] = (),
) -> tuple[str, str]:
    """Return ``(content, media_type)`` for ``fmt``."""

    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {fmt}")
    labels = (transcription.extra_metadata or {}).get("speaker_labels") or {}
    if fmt == "md":
        content = to_markdown(transcription, speakers)
    elif fmt == "html":
        content = to_html(transcription, utterances, labels)
        if not utterances:
            return content, EXPORT_FORMATS["txt"]
    elif fmt == "srt":
        content = to_srt(transcription, utterances, labels)
    else:
        content = to_txt(transcription)
    return content, EXPORT_FORMATS[fmt]
