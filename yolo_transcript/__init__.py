"""Yolo Transcript: audio transcription SaaS backend."""

__version__ = "0.1.0"
