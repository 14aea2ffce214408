"""Background status checks for transcription jobs."""
