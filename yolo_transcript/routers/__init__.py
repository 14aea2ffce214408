"""HTTP routers mounted by :func:`yolo_transcript.main.create_app`."""
