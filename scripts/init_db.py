"""Create every table on the configured database (development shortcut for ``alembic upgrade head``)."""
from __future__ import annotations

from yolo_transcript.config import get_settings
from yolo_transcript.database import get_engine
from yolo_transcript.models import Base


def main() -> None:
    settings = get_settings()
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    print(f"Database initialized: {engine.url.render_as_string(hide_password=True)} ({settings.app_env})")


if __name__ == "__main__":
    main()
