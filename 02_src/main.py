"""Main entry point for the messaging core service."""

from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from msgsync.api import create_fastapi_app
from msgsync.app import Application
from msgsync.config import Settings
from msgsync.logging_config import setup_logging


def main():
    """Run the application."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")

    setup_logging()

    # Invalid values (e.g. SYNC_CONFLICT_RESOLUTION) fail here, before serving
    settings = Settings.from_env()

    app = create_fastapi_app(Application(settings))

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
