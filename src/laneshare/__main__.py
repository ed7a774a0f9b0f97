"""
Main entrypoint: serves the connected-services API (with its scheduler).

Usage:
    python -m laneshare keygen      # print a new LANESHARE_ENCRYPTION_KEY
    python -m laneshare             # starts API + stale run sweeper
    uvicorn laneshare.api.main:create_app --factory --host 0.0.0.0 --port 8000
"""
import logging
import sys

from laneshare.config import get_settings

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_keygen() -> None:
    from laneshare.crypto import generate_key
    print(generate_key())


def _run_server() -> None:
    import uvicorn

    from laneshare.errors import ConfigurationError

    settings = get_settings()
    if not settings.encryption_key:
        logger.error(
            "LANESHARE_ENCRYPTION_KEY is not set. Run `python -m laneshare keygen` first."
        )
        sys.exit(1)

    try:
        from laneshare.api.main import create_app
        app = create_app()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        sys.exit(1)

    logger.info("Starting API on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    # Dispatch on first argument: `python -m laneshare keygen` or just `python -m laneshare`
    if len(sys.argv) > 1 and sys.argv[1] == "keygen":
        _run_keygen()
    else:
        _run_server()
