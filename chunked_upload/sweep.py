"""Expiry sweep for abandoned chunked uploads; meant to run from cron or a scheduler."""
import logging

from chunked_upload.core.config import settings
from chunked_upload.core.database import init_db
from chunked_upload.services.upload_coordinator import get_coordinator

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    init_db()
    removed = get_coordinator().expire_stale_sessions()
    logger.info(f"Expiry sweep removed {removed} upload sessions older than {settings.SESSION_TTL_SECONDS}s")


if __name__ == "__main__":
    main()
