import os

import uvicorn

from app.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging(level=settings.log_level, job_name="windline-api")
    logger.info(
        "Starting API server",
        extra={"storage_backend": settings.storage_backend, "queue_backend": settings.queue_backend},
    )

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=False,
    )
