# notepipe/worker.py
"""Hatchet worker process: ``python -m notepipe.worker`` or the ``notepipe-worker`` script."""
import logging

from .config import configure_logging, get_settings
from .db import init_db
from .services.pipeline import Pipeline

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    pipeline = Pipeline.from_settings(settings)
    init_db(pipeline.engine)
    pipeline.queue.bind(pipeline.handle)
    worker = pipeline.queue.worker()

    logger.info("Worker started (slots=%d)", settings.queue_concurrency)
    try:
        # blocks until SIGINT/SIGTERM; Hatchet drains in-flight runs itself
        worker.start()
    finally:
        pipeline.transcription.close()
    logger.info("Worker stopped")


if __name__ == "__main__":
    main()
