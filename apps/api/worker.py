"""RQ worker process entrypoint for media processing jobs."""

import logging

from config import settings
from services.queue_manager import MEDIA_QUEUE_NAME, queue_manager


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    worker = queue_manager.create_worker(MEDIA_QUEUE_NAME)
    logging.getLogger(__name__).info(
        "Media worker listening on %s (redis=%s)", MEDIA_QUEUE_NAME, settings.REDIS_URL
    )
    try:
        worker.work(with_scheduler=True)
    finally:
        queue_manager.close()


if __name__ == "__main__":
    main()
