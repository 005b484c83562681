import threading, queue, time
from .wordpress import publish_screenshot
from ..models.database import SessionLocal
from ..utils.errors import NewScreensError
from ..utils.logging import logger

_JOB_QUEUE = queue.Queue()
_WORKER_STARTED = False


def start_worker(app):
    """Run queued publish jobs on a daemon thread. Jobs are never retried."""
    global _WORKER_STARTED
    if _WORKER_STARTED: return
    _WORKER_STARTED = True

    def loop():
        logger.info("Publish worker started")
        while True:
            try:
                job = _JOB_QUEUE.get()
                if job is None: break
                screenshot_id, owner_id = job["screenshot_id"], job["owner_id"]
                store = job["store"] if job["store"] is not None else app.extensions["image_store"]
                logger.info(f"Publishing screenshot {screenshot_id}")
                try:
                    with SessionLocal() as db:
                        result = publish_screenshot(db, store, screenshot_id, owner_id=owner_id)
                    logger.info(f"Publish success {screenshot_id}: {result['wpImageUrl']}")
                except NewScreensError as e:
                    logger.warning(f"Publish failed {screenshot_id}: {e.message}")
                except Exception as e:
                    logger.exception(f"Publish failed {screenshot_id}: {e}")
                finally:
                    _JOB_QUEUE.task_done()
            except Exception as e:
                logger.exception(f"Worker loop error: {e}")
                time.sleep(1)

    threading.Thread(target=loop, daemon=True, name="PublishWorker").start()


def enqueue_publish_job(screenshot_id, owner_id=None, store=None):
    """Queue a publish. store is the calling app's image store; None means the worker's app."""
    _JOB_QUEUE.put({"screenshot_id": screenshot_id, "owner_id": owner_id, "store": store})
