import logging

from celery import Celery
from sqlalchemy.exc import OperationalError

from .config import (
    REDIS_URL,
    WORKER_QUEUE,
    CELERY_TASK_ALWAYS_EAGER,
    CELERY_TASK_EAGER_PROPAGATES,
)

logger = logging.getLogger(__name__)

cel = Celery("disclosures", broker=REDIS_URL, backend=REDIS_URL)
cel.conf.update(
    task_default_queue=WORKER_QUEUE,
    task_always_eager=CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=CELERY_TASK_EAGER_PROPAGATES,
    task_ignore_result=True,
    broker_connection_retry_on_startup=True,
)


@cel.task(
    name="ledger.record_event",
    queue=WORKER_QUEUE,
    autoretry_for=(OperationalError,),
    retry_backoff=True,
    max_retries=3,
)
def record_event(payload: dict):
    from .ledger import write_entry
    return write_entry(payload)


@cel.task(name="disclosures.render_pdf", queue=WORKER_QUEUE)
def render_pdf(disclosure_id: int):
    from sqlmodel import Session
    from . import db
    from .lifecycle import refresh_pdf
    from .models import Disclosure

    with Session(db.engine) as session:
        disclosure = session.get(Disclosure, disclosure_id)
        if not disclosure:
            logger.warning("render skipped; disclosure %s no longer exists", disclosure_id)
            return None
        return refresh_pdf(session, disclosure)
