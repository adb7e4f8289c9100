import asyncio
import logging
from typing import List, Optional

from database.database import SessionLocal
from generation.gpt_client import get_provider
from services.explanation_cache import ExplanationCache
from services.queue import huey_queue

log = logging.getLogger(__name__)


# Bounded retries only cover crashes of the whole batch (e.g. DB down);
# per-question provider failures are logged and skipped inside the batch.
@huey_queue.task(retries=2, retry_delay=30)
def generate_explanations_task(paper_id: int, question_numbers: List[int], answer_revision: Optional[int] = None):
    """Executed by the huey consumer, not by the request that scheduled it."""
    db = SessionLocal()
    try:
        cache = ExplanationCache(db, get_provider())
        report = asyncio.run(cache.generate_batch(paper_id, question_numbers, answer_revision))
        return report.model_dump()
    except Exception:
        db.rollback()
        log.exception(f"Explanation batch for paper {paper_id} crashed")
        raise
    finally:
        db.close()
