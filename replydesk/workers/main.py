"""ARQ worker entrypoint."""

import asyncio

from arq.connections import RedisSettings
from arq.worker import func

from replydesk.core.config import get_settings
from replydesk.workers.ingest import MAX_TRIES, process_document
from replydesk.workers.messages import process_chatwoot_message


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from replydesk.core.database import init_db
    from replydesk.core.logging_setup import setup_logging

    setup_logging()
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    # No stored result for message jobs: the job id frees up once an attempt
    # ends, and the idempotency marker alone decides what is a duplicate
    functions = [process_document, func(process_chatwoot_message, keep_result=0)]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 10
    max_tries = MAX_TRIES
    job_timeout = 600  # 10 minutes per document


if __name__ == "__main__":
    from arq import run_worker
    asyncio.run(run_worker(WorkerSettings))  # type: ignore[arg-type]
