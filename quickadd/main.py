from contextlib import asynccontextmanager
import json
import logging
import sys

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from pydantic import BaseModel, ValidationError

from . import config
from .enrichment import enrich_task
from .models import WebhookPayload
from .utils import now_utc, to_iso
from .vikunja_client import VikunjaClient

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from the service appear on the console when no
# handlers are configured (uvicorn only configures its own loggers).
_pkg_logger = logging.getLogger('quickadd')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail fast: without a Vikunja endpoint every webhook would be dropped.
    if not config.VIKUNJA_BASE_URL or not config.VIKUNJA_TOKEN:
        raise RuntimeError("VIKUNJA_BASE_URL and VIKUNJA_TOKEN must be set before starting the server")
    client = VikunjaClient(config.VIKUNJA_BASE_URL, config.VIKUNJA_TOKEN)
    app.state.vikunja_client = client
    logger.info('starting quick-add enrichment for %s (timeout=%.1fs retries=%d enrichment=%s)',
                config.VIKUNJA_BASE_URL, client.timeout, client.retries, config.ENABLE_ENRICHMENT)
    try:
        yield
    finally:
        logger.info('shutting down, closing Vikunja client')
        await client.aclose()


app = FastAPI(lifespan=lifespan)


def get_vikunja_client(request: Request) -> VikunjaClient:
    return request.app.state.vikunja_client


class WebhookAck(BaseModel):
    ok: bool = True


async def _run_enrichment(payload: WebhookPayload, client: VikunjaClient) -> None:
    # Runs after the response was sent; nothing can reach Vikunja's webhook
    # sender any more, so failures end up in the log only.
    try:
        result = await enrich_task(payload, client)
    except Exception:
        logger.exception('enrichment crashed for task %s', payload.data.task.id)
        return
    logger.debug('enrichment finished for task %s: %s', result.task_id, result.status)


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': to_iso(now_utc())}


@app.post('/webhooks/vikunja', response_model=WebhookAck)
async def vikunja_webhook(request: Request, background_tasks: BackgroundTasks,
                          client: VikunjaClient = Depends(get_vikunja_client)):
    """Acknowledge a Vikunja webhook immediately and enrich in the background.

    Vikunja does not wait for (or retry on) our processing, so the response is
    always 200 {"ok": true}, even for payloads we can't read.
    """
    try:
        body = await request.json()
        payload = WebhookPayload.model_validate(body)
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as exc:
        logger.warning('invalid webhook payload, skipping: %s', exc)
        return WebhookAck()

    if not config.ENABLE_ENRICHMENT:
        logger.debug('enrichment disabled, ignoring %s for task %s', payload.event_name, payload.data.task.id)
        return WebhookAck()

    background_tasks.add_task(_run_enrichment, payload, client)
    return WebhookAck()


def run() -> None:
    """Console entrypoint: serve the app with uvicorn."""
    import uvicorn
    uvicorn.run('quickadd.main:app', host=config.HOST, port=config.PORT,
                log_level=config.LOG_LEVEL.lower())


if __name__ == '__main__':
    run()
