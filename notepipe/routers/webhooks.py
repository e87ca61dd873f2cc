# notepipe/routers/webhooks.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..deps import get_pipeline
from ..schemas import AssemblyAIWebhook
from ..security import const_time_eq
from ..services.pipeline import Pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])


@router.post("/assemblyai")
def assemblyai_webhook(
    body: AssemblyAIWebhook,
    request: Request,
    pipeline: Pipeline = Depends(get_pipeline),
):
    """
    Completion callback from AssemblyAI. Authenticated by the shared secret
    registered with the transcription request, not by API key.
    """
    expected = pipeline.settings.webhook_secret
    provided = request.headers.get(pipeline.settings.webhook_header_name, "")
    if not expected or not const_time_eq(provided, expected):
        logger.warning("Rejected AssemblyAI webhook for %s: bad secret", body.transcript_id)
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    pipeline.handle_transcription_webhook(body.transcript_id, body.status, body.error)
    return {"ok": True}
