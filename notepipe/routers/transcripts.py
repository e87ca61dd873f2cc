# notepipe/routers/transcripts.py
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from ..deps import get_session
from ..models import Transcript, utcnow
from ..schemas import TranscriptUpdate
from ..security import require_auth

router = APIRouter(prefix="/v1/transcripts", tags=["transcripts"], dependencies=[Depends(require_auth)])


@router.patch("/{transcript_id}")
def update_transcript(transcript_id: int, body: TranscriptUpdate, db: Session = Depends(get_session)):
    """Replace the transcript text with a user-corrected version. Segments and words are left as transcribed."""
    t = db.get(Transcript, transcript_id)
    if not t:
        raise HTTPException(status_code=404, detail="Transcript not found")
    t.text_long = body.text_long
    t.updated_at = utcnow()
    db.add(t)
    db.commit()
    db.refresh(t)
    return t.model_dump(mode="json")
