# notepipe/routers/meetings.py
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from ..deps import get_pipeline, get_session
from ..models import ActionItem, Export, Meeting, Summary, Transcript
from ..schemas import ExportRequest
from ..security import require_auth
from ..services.pipeline import Pipeline

router = APIRouter(
    prefix="/v1/meetings",
    tags=["meetings"],
    dependencies=[Depends(require_auth)],
)


def _meeting_out(m: Meeting) -> dict:
    return {
        "id": m.id,
        "workspace_id": m.workspace_id,
        "title": m.title,
        "status": m.status.value,
        "failure_reason": m.failure_reason,
        "created_at": m.created_at.isoformat(),
        "updated_at": m.updated_at.isoformat(),
    }


def _get_meeting_or_404(db: Session, meeting_id: str) -> Meeting:
    m = db.get(Meeting, meeting_id)
    if not m:
        raise HTTPException(status_code=404, detail="Meeting not found")
    return m


@router.get("")
def list_meetings(workspace_id: str, db: Session = Depends(get_session)):
    meetings = db.exec(
        select(Meeting).where(Meeting.workspace_id == workspace_id).order_by(Meeting.created_at.desc())
    ).all()
    return {"meetings": [_meeting_out(m) for m in meetings]}


@router.get("/{meeting_id}")
def get_meeting(meeting_id: str, db: Session = Depends(get_session)):
    return _meeting_out(_get_meeting_or_404(db, meeting_id))


@router.post("/{meeting_id}/process", status_code=202)
def process_meeting(meeting_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """Start the pipeline for an uploaded meeting."""
    return _meeting_out(pipeline.begin_processing(meeting_id))


@router.post("/{meeting_id}/retry", status_code=202)
def retry_meeting(meeting_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    """Re-run a failed meeting from the beginning. 409 unless the meeting is failed."""
    return _meeting_out(pipeline.retry_meeting(meeting_id))


@router.post("/{meeting_id}/exports", status_code=202)
def create_export(
    meeting_id: str,
    body: ExportRequest,
    pipeline: Pipeline = Depends(get_pipeline),
    auth: dict = Depends(require_auth),
):
    exp = pipeline.request_export(meeting_id, body.format, created_by=auth.get("sub"))
    return {"id": exp.id, "format": exp.format.value, "status": "pending"}


@router.get("/{meeting_id}/exports")
def list_exports(
    meeting_id: str,
    db: Session = Depends(get_session),
    pipeline: Pipeline = Depends(get_pipeline),
):
    _get_meeting_or_404(db, meeting_id)
    exports = db.exec(
        select(Export).where(Export.meeting_id == meeting_id).order_by(Export.created_at.desc())
    ).all()

    out = []
    for e in exports:
        download_url = None
        if not e.is_pending:
            download_url = pipeline.storage.signed_url(
                pipeline.settings.exports_bucket, e.object_path, pipeline.settings.signed_url_ttl
            )
        out.append({
            "id": e.id,
            "format": e.format.value,
            "status": "pending" if e.is_pending else "ready",
            "created_at": e.created_at.isoformat(),
            "download_url": download_url,
        })
    return {"exports": out}


@router.get("/{meeting_id}/actions")
def list_actions(meeting_id: str, db: Session = Depends(get_session)):
    _get_meeting_or_404(db, meeting_id)
    actions = db.exec(
        select(ActionItem).where(ActionItem.meeting_id == meeting_id).order_by(ActionItem.id)
    ).all()
    return {"actions": [a.model_dump(mode="json") for a in actions]}


@router.get("/{meeting_id}/transcript")
def get_transcript(meeting_id: str, db: Session = Depends(get_session)):
    _get_meeting_or_404(db, meeting_id)
    t = db.exec(select(Transcript).where(Transcript.meeting_id == meeting_id)).first()
    if not t:
        raise HTTPException(status_code=404, detail="Transcript not found")
    return t.model_dump(mode="json")


@router.get("/{meeting_id}/summary")
def get_summary(meeting_id: str, db: Session = Depends(get_session)):
    _get_meeting_or_404(db, meeting_id)
    summary = db.exec(select(Summary).where(Summary.meeting_id == meeting_id)).first()
    if not summary:
        raise HTTPException(status_code=404, detail="Summary not found")
    return summary.model_dump(mode="json")
