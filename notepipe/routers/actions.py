# notepipe/routers/actions.py
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from ..deps import get_session
from ..models import ActionItem, Meeting
from ..schemas import ActionUpdate
from ..security import require_auth

router = APIRouter(prefix="/v1/actions", tags=["actions"], dependencies=[Depends(require_auth)])


@router.get("")
def list_actions(workspace_id: str, db: Session = Depends(get_session)):
    """Every action item in a workspace, newest first, with its meeting title."""
    rows = db.exec(
        select(ActionItem, Meeting.title)
        .join(Meeting, Meeting.id == ActionItem.meeting_id)
        .where(ActionItem.workspace_id == workspace_id)
        .order_by(ActionItem.created_at.desc(), ActionItem.id.desc())
    ).all()
    return {"actions": [{**a.model_dump(mode="json"), "meeting_title": title} for a, title in rows]}


@router.patch("/{action_id}")
def update_action(action_id: int, body: ActionUpdate, db: Session = Depends(get_session)):
    action = db.get(ActionItem, action_id)
    if not action:
        raise HTTPException(status_code=404, detail="Action not found")
    action.status = body.status
    db.add(action)
    db.commit()
    db.refresh(action)
    return action.model_dump(mode="json")
