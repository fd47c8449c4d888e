from fastapi import APIRouter, Depends, Query
from typing import Optional
from sqlalchemy.orm import Session
from ..core.logging import log_buffer
from ..db.database import get_db
from ..models.correspondence_model import User
from ..security.api_key import get_current_user
from ..services.correspondence_service import analytics_summary
from ..services.llm_client import llm_diagnostics

router = APIRouter()

@router.get("/summary")
def summary(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return analytics_summary(db, user.id)

@router.get("/ai", dependencies=[Depends(get_current_user)])
def ai_status():
    return llm_diagnostics()

@router.get("/logs")
def recent_logs(
    category: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=0),
    user: User = Depends(get_current_user),
):
    entries = log_buffer.entries(category=category, limit=limit, user_id=user.id)
    return {"capacity": log_buffer.capacity, "count": len(entries), "entries": entries}
