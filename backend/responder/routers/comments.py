from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.correspondence_model import User
from ..schemas.triage import CommentCreate, CommentOut
from ..security.api_key import get_current_user
from ..services.correspondence_service import add_comment, delete_comment, list_comments

router = APIRouter()


@router.get("/comments", response_model=List[CommentOut])
def get_comments(email_id: int = Query(...), db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    comments = list_comments(db, user.id, email_id)
    if comments is None:
        raise HTTPException(status_code=404, detail="Email not found")
    return comments


@router.post("/comments", response_model=CommentOut)
def post_comment(payload: CommentCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    comment = add_comment(db, user.id, payload.email_id, payload.content)
    if comment is None:
        raise HTTPException(status_code=404, detail="Email not found")
    return comment


@router.delete("/comments")
def remove_comment(comment_id: int = Query(...), db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if not delete_comment(db, user.id, comment_id):
        raise HTTPException(status_code=404, detail="Comment not found")
    return {"success": True}
