from fastapi import APIRouter, Depends, HTTPException
from typing import Callable, List
from sqlalchemy.orm import Session
import logging

from ..db.database import get_db
from ..models.correspondence_model import User
from ..schemas.triage import (
    BulkReplyRequest,
    DraftOut,
    EmailIdsRequest,
    EmailOut,
    EmailSummary,
    GenerateRequest,
    GenerateResponse,
    GroupOut,
    SaveResponseRequest,
    UploadRequest,
    UploadResponse,
)
from ..security.api_key import get_current_user
from ..services.classifier import classify_conversations
from ..services.correspondence_service import (
    get_owned_email,
    get_owned_group,
    list_groups,
    list_owned_emails,
    replace_upload,
    save_edited_response,
)
from ..services.drafting import generate_drafts
from ..services.grouping import GroupResult, assign_groups, ordered_group_members
from ..services.ingest import normalize_rows
from ..services.llm_client import LLMClient, LLMUnavailable, build_llm_client
from ..services.mailer import MailAccountNotLinked, bulk_send, transport_for
from ..services.nlp import categorize_by_keywords
from ..services.reconstruct import reconstruct_tickets

router = APIRouter()
log = logging.getLogger(__name__)


def get_llm_client() -> LLMClient:
    try:
        return build_llm_client()
    except LLMUnavailable as e:
        raise HTTPException(status_code=503, detail=f"AI service not configured: {e}")


def get_transport_factory() -> Callable:
    """Factory turning a user into a mail transport; swapped out in tests."""
    return transport_for


def _group_out(result: GroupResult) -> GroupOut:
    g = result.group
    return GroupOut(
        id=g.id,
        type=g.type,
        name=g.name,
        description=g.description,
        priority=g.priority,
        is_expanded=bool(g.is_expanded),
        emails=[EmailSummary.model_validate(e) for e in result.emails],
        clusters=[sorted(c.tags) for c in result.clusters],
    )


def _owned_or_404(db: Session, user: User, email_ids: List[int]):
    if not email_ids:
        raise HTTPException(status_code=400, detail="Email IDs array required")
    emails = list_owned_emails(db, user.id, email_ids)
    if not emails:
        raise HTTPException(status_code=404, detail="No emails found")
    return emails


@router.post("/upload", response_model=UploadResponse)
def upload(payload: UploadRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Replace the caller's conversations with the tickets found in an uploaded export.

    Every previous conversation, draft, comment and group of the caller is
    discarded, including human-edited drafts.
    """
    if not payload.emails:
        raise HTTPException(status_code=400, detail="Invalid email data")
    rows = normalize_rows(payload.emails)
    result = reconstruct_tickets(rows)
    log.info("upload_reconstructed", extra={
        "user_id": user.id,
        "count": len(result.tickets),
        "skipped": result.stats.system_messages + result.stats.orphan_rows,
    })
    summary = replace_upload(db, user, result.tickets, filtered=result.stats.filtered)
    return UploadResponse(
        count=len(summary.created),
        filtered=summary.filtered,
        skipped=summary.skipped,
        email_ids=summary.email_ids,
        emails=[EmailSummary.model_validate(e) for e in summary.created],
    )


@router.post("/classify", response_model=List[GroupOut])
def classify(
    payload: EmailIdsRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    llm: LLMClient = Depends(get_llm_client),
):
    emails = _owned_or_404(db, user, payload.email_ids)
    classify_conversations(db, user, emails, llm)
    return [_group_out(r) for r in assign_groups(db, user, emails)]


@router.post("/group/keywords", response_model=List[GroupOut])
def group_by_keywords(payload: EmailIdsRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    emails = _owned_or_404(db, user, payload.email_ids)
    categorize_by_keywords(db, emails)
    return [_group_out(r) for r in assign_groups(db, user, emails)]


@router.get("/groups", response_model=List[GroupOut])
def groups(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    out = []
    for group in list_groups(db, user.id):
        result = ordered_group_members(group)
        if result.emails:
            out.append(_group_out(result))
    return out


@router.get("/emails/{email_id}", response_model=EmailOut)
def email_detail(email_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    email = get_owned_email(db, user.id, email_id)
    if not email:
        raise HTTPException(status_code=404, detail="Email not found")
    return EmailOut.model_validate(email)


@router.post("/generate", response_model=GenerateResponse)
def generate(
    payload: GenerateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    llm: LLMClient = Depends(get_llm_client),
):
    if payload.group_id is not None:
        group = get_owned_group(db, user.id, payload.group_id)
        if not group:
            raise HTTPException(status_code=404, detail="Group not found")
        emails = ordered_group_members(group).emails
    elif payload.email_ids:
        emails = _owned_or_404(db, user, payload.email_ids)
    else:
        raise HTTPException(status_code=400, detail="email_ids or group_id required")
    outcome = generate_drafts(
        db, user, emails, llm,
        custom_instructions=payload.custom_instructions,
        rules=payload.response_rules,
    )
    return GenerateResponse(
        count=outcome.count,
        responses=[DraftOut(email_id=i, response=text) for i, text in outcome.responses],
    )


@router.post("/save-response", response_model=EmailSummary)
def save_response(payload: SaveResponseRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    email = save_edited_response(db, user.id, payload.email_id, payload.response)
    if not email:
        raise HTTPException(status_code=404, detail="Email not found")
    return EmailSummary.model_validate(email)


@router.post("/bulk-reply")
def bulk_reply(
    payload: BulkReplyRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    transport_factory: Callable = Depends(get_transport_factory),
):
    emails = _owned_or_404(db, user, payload.email_ids)
    try:
        transport = transport_factory(user)
    except MailAccountNotLinked as e:
        raise HTTPException(status_code=403, detail=str(e))
    return bulk_send(db, user, emails, transport, custom_message=payload.custom_message).as_dict()
