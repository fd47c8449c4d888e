from sqlalchemy.orm import Session
from sqlalchemy import func, select
from typing import List, Optional, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging, os, re

from ..models.correspondence_model import EmailCorrespondence, EmailComment, EmailGroup, User
from .reconstruct import Ticket

log = logging.getLogger(__name__)

ORDER_NUMBER_PATTERNS = [
    re.compile(r"#(\d{4,})"),                     # #12345
    re.compile(r"order\s*#?\s*(\d{4,})", re.I),   # Order #12345 / order 12345
    re.compile(r"\b(\d{5,6})\b"),                 # bare 5-6 digit run
]

DATE_FORMATS = [
    "%d-%m-%Y %H:%M",     # 19-08-2025 00:58
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
]


def extract_order_number(text: str) -> Optional[str]:
    if not text:
        return None
    for pattern in ORDER_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _parse_date(raw: str) -> Optional[datetime]:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        dt = None
        for fmt in DATE_FORMATS:
            try:
                dt = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    if dt is None:
        return None
    # Treat naive as UTC
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _split_labels(raw: str) -> List[str]:
    return [l.strip() for l in (raw or "").split(",") if l.strip()]


@dataclass
class UploadSummary:
    created: List[EmailCorrespondence] = field(default_factory=list)
    filtered: int = 0
    skipped: int = 0

    @property
    def email_ids(self) -> List[int]:
        return [e.id for e in self.created]


def build_correspondence(user_id: int, ticket: Ticket) -> EmailCorrespondence:
    message_text = ticket.message_text
    return EmailCorrespondence(
        user_id=user_id,
        ticket_id=ticket.ticket_id,
        conversation_id=ticket.conversation_id,
        conversation_url=ticket.conversation_url or None,
        subject=ticket.subject or "No Subject",
        from_email=ticket.customer_email,
        from_name=ticket.customer_name or None,
        message_text=message_text,
        labels=_split_labels(ticket.labels),
        inbox=ticket.inbox or None,
        creation_date=_parse_date(ticket.creation_date) or datetime.now(timezone.utc),
        closed_date=_parse_date(ticket.closed_date),
        assignee=ticket.assignee or None,
        order_number=extract_order_number(f"{message_text} {ticket.subject}"),
        needs_action=True,
    )


def clear_user_data(db: Session, user_id: int) -> int:
    """Delete every conversation, comment and group owned by the user (no commit)."""
    owned_ids = select(EmailCorrespondence.id).where(EmailCorrespondence.user_id == user_id)
    db.query(EmailComment).filter(EmailComment.email_id.in_(owned_ids)).delete(synchronize_session=False)
    removed = db.query(EmailCorrespondence).filter(EmailCorrespondence.user_id == user_id).delete(synchronize_session=False)
    db.query(EmailGroup).filter(EmailGroup.user_id == user_id).delete(synchronize_session=False)
    return removed


def replace_upload(
    db: Session,
    user: User,
    tickets: Sequence[Ticket],
    filtered: int = 0,
    batch_size: Optional[int] = None,
) -> UploadSummary:
    """Replace the user's conversations with one record per ticket.

    The delete and all inserts share one transaction: readers see either the
    previous upload or the new one. A ticket that fails to persist is rolled
    back to its savepoint, logged and counted; the rest still land.
    """
    batch_size = batch_size or int(os.getenv("UPLOAD_BATCH_SIZE", "50"))
    summary = UploadSummary(filtered=filtered)
    try:
        removed = clear_user_data(db, user.id)
        log.info("upload_cleared_previous", extra={"user_id": user.id, "count": removed})
        batches = (len(tickets) + batch_size - 1) // batch_size
        for start in range(0, len(tickets), batch_size):
            batch = tickets[start:start + batch_size]
            for ticket in batch:
                try:
                    with db.begin_nested():
                        record = build_correspondence(user.id, ticket)
                        db.add(record)
                    summary.created.append(record)
                except Exception as e:
                    summary.skipped += 1
                    log.warning("ticket_persist_failed", exc_info=e, extra={"user_id": user.id, "email_id": ticket.ticket_id})
            log.debug("upload_batch_done", extra={"batch": start // batch_size + 1, "batches": batches})
        db.commit()
    except Exception:
        db.rollback()
        raise
    log.info("upload_saved", extra={"user_id": user.id, "count": len(summary.created), "skipped": summary.skipped})
    return summary


def get_owned_email(db: Session, user_id: int, email_id: int) -> Optional[EmailCorrespondence]:
    return db.query(EmailCorrespondence).filter(
        EmailCorrespondence.id == email_id, EmailCorrespondence.user_id == user_id
    ).first()


def list_owned_emails(db: Session, user_id: int, email_ids: Sequence[int]) -> List[EmailCorrespondence]:
    """Owned conversations for the given ids, in the order the ids were given."""
    if not email_ids:
        return []
    rows = db.query(EmailCorrespondence).filter(
        EmailCorrespondence.id.in_(list(email_ids)), EmailCorrespondence.user_id == user_id
    ).all()
    by_id = {r.id: r for r in rows}
    seen = set()
    ordered = []
    for i in email_ids:
        if i in by_id and i not in seen:
            ordered.append(by_id[i])
            seen.add(i)
    return ordered


def get_owned_group(db: Session, user_id: int, group_id: int) -> Optional[EmailGroup]:
    return db.query(EmailGroup).filter(EmailGroup.id == group_id, EmailGroup.user_id == user_id).first()


def list_groups(db: Session, user_id: int) -> List[EmailGroup]:
    return db.query(EmailGroup).filter(EmailGroup.user_id == user_id).order_by(EmailGroup.priority.asc()).all()


def save_edited_response(db: Session, user_id: int, email_id: int, text: str) -> Optional[EmailCorrespondence]:
    email = get_owned_email(db, user_id, email_id)
    if not email:
        return None
    email.auto_response = text
    email.is_edited = True
    db.commit()
    db.refresh(email)
    return email


def list_comments(db: Session, user_id: int, email_id: int) -> Optional[List[EmailComment]]:
    if not get_owned_email(db, user_id, email_id):
        return None
    return db.query(EmailComment).filter(EmailComment.email_id == email_id).order_by(EmailComment.created_at.asc(), EmailComment.id.asc()).all()


def add_comment(db: Session, user_id: int, email_id: int, content: str) -> Optional[EmailComment]:
    if not get_owned_email(db, user_id, email_id):
        return None
    comment = EmailComment(email_id=email_id, user_id=user_id, content=content, is_internal=True)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def delete_comment(db: Session, user_id: int, comment_id: int) -> bool:
    """Authors may delete their own comments only."""
    removed = db.query(EmailComment).filter(EmailComment.id == comment_id, EmailComment.user_id == user_id).delete()
    db.commit()
    return bool(removed)


def analytics_summary(db: Session, user_id: int):
    base = db.query(EmailCorrespondence).filter(EmailCorrespondence.user_id == user_id)
    total = base.count()
    needs_action = base.filter(EmailCorrespondence.needs_action.is_(True)).count()
    edited = base.filter(EmailCorrespondence.is_edited.is_(True)).count()
    sent = base.filter(EmailCorrespondence.sent_at.isnot(None)).count()
    by_category = dict(
        base.with_entities(EmailCorrespondence.category, func.count(EmailCorrespondence.id))
        .filter(EmailCorrespondence.category.isnot(None))
        .group_by(EmailCorrespondence.category).all()
    )
    by_sentiment = dict(
        base.with_entities(EmailCorrespondence.sentiment, func.count(EmailCorrespondence.id))
        .filter(EmailCorrespondence.sentiment.isnot(None))
        .group_by(EmailCorrespondence.sentiment).all()
    )
    groups = db.query(EmailGroup).filter(EmailGroup.user_id == user_id).count()
    return {
        'total': total,
        'needs_action': needs_action,
        'edited': edited,
        'sent': sent,
        'by_category': by_category,
        'by_sentiment': by_sentiment,
        'groups': groups,
    }
