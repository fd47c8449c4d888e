"""Send stored drafts as threaded replies through the user's Gmail account."""
from email.message import EmailMessage
from email.policy import SMTP
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
import base64, logging, os

import httpx
from sqlalchemy.orm import Session

from ..models.correspondence_model import EmailCorrespondence, User

log = logging.getLogger(__name__)


class MailAccountNotLinked(RuntimeError):
    pass


class MailSendError(RuntimeError):
    pass


def build_reply(email: EmailCorrespondence, body: str) -> EmailMessage:
    msg = EmailMessage(policy=SMTP)
    msg['To'] = email.from_email
    msg['Subject'] = f"Re: {email.subject or ''}".rstrip()
    if email.conversation_id:
        msg['In-Reply-To'] = email.conversation_id
        msg['References'] = email.conversation_id
    msg.set_content(body)
    return msg


def encode_message(msg: EmailMessage) -> str:
    return base64.urlsafe_b64encode(msg.as_bytes()).decode('ascii').rstrip('=')


class GmailTransport:
    def __init__(self, access_token: str, base_url: Optional[str] = None, timeout_s: float = 20.0):
        self.access_token = access_token
        self.base_url = (base_url or os.getenv('GMAIL_API_BASE', 'https://gmail.googleapis.com/gmail/v1/users/me')).rstrip('/')
        self.timeout_s = timeout_s

    def send(self, raw: str) -> str:
        """Post one encoded message; returns the provider message id."""
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                resp = client.post(
                    f"{self.base_url}/messages/send",
                    headers={'Authorization': f'Bearer {self.access_token}'},
                    json={'raw': raw},
                )
        except httpx.HTTPError as e:
            raise MailSendError(f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 400:
            try:
                detail = (resp.json().get('error') or {}).get('message')
            except (ValueError, AttributeError):
                detail = None
            raise MailSendError(detail or f"gmail_http_{resp.status_code}")
        try:
            return resp.json().get('id', '')
        except (ValueError, AttributeError) as e:
            raise MailSendError(f"gmail_bad_response: {resp.text[:120]}") from e


def transport_for(user: User) -> GmailTransport:
    if not user.mail_access_token:
        raise MailAccountNotLinked("Mail account not linked. Connect Gmail to send replies.")
    return GmailTransport(user.mail_access_token)


@dataclass
class BulkSendResult:
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'success': len(self.results) > 0,
            'sent': len(self.results),
            'failed': len(self.errors),
            'results': self.results,
            'errors': self.errors,
        }


def bulk_send(
    db: Session,
    user: User,
    emails: Sequence[EmailCorrespondence],
    transport,
    custom_message: Optional[str] = None,
) -> BulkSendResult:
    """Send each conversation's reply independently; failures are collected, not raised."""
    outcome = BulkSendResult()
    for email in emails:
        body = custom_message or email.auto_response
        if not body:
            outcome.errors.append({'email_id': email.id, 'error': 'No response available for this email'})
            continue
        try:
            message_id = transport.send(encode_message(build_reply(email, body)))
        except (MailSendError, ValueError) as e:  # ValueError: line breaks in a header value
            log.warning("reply_send_failed", exc_info=e, extra={'user_id': user.id, 'email_id': email.id})
            outcome.errors.append({'email_id': email.id, 'error': str(e)})
            continue
        email.needs_action = False
        email.sent_at = datetime.now(timezone.utc)
        db.commit()
        outcome.results.append({
            'email_id': email.id,
            'message_id': message_id,
            'to': email.from_email,
            'subject': email.subject,
            'success': True,
        })
    log.info("bulk_reply_done", extra={'user_id': user.id, 'count': len(outcome.results), 'skipped': len(outcome.errors)})
    return outcome
