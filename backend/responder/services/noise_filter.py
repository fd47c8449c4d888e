from .ingest import RawRow

CONTACT_SENDER_TYPE = 'contact'

BLOCKED_SENDERS = [
    'noreply@',
    'no-reply@',
    '@linkedin.com',
    '@facebookmail.com',
    'flow@shopify.com',
    '@judge.me',
    '@klaviyo.com',
    'pkginfo@ups.com',
    '@chitchats.com',
    '@canva.com',
]
SYSTEM_SUBJECT_HINTS = ['is low in stock', 'shopify apps', 'automatic reply', 'out of office']
SYSTEM_SENDER_NAMES = {'AIAgent', 'H&O Team', 'Automation System'}
SYSTEM_MESSAGE_PATTERNS = [
    'auto-labels added',
    'ai agent was removed',
    'ai agent processing summary',
    'conversation was marked',
    'conversation was snoozed',
    'automation system added',
]


def is_review_request(subject: str) -> bool:
    s = subject.lower()
    return 'left a' in s and 'star review' in s


def is_spam_or_system_ticket(row: RawRow) -> bool:
    """Ticket-level filter, applied to rows that open a ticket."""
    sender = row.customer_email.lower()
    subject = row.subject.lower()
    if any(blocked in sender for blocked in BLOCKED_SENDERS):
        return True
    if is_review_request(subject):
        return True
    if any(hint in subject for hint in SYSTEM_SUBJECT_HINTS):
        return True
    # a ticket we cannot reply to is not a customer conversation
    return '@' not in sender


def is_system_message(row: RawRow) -> bool:
    """Message-level filter. Ambiguous messages are kept."""
    sender_type = row.sender_type.strip()
    if sender_type:
        return sender_type.lower() != CONTACT_SENDER_TYPE
    if row.sender_name.strip() in SYSTEM_SENDER_NAMES:
        return True
    text = row.message_text.lower()
    return any(p in text for p in SYSTEM_MESSAGE_PATTERNS)
