"""Rebuild support tickets from a flat export.

Only the first row of a ticket carries the ticket id; the rows that follow it
(until the next id) are the thread's messages in chronological order. Row
order is therefore significant and is never changed here.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .ingest import RawRow
from .noise_filter import is_spam_or_system_ticket, is_system_message

THREAD_SEPARATOR = "\n\n---\n\n"

log = logging.getLogger(__name__)


@dataclass
class Ticket:
    ticket_id: str
    conversation_id: str
    conversation_url: str = ""
    subject: str = "No Subject"
    customer_email: str = ""
    customer_name: str = ""
    creation_date: str = ""
    closed_date: str = ""
    assignee: str = ""
    labels: str = ""
    inbox: str = ""
    messages: List[str] = field(default_factory=list)

    @property
    def message_text(self) -> str:
        return THREAD_SEPARATOR.join(m for m in self.messages if m.strip())

    @classmethod
    def from_header(cls, row: RawRow) -> "Ticket":
        return cls(
            ticket_id=row.ticket_id,
            conversation_id=row.conversation_id or row.ticket_id,
            conversation_url=row.conversation_url,
            subject=row.subject.strip() or "No Subject",
            customer_email=row.customer_email,
            customer_name=row.customer_name.strip(),
            creation_date=row.creation_date.strip(),
            closed_date=row.closed_date.strip(),
            assignee=row.assignee.strip(),
            labels=row.labels,
            inbox=row.inbox.strip(),
        )


@dataclass
class ReconstructionStats:
    rows: int = 0
    spam_tickets: int = 0
    system_messages: int = 0
    orphan_rows: int = 0
    empty_tickets: int = 0

    @property
    def filtered(self) -> int:
        return self.spam_tickets + self.empty_tickets


@dataclass
class ReconstructionResult:
    tickets: List[Ticket]
    stats: ReconstructionStats


def reconstruct_tickets(rows: Iterable[RawRow]) -> ReconstructionResult:
    stats = ReconstructionStats()
    grouped: List[Ticket] = []
    current: Optional[Ticket] = None

    for row in rows:
        stats.rows += 1
        if row.ticket_id:
            if current is not None:
                grouped.append(current)
            if is_spam_or_system_ticket(row):
                # continuation rows up to the next ticket id belong to the rejected ticket
                current = None
                stats.spam_tickets += 1
                log.debug("spam_ticket_filtered", extra={"count": stats.spam_tickets})
                continue
            current = Ticket.from_header(row)
        elif current is None:
            stats.orphan_rows += 1
            continue

        if not row.message_text.strip():
            continue
        if is_system_message(row):
            stats.system_messages += 1
            continue
        current.messages.append(row.message_text)

    if current is not None:
        grouped.append(current)

    tickets = [t for t in grouped if t.messages]
    stats.empty_tickets = len(grouped) - len(tickets)
    log.info(
        "tickets_reconstructed",
        extra={"count": len(tickets), "skipped": stats.filtered},
    )
    return ReconstructionResult(tickets=tickets, stats=stats)
