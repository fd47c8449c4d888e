"""Normalise header-keyed export rows into a fixed row shape.

Support-desk exports name their columns differently ("Ticket id" in the CSV
export, "ticketId" when the browser already parsed it, ...). Each canonical
field lists its accepted column names; the first alias holding a non-empty
value wins and anything missing becomes an empty string.
"""
import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping


@dataclass
class RawRow:
    ticket_id: str = ""
    conversation_id: str = ""
    conversation_url: str = ""
    subject: str = ""
    customer_email: str = ""
    customer_name: str = ""
    message_text: str = ""
    labels: str = ""
    inbox: str = ""
    creation_date: str = ""
    closed_date: str = ""
    assignee: str = ""
    sender_type: str = ""
    sender_name: str = ""


COLUMN_ALIASES: Dict[str, List[str]] = {
    "ticket_id": ["Ticket id", "Ticket ID", "ticketId", "ticket_id"],
    "conversation_id": ["Conversation id", "Conversation ID", "conversationId", "conversation_id"],
    "conversation_url": ["Conversation url", "Conversation URL", "conversationUrl", "conversation_url"],
    "subject": ["Subject", "subject"],
    "customer_email": ["Customer email", "customerEmail", "customer_email", "From", "from"],
    "customer_name": ["Customer name", "customerName", "customer_name"],
    "message_text": ["Message text", "messageText", "message_text", "Body", "body"],
    "labels": ["Labels", "labels"],
    "inbox": ["Inbox", "inbox"],
    "creation_date": ["Creation date", "creationDate", "creation_date"],
    "closed_date": ["Closed date", "closedDate", "closed_date"],
    "assignee": ["Assignee", "assignee"],
    "sender_type": ["Sender type", "senderType", "sender_type"],
    "sender_name": ["Sender name", "senderName", "sender_name"],
}

# ids only ever matter trimmed; message text keeps its whitespace
_STRIPPED = {"ticket_id", "conversation_id", "customer_email", "sender_type", "sender_name"}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize_row(row: Mapping[str, Any]) -> RawRow:
    values = {}
    for field_name, aliases in COLUMN_ALIASES.items():
        value = ""
        for alias in aliases:
            candidate = _as_text(row.get(alias))
            if candidate.strip():
                value = candidate
                break
        values[field_name] = value.strip() if field_name in _STRIPPED else value
    return RawRow(**values)


def normalize_rows(rows: Iterable[Mapping[str, Any]]) -> List[RawRow]:
    """Map every row to a RawRow, preserving order. Non-mapping rows become empty rows."""
    out: List[RawRow] = []
    for row in rows:
        out.append(normalize_row(row) if isinstance(row, Mapping) else RawRow())
    return out


def read_csv_rows(csv_path: str) -> List[Dict[str, str]]:
    """Read an export file into header-keyed dicts (file order kept)."""
    path = Path(csv_path)
    if not path.exists():
        raise FileNotFoundError(f"Export file not found: {csv_path}")
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        return [dict(r) for r in csv.DictReader(f)]

