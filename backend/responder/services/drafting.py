"""Draft replies for conversations with the LLM, steered by operator rules."""
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..models.correspondence_model import EmailCorrespondence, User
from .llm_client import LLMClient, LLMError
from .llm_parsing import LLMParseError, parse_json_array
from .response_rules import active_rules, matching_rules

log = logging.getLogger(__name__)

GUIDELINES = """IMPORTANT GUIDELINES:
1. Extract customer names from emails when available and use them
2. Identify order numbers (formats: #12345, Order 12345, or just 12345)
3. Be empathetic and professional
4. Keep responses concise but helpful
5. Acknowledge specific concerns mentioned in the email
6. Always maintain a helpful and solution-oriented tone"""

OUTPUT_FORMAT = """OUTPUT FORMAT:
Return a JSON array where each element corresponds to an email with this structure:
[
  {
    "response": "The personalized response text",
    "needsAction": true/false (false for thank you messages or confirmations)
  }
]"""


@dataclass
class DraftOutcome:
    count: int = 0
    responses: List[Tuple[int, str]] = field(default_factory=list)


def build_system_prompt(custom_instructions: Optional[str] = None, rules=None) -> str:
    parts = ["You are an expert customer service representative helping to respond to customer emails."]
    if custom_instructions and custom_instructions.strip():
        parts.append(f"CUSTOM INSTRUCTIONS:\n{custom_instructions}")
    parts.append(GUIDELINES)
    ordered = active_rules(rules)
    if ordered:
        lines = [f'- If {r.trigger} matches "{r.condition}": {r.response}' for r in ordered]
        parts.append("SPECIAL RESPONSE RULES (apply these when conditions match):\n" + "\n".join(lines))
    parts.append(OUTPUT_FORMAT)
    return "\n\n".join(parts)


def build_user_prompt(batch: Sequence[EmailCorrespondence], rules=None) -> str:
    chunks = ["Generate personalized customer service responses for these emails:\n"]
    for i, email in enumerate(batch, start=1):
        sender = email.from_email or "Unknown"
        if email.from_name:
            sender += f" ({email.from_name})"
        lines = [f"EMAIL {i}:", f"From: {sender}"]
        if email.subject:
            lines.append(f"Subject: {email.subject}")
        if email.order_number:
            lines.append(f"Order Number: {email.order_number}")
        lines.append(f"Message: {email.message_text or 'No message'}")
        matched = matching_rules(email, rules)
        if matched:
            lines.append("Matching Rules: " + ", ".join(
                f"{r.trigger} ({r.id})" if r.id else r.trigger for r in matched
            ))
        chunks.append("\n".join(lines) + "\n\n---\n")
    chunks.append('Generate appropriate responses for each email. For "thank you" messages or confirmations, set needsAction to false.')
    return "\n".join(chunks)


def generate_drafts(
    db: Session,
    user: User,
    emails: Sequence[EmailCorrespondence],
    llm: LLMClient,
    custom_instructions: Optional[str] = None,
    rules=None,
    batch_size: Optional[int] = None,
) -> DraftOutcome:
    """Store one AI draft per conversation the model answered.

    A batch whose request or parse fails is skipped; its conversations keep
    whatever draft they had.
    """
    batch_size = batch_size or int(os.getenv("DRAFT_BATCH_SIZE", "5"))
    system = build_system_prompt(custom_instructions, rules)
    outcome = DraftOutcome()
    batches = (len(emails) + batch_size - 1) // batch_size
    for n, start in enumerate(range(0, len(emails), batch_size), start=1):
        batch = emails[start:start + batch_size]
        try:
            text = llm.complete(system, build_user_prompt(batch, rules), max_tokens=4000)
            items = parse_json_array(text)
        except (LLMError, LLMParseError) as e:
            log.warning("draft_batch_failed", exc_info=e, extra={"user_id": user.id, "batch": n, "batches": batches})
            continue
        for email, item in zip(batch, items):
            if not isinstance(item, dict) or not isinstance(item.get("response"), str):
                continue
            email.auto_response = item["response"]
            email.needs_action = item.get("needsAction") is not False
            email.is_edited = False
            outcome.responses.append((email.id, item["response"]))
        db.commit()
        log.info("draft_batch_done", extra={"user_id": user.id, "batch": n, "batches": batches, "count": len(batch)})
    outcome.count = len(outcome.responses)
    return outcome
