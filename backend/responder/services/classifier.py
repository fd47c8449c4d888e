"""Batched LLM classification of conversations.

Each batch costs one request. A batch whose request or parse fails gets the
fallback insights (labelled ``insight_source='fallback'``) and the next batch
still runs.
"""
import json
import logging
import os
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..models.correspondence_model import EmailCorrespondence, User
from ..schemas.triage import ClassificationResult
from .llm_client import LLMClient, LLMError
from .llm_parsing import LLMParseError, parse_json_array

log = logging.getLogger(__name__)

CLASSIFY_SYSTEM_PROMPT = """You are a customer-support triage assistant for an e-commerce store.
Classify each email you are given.

Categories:
- PRIORITY: damaged, broken, wrong or missing items, refund or return requests
- ORDER_STATUS: where is my order, tracking, shipping or delivery questions
- WHOLESALE: bulk, reseller, distributor or business inquiries
- NO_ACTION: thank-you notes, confirmations, nothing to answer
- OTHER: anything else

OUTPUT FORMAT:
Return only a JSON array with one object per email, in the same order as the input:
[
  {
    "category": "PRIORITY|ORDER_STATUS|WHOLESALE|NO_ACTION|OTHER",
    "urgency": 1-10,
    "sentiment": "positive|neutral|negative|frustrated",
    "customerName": "name or null",
    "orderNumber": "digits or null",
    "keyIssues": ["short phrase"],
    "suggestedTone": "e.g. apologetic, friendly, professional",
    "similarityTags": ["short lowercase tag"]
  }
]"""


def fallback_result() -> ClassificationResult:
    return ClassificationResult()


def _body_limit() -> int:
    return int(os.getenv("CLASSIFY_BODY_CHARS", "1000"))


def summarize(index: int, email: EmailCorrespondence, body_chars: int) -> dict:
    body = email.message_text or ""
    if len(body) > body_chars:
        body = body[:body_chars] + "..."
    summary = {
        "index": index,
        "id": email.id,
        "subject": email.subject,
        "from": email.from_name or email.from_email,
        "body": body,
    }
    if email.order_number:
        summary["orderNumber"] = email.order_number
    return summary


def build_classify_prompt(batch: Sequence[EmailCorrespondence], body_chars: Optional[int] = None) -> str:
    limit = body_chars or _body_limit()
    summaries = [summarize(i, e, limit) for i, e in enumerate(batch)]
    return (
        f"Classify these {len(batch)} customer emails:\n\n"
        + json.dumps(summaries, ensure_ascii=False, indent=2)
    )


Labelled = Tuple[ClassificationResult, str]


def parse_results(text: str, expected: int) -> List[Labelled]:
    """Align the model's array to the batch as (result, insight_source) pairs.

    Elements the model returned and that validate are labelled "ai"; missing or
    invalid elements get the defaults labelled "fallback".
    """
    items = parse_json_array(text)
    results: List[Labelled] = []
    for i in range(expected):
        raw = items[i] if i < len(items) else None
        if not isinstance(raw, dict):
            results.append((fallback_result(), "fallback"))
            continue
        try:
            results.append((ClassificationResult.model_validate(raw), "ai"))
        except ValidationError:
            log.warning("classification_element_invalid", extra={"batch": i})
            results.append((fallback_result(), "fallback"))
    return results


def apply_result(email: EmailCorrespondence, result: ClassificationResult, source: str):
    email.category = result.category.value
    email.urgency = result.urgency
    email.sentiment = result.sentiment
    email.key_issues = list(result.key_issues)
    email.suggested_tone = result.suggested_tone
    email.similarity_tags = list(result.similarity_tags)
    email.insight_source = source
    if result.customer_name and not email.from_name:
        email.from_name = result.customer_name
    if result.order_number and not email.order_number:
        email.order_number = result.order_number


def classify_batch(llm: LLMClient, batch: Sequence[EmailCorrespondence]) -> Optional[List[Labelled]]:
    """Results aligned to `batch`, or None when the request or the parse failed."""
    try:
        text = llm.complete(CLASSIFY_SYSTEM_PROMPT, build_classify_prompt(batch))
        return parse_results(text, len(batch))
    except (LLMError, LLMParseError) as e:
        log.warning("classification_batch_failed", exc_info=e, extra={"count": len(batch)})
        return None


def classify_conversations(
    db: Session,
    user: User,
    emails: Sequence[EmailCorrespondence],
    llm: LLMClient,
    batch_size: Optional[int] = None,
) -> List[EmailCorrespondence]:
    batch_size = batch_size or int(os.getenv("CLASSIFY_BATCH_SIZE", "15"))
    batches = (len(emails) + batch_size - 1) // batch_size
    fallbacks = 0
    for n, start in enumerate(range(0, len(emails), batch_size), start=1):
        batch = emails[start:start + batch_size]
        results = classify_batch(llm, batch)
        if results is None:
            results = [(fallback_result(), "fallback") for _ in batch]
            fallbacks += 1
        for email, (result, source) in zip(batch, results):
            apply_result(email, result, source)
        db.commit()
        log.info("classification_batch_done", extra={"user_id": user.id, "batch": n, "batches": batches, "count": len(batch)})
    if fallbacks:
        log.warning("classification_fallbacks", extra={"user_id": user.id, "skipped": fallbacks, "batches": batches})
    return list(emails)

