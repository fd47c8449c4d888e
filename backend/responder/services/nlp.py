from textblob import TextBlob
from typing import Sequence
import logging

from sqlalchemy.orm import Session

from ..models.correspondence_model import EmailCorrespondence
from ..schemas.triage import Category

log = logging.getLogger(__name__)

PRIORITY_TERMS = ['damage', 'broken', 'wrong item', 'incorrect', 'refund', 'return']
WHOLESALE_TERMS = ['wholesale', 'bulk', 'resell', 'distributor', 'business']
ORDER_STATUS_TERMS = ['where', 'track', 'status', 'order', 'ship']
NO_ACTION_TERMS = ['thank you', 'thanks', 'received', 'perfect', 'great']
FRUSTRATION_HINTS = ['angry', 'frustrated', 'upset', 'worst', 'unacceptable', 'ridiculous', 'still waiting']
URGENCY_HINTS = ['immediately', 'urgent', 'asap', 'today', 'never arrived', 'chargeback']

BASE_URGENCY = {
    Category.PRIORITY: 8,
    Category.ORDER_STATUS: 5,
    Category.WHOLESALE: 4,
    Category.OTHER: 4,
    Category.NO_ACTION: 1,
}


def keyword_category(message_text: str, order_number: str | None = None) -> Category:
    lowered = (message_text or '').lower()
    if any(t in lowered for t in PRIORITY_TERMS):
        return Category.PRIORITY
    if any(t in lowered for t in WHOLESALE_TERMS):
        return Category.WHOLESALE
    if order_number or any(t in lowered for t in ORDER_STATUS_TERMS):
        return Category.ORDER_STATUS
    if len(lowered) < 50 or any(t in lowered for t in NO_ACTION_TERMS):
        return Category.NO_ACTION
    return Category.OTHER


def analyze_sentiment(text: str) -> str:
    polarity = TextBlob(text or '').sentiment.polarity
    lowered = (text or '').lower()
    frustrated = any(w in lowered for w in FRUSTRATION_HINTS)
    if polarity > 0.1 and not frustrated:
        return 'positive'
    if polarity < -0.1:
        return 'frustrated' if frustrated else 'negative'
    # fallback lexical hints
    if frustrated:
        return 'frustrated'
    return 'neutral'


def keyword_urgency(category: Category, text: str) -> int:
    lowered = (text or '').lower()
    urgency = BASE_URGENCY[category]
    if any(w in lowered for w in URGENCY_HINTS):
        urgency += 2
    return min(10, urgency)


def categorize_by_keywords(db: Session, emails: Sequence[EmailCorrespondence]) -> int:
    """LLM-free triage: category, sentiment and urgency from keyword rules.

    Overwrites insights like a classification pass does; key issues, tone and
    similarity tags are cleared since keywords cannot produce them.
    """
    for email in emails:
        category = keyword_category(email.message_text, email.order_number)
        email.category = category.value
        email.sentiment = analyze_sentiment(email.message_text)
        email.urgency = keyword_urgency(category, email.message_text)
        email.key_issues = []
        email.suggested_tone = None
        email.similarity_tags = []
        email.insight_source = 'keywords'
    db.commit()
    log.info("keyword_categorized", extra={"count": len(emails)})
    return len(emails)
