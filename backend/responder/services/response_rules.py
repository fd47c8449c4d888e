"""Operator-authored response rules.

A rule's `trigger` selects how its `condition` is read:

  keyword       condition is a regular expression (case-insensitive); when it
                does not compile, the comma-separated terms are matched as
                literal substrings instead. A blank condition matches nothing
  product       condition is a comma-separated list of product terms
  order_status  condition is informational; matches whenever the
                conversation has an order number

Rules come from the caller with each request and are never stored.
"""
import re
from typing import Annotated, List, Literal, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field


class RuleTarget(Protocol):
    message_text: Optional[str]
    order_number: Optional[str]


def _terms(condition: str) -> List[str]:
    return [t.strip().lower() for t in condition.split(',') if t.strip()]


class _RuleBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = ''
    condition: str = ''
    response: str
    priority: int = 0
    is_active: bool = Field(True, alias='isActive')

    def matches(self, email: RuleTarget) -> bool:  # pragma: no cover (overridden)
        raise NotImplementedError


class KeywordRule(_RuleBase):
    trigger: Literal['keyword'] = 'keyword'

    def matches(self, email: RuleTarget) -> bool:
        if not self.condition.strip():
            return False
        text = (email.message_text or '').lower()
        try:
            return re.search(self.condition, text, re.IGNORECASE) is not None
        except re.error:
            return any(term in text for term in _terms(self.condition))


class ProductRule(_RuleBase):
    trigger: Literal['product'] = 'product'

    def matches(self, email: RuleTarget) -> bool:
        text = (email.message_text or '').lower()
        return any(term in text for term in _terms(self.condition))


class OrderStatusRule(_RuleBase):
    trigger: Literal['order_status'] = 'order_status'

    def matches(self, email: RuleTarget) -> bool:
        return bool(email.order_number)


ResponseRule = Annotated[
    Union[KeywordRule, ProductRule, OrderStatusRule],
    Field(discriminator='trigger'),
]


def active_rules(rules: Optional[Sequence[_RuleBase]]) -> List[_RuleBase]:
    """Active rules in precedence order (lower priority number first, input order on ties)."""
    return sorted((r for r in rules or [] if r.is_active), key=lambda r: r.priority)


def matching_rules(email: RuleTarget, rules: Optional[Sequence[_RuleBase]]) -> List[_RuleBase]:
    return [r for r in active_rules(rules) if r.matches(email)]
