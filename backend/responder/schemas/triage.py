from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from ..services.response_rules import ResponseRule


class Category(str, Enum):
    PRIORITY = 'PRIORITY'
    ORDER_STATUS = 'ORDER_STATUS'
    WHOLESALE = 'WHOLESALE'
    NO_ACTION = 'NO_ACTION'
    OTHER = 'OTHER'


SENTIMENTS = ('positive', 'neutral', 'negative', 'frustrated')


class ClassificationResult(BaseModel):
    """One conversation's insights as returned by the classification model.

    Field validators coerce loose model output; anything unusable falls back to
    the documented defaults instead of failing the element.
    """
    model_config = ConfigDict(populate_by_name=True)

    category: Category = Category.OTHER
    urgency: int = 5
    sentiment: str = 'neutral'
    customer_name: Optional[str] = Field(None, alias='customerName')
    order_number: Optional[str] = Field(None, alias='orderNumber')
    key_issues: List[str] = Field(default_factory=list, alias='keyIssues')
    suggested_tone: str = Field('professional', alias='suggestedTone')
    similarity_tags: List[str] = Field(default_factory=list, alias='similarityTags')

    @field_validator('category', mode='before')
    @classmethod
    def _category(cls, v):
        value = str(v or '').strip().upper().replace(' ', '_')
        return value if value in Category.__members__ else Category.OTHER

    @field_validator('urgency', mode='before')
    @classmethod
    def _urgency(cls, v):
        try:
            n = int(round(float(v)))
        except (TypeError, ValueError):
            return 5
        return min(10, max(1, n))

    @field_validator('sentiment', mode='before')
    @classmethod
    def _sentiment(cls, v):
        value = str(v or '').strip().lower()
        return value if value in SENTIMENTS else 'neutral'

    @field_validator('customer_name', 'order_number', mode='before')
    @classmethod
    def _optional_text(cls, v):
        if v is None:
            return None
        value = str(v).strip()
        return value or None

    @field_validator('order_number', mode='after')
    @classmethod
    def _order_digits(cls, v):
        return (v.lstrip('#').strip() or None) if v else None

    @field_validator('key_issues', 'similarity_tags', mode='before')
    @classmethod
    def _str_list(cls, v):
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return []
        return [str(x).strip() for x in v if str(x).strip()]

    @field_validator('suggested_tone', mode='before')
    @classmethod
    def _tone(cls, v):
        return str(v).strip() if v and str(v).strip() else 'professional'


class UploadRequest(BaseModel):
    emails: List[Dict[str, Any]]


class EmailIdsRequest(BaseModel):
    email_ids: List[int] = Field(..., alias='emailIds')
    model_config = ConfigDict(populate_by_name=True)


class EmailSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: Optional[str] = None
    conversation_id: Optional[str] = None
    subject: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    order_number: Optional[str] = None
    needs_action: bool = True
    is_edited: bool = False
    auto_response: Optional[str] = None
    group_id: Optional[int] = None
    category: Optional[str] = None
    urgency: Optional[int] = None
    sentiment: Optional[str] = None
    key_issues: Optional[List[str]] = None
    suggested_tone: Optional[str] = None
    similarity_tags: Optional[List[str]] = None
    insight_source: Optional[str] = None


class EmailOut(EmailSummary):
    message_text: str
    conversation_url: Optional[str] = None
    labels: Optional[List[str]] = None
    inbox: Optional[str] = None
    creation_date: Optional[datetime] = None
    closed_date: Optional[datetime] = None
    assignee: Optional[str] = None
    shopify_data: Optional[Dict[str, Any]] = None
    shipstation_data: Optional[Dict[str, Any]] = None
    sent_at: Optional[datetime] = None


class UploadResponse(BaseModel):
    success: bool = True
    count: int
    filtered: int
    skipped: int
    email_ids: List[int]
    emails: List[EmailSummary]


class GroupOut(BaseModel):
    id: int
    type: Category
    name: str
    description: Optional[str] = None
    priority: int
    is_expanded: bool
    emails: List[EmailSummary]
    clusters: List[List[str]] = []


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_ids: Optional[List[int]] = Field(None, alias='emailIds')
    group_id: Optional[int] = Field(None, alias='groupId')
    custom_instructions: Optional[str] = Field(None, alias='customInstructions')
    response_rules: List[ResponseRule] = Field(default_factory=list, alias='responseRules')


class DraftOut(BaseModel):
    email_id: int
    response: str


class GenerateResponse(BaseModel):
    success: bool = True
    count: int
    responses: List[DraftOut]


class SaveResponseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_id: int = Field(..., alias='emailId')
    response: str


class CommentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_id: int = Field(..., alias='emailId')
    content: str = Field(..., min_length=1)


class CommentAuthor(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: Optional[str] = None
    email: str


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email_id: int
    content: str
    is_internal: bool
    created_at: datetime
    user: CommentAuthor


class BulkReplyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_ids: List[int] = Field(..., alias='emailIds')
    custom_message: Optional[str] = Field(None, alias='customMessage')


class UserCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    mail_access_token: Optional[str] = None
