from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..db.database import Base
from datetime import datetime, timezone


def _now():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    api_key = Column(String, unique=True, index=True, nullable=False)
    # OAuth access token of the linked Google account; None means no mail account linked
    mail_access_token = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now)


class EmailGroup(Base):
    __tablename__ = 'email_groups'
    __table_args__ = (UniqueConstraint('user_id', 'type', name='uq_email_groups_user_type'),)
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), index=True, nullable=False)
    type = Column(String, index=True, nullable=False)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    priority = Column(Integer, default=99)
    is_expanded = Column(Boolean, default=False)
    created_at = Column(DateTime, default=_now)

    emails = relationship("EmailCorrespondence", back_populates="group")


class EmailCorrespondence(Base):
    __tablename__ = 'email_correspondence'
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), index=True, nullable=False)
    group_id = Column(Integer, ForeignKey('email_groups.id'), nullable=True, index=True)

    ticket_id = Column(String, index=True)
    conversation_id = Column(String, index=True)
    conversation_url = Column(String, nullable=True)
    subject = Column(String)
    from_email = Column(String, index=True)
    from_name = Column(String, nullable=True)
    message_text = Column(Text, nullable=False)
    labels = Column(JSON, default=list)
    inbox = Column(String, nullable=True)
    creation_date = Column(DateTime, default=_now)
    closed_date = Column(DateTime, nullable=True)
    assignee = Column(String, nullable=True)
    order_number = Column(String, nullable=True, index=True)

    needs_action = Column(Boolean, default=True, index=True)
    is_edited = Column(Boolean, default=False)
    auto_response = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    # AI annotations, recomputed on every classification pass
    category = Column(String, nullable=True, index=True)
    urgency = Column(Integer, nullable=True)
    sentiment = Column(String, nullable=True)
    key_issues = Column(JSON, nullable=True)
    suggested_tone = Column(String, nullable=True)
    similarity_tags = Column(JSON, nullable=True)
    # ai | fallback | keywords
    insight_source = Column(String, nullable=True)

    shopify_data = Column(JSON, nullable=True)
    shipstation_data = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=_now)
    updated_at = Column(DateTime, default=_now, onupdate=_now)

    group = relationship("EmailGroup", back_populates="emails")
    comments = relationship("EmailComment", back_populates="email", order_by="EmailComment.created_at")


class EmailComment(Base):
    __tablename__ = 'email_comments'
    id = Column(Integer, primary_key=True, index=True)
    email_id = Column(Integer, ForeignKey('email_correspondence.id'), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), index=True, nullable=False)
    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_now)

    email = relationship("EmailCorrespondence", back_populates="comments")
    user = relationship("User")
