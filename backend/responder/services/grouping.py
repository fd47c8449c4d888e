"""Queue conversations by category and cluster them by similarity tags."""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.correspondence_model import EmailCorrespondence, EmailGroup, User
from ..schemas.triage import Category

log = logging.getLogger(__name__)

CATEGORY_ORDER = [
    Category.PRIORITY,
    Category.ORDER_STATUS,
    Category.WHOLESALE,
    Category.NO_ACTION,
    Category.OTHER,
]

GROUP_META: Dict[Category, Dict] = {
    Category.PRIORITY: {
        "name": "Priority Messages (Damaged/Wrong Items)",
        "description": "Urgent issues requiring immediate attention",
        "priority": 1,
        "is_expanded": True,
    },
    Category.ORDER_STATUS: {
        "name": "Order Status Messages",
        "description": "Questions about order status and tracking",
        "priority": 2,
        "is_expanded": False,
    },
    Category.WHOLESALE: {
        "name": "Wholesale Inquiries",
        "description": "Business and wholesale inquiries",
        "priority": 3,
        "is_expanded": False,
    },
    Category.OTHER: {
        "name": "Other Messages",
        "description": "General inquiries and other messages",
        "priority": 4,
        "is_expanded": False,
    },
    Category.NO_ACTION: {
        "name": "No Action Needed",
        "description": "Messages that don't require a response",
        "priority": 5,
        "is_expanded": False,
    },
}


@dataclass
class Cluster:
    tags: FrozenSet[str]
    emails: List[EmailCorrespondence] = field(default_factory=list)

    @property
    def top_urgency(self) -> int:
        return max((_urgency(e) for e in self.emails), default=0)


@dataclass
class GroupResult:
    group: EmailGroup
    emails: List[EmailCorrespondence]
    clusters: List[Cluster]


def _urgency(email: EmailCorrespondence) -> int:
    return email.urgency or 0


def _tag_key(email: EmailCorrespondence) -> FrozenSet[str]:
    return frozenset(t.strip().lower() for t in (email.similarity_tags or []) if t and t.strip())


def category_of(email: EmailCorrespondence) -> Category:
    try:
        return Category(email.category)
    except ValueError:
        return Category.OTHER


def cluster_by_similarity(emails: Sequence[EmailCorrespondence]) -> List[Cluster]:
    """Conversations with the same (order-independent) tag set share a cluster.

    Each cluster is sorted by urgency, highest first; clusters are ordered by
    their most urgent member, ties keeping first-seen order.
    """
    clusters: Dict[FrozenSet[str], Cluster] = {}
    for email in emails:
        key = _tag_key(email)
        clusters.setdefault(key, Cluster(tags=key)).emails.append(email)
    ordered = list(clusters.values())
    for c in ordered:
        c.emails.sort(key=_urgency, reverse=True)
    ordered.sort(key=lambda c: c.top_urgency, reverse=True)
    return ordered


def flatten(clusters: Sequence[Cluster]) -> List[EmailCorrespondence]:
    return [e for c in clusters for e in c.emails]


def partition_by_category(emails: Sequence[EmailCorrespondence]) -> Dict[Category, List[EmailCorrespondence]]:
    buckets: Dict[Category, List[EmailCorrespondence]] = {c: [] for c in CATEGORY_ORDER}
    for email in emails:
        buckets[category_of(email)].append(email)
    return {c: members for c, members in buckets.items() if members}


def find_or_create_group(db: Session, user_id: int, category: Category) -> EmailGroup:
    group = db.query(EmailGroup).filter(EmailGroup.user_id == user_id, EmailGroup.type == category.value).first()
    if group:
        return group
    meta = GROUP_META[category]
    try:
        with db.begin_nested():
            group = EmailGroup(user_id=user_id, type=category.value, **meta)
            db.add(group)
        return group
    except IntegrityError:
        # created concurrently by another request for the same user
        log.info("group_create_conflict", extra={"user_id": user_id, "category": category.value})
        return db.query(EmailGroup).filter(EmailGroup.user_id == user_id, EmailGroup.type == category.value).one()


def assign_groups(db: Session, user: User, emails: Sequence[EmailCorrespondence]) -> List[GroupResult]:
    """Put every conversation in its category's group, replacing any earlier assignment."""
    results: List[GroupResult] = []
    for category, members in partition_by_category(emails).items():
        group = find_or_create_group(db, user.id, category)
        ids = [e.id for e in members]
        db.query(EmailCorrespondence).filter(
            EmailCorrespondence.id.in_(ids), EmailCorrespondence.user_id == user.id
        ).update({EmailCorrespondence.group_id: group.id}, synchronize_session=False)
        clusters = cluster_by_similarity(members)
        results.append(GroupResult(group=group, emails=flatten(clusters), clusters=clusters))
    db.commit()
    for r in results:
        db.refresh(r.group)
    results.sort(key=lambda r: r.group.priority)
    log.info("groups_assigned", extra={"user_id": user.id, "count": len(results)})
    return results


def ordered_group_members(group: EmailGroup) -> GroupResult:
    """Re-derive cluster order for a stored group (cluster order is never persisted)."""
    clusters = cluster_by_similarity(list(group.emails))
    return GroupResult(group=group, emails=flatten(clusters), clusters=clusters)
