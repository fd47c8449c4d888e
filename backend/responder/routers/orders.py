from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.correspondence_model import User
from ..security.api_key import get_current_user
from ..services.commerce import CommerceUnavailable, OrderTag, find_shipstation_order, lookup_order, remove_tag, tag_order
from ..services.correspondence_service import get_owned_email

router = APIRouter()


class TagRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_number: str = Field(..., alias='orderNumber', min_length=1)
    tag: OrderTag
    email_id: Optional[int] = Field(None, alias='emailId')

    @field_validator('tag', mode='before')
    @classmethod
    def _upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


def _unavailable(e: CommerceUnavailable):
    return HTTPException(status_code=502, detail=str(e))


@router.get("/shopify")
def shopify_order(
    order_number: str = Query(..., min_length=1),
    email_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        order = lookup_order(order_number)
    except CommerceUnavailable as e:
        raise _unavailable(e)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found in Shopify")
    if email_id is not None:
        email = get_owned_email(db, user.id, email_id)
        if email:
            email.shopify_data = order
            db.commit()
    return order


@router.get("/shipstation")
def shipstation_order(order_number: str = Query(..., min_length=1), user: User = Depends(get_current_user)):
    try:
        order = find_shipstation_order(order_number)
    except CommerceUnavailable as e:
        raise _unavailable(e)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found in ShipStation")
    return order


@router.post("/shipstation/tag")
def add_order_tag(payload: TagRequest, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    try:
        order = tag_order(payload.order_number, payload.tag)
    except CommerceUnavailable as e:
        raise _unavailable(e)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found in ShipStation")
    if payload.email_id is not None:
        email = get_owned_email(db, user.id, payload.email_id)
        if email:
            email.shipstation_data = {
                'order_id': order.get('orderId'),
                'order_number': order.get('orderNumber'),
                'order_status': order.get('orderStatus'),
                'tag_added': payload.tag.value,
                'tag_added_at': datetime.now(timezone.utc).isoformat(),
                'tag_added_by': user.email,
            }
            db.commit()
    return {
        'success': True,
        'order_id': order.get('orderId'),
        'order_number': payload.order_number,
        'tag': payload.tag.value,
        'message': f"Tagged order {payload.order_number} with {payload.tag.value}",
    }


@router.delete("/shipstation/tag")
def delete_order_tag(
    order_number: str = Query(..., min_length=1),
    tag: OrderTag = Query(...),
    user: User = Depends(get_current_user),
):
    try:
        order = remove_tag(order_number, tag)
    except CommerceUnavailable as e:
        raise _unavailable(e)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return {'success': True, 'message': f"Removed tag {tag.value} from order {order_number}"}
