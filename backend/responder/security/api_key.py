from fastapi import Depends, HTTPException, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.correspondence_model import User

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_current_user(api_key: str = Security(api_key_header), db: Session = Depends(get_db)) -> User:
    """Resolve the X-API-Key header to its user; every route is scoped to that user."""
    if not api_key:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = db.query(User).filter(User.api_key == api_key).first()
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user
