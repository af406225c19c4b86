"""Activity router: the current user's expense notifications."""

from typing import Annotated
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db
from dependencies import get_current_user


router = APIRouter(tags=["activity"])


@router.get("/activity", response_model=list[schemas.Activity])
def read_activity(
    current_user: Annotated[models.User, Depends(get_current_user)],
    limit: int = 50,
    db: Session = Depends(get_db)
):
    return db.query(models.Activity).filter(
        models.Activity.user_id == current_user.id
    ).order_by(models.Activity.id.desc()).limit(min(max(limit, 1), 200)).all()
