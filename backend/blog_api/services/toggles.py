import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from blog_api.db.base import Base
from blog_api.db.session import atomic

logger = logging.getLogger(__name__)


@dataclass
class ToggleResult:
    added: bool
    row: Any | None = None


def toggle_association(db: Session, model: type[Base], **keys: int) -> ToggleResult:
    """Create the (actor, target) row if absent, delete it if present.

    Check-then-act is not atomic. When a concurrent toggle from the same actor
    wins the race, the end state it produced is reported instead of an error.
    """
    existing = db.get(model, keys)
    if existing is None:
        row = model(**keys)
        try:
            with atomic(db):
                db.add(row)
        except IntegrityError:
            current = db.get(model, keys)
            if current is None:
                raise
            logger.info("Toggle insert lost a race model=%s keys=%s", model.__tablename__, keys)
            return ToggleResult(added=True, row=current)
        return ToggleResult(added=True, row=row)

    criteria = [getattr(model, name) == value for name, value in keys.items()]
    with atomic(db):
        result = db.execute(delete(model).where(*criteria))
    if result.rowcount == 0:
        logger.info("Toggle delete found nothing to remove model=%s keys=%s", model.__tablename__, keys)
    return ToggleResult(added=False)
