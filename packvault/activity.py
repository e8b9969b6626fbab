import json

from sqlalchemy.orm import Session

from . import models


def log_event(
    db: Session,
    user: models.User | None,
    game_type: str | None,
    action: str,
    detail: dict | str,
) -> models.ActivityLog:
    """Queue an audit row in the caller's unit of work; it commits or rolls back with the action."""
    detail_str = (
        json.dumps(detail, ensure_ascii=False, default=str)
        if isinstance(detail, (dict, list))
        else str(detail)
    )
    log = models.ActivityLog(
        user_id=user.id if user else None,
        username=user.username if user else None,
        game_type=game_type,
        action=action,
        detail=detail_str,
    )
    db.add(log)
    return log
