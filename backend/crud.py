"""
Persistence for accounts, reports and comments.

Every write is a single statement followed by a commit; there is no
cross-call transaction. Lookups return None on a miss. Integrity
failures (bad foreign key, duplicate email) raise ConstraintError; any
other database failure rolls back and raises PersistenceError.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import ConstraintError, PersistenceError
from schemas import CommentOut, PublicProfile, ReportOut

logger = logging.getLogger(__name__)


def as_utc_naive(value: datetime) -> datetime:
    """Normalize a timestamp to the naive-UTC form used by the columns."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _save(db: Session, obj):
    db.add(obj)
    try:
        db.commit()
        db.refresh(obj)
    except IntegrityError as e:
        db.rollback()
        raise ConstraintError(f"{type(obj).__name__} violates a store constraint") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"could not save {type(obj).__name__}: {e}") from e
    return obj


def _delete_by_id(db: Session, model, obj_id: int) -> bool:
    try:
        query = db.query(model).filter(model.id == obj_id)
        affected_rows = query.delete(synchronize_session='fetch')
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"could not delete {model.__name__} {obj_id}: {e}") from e
    return affected_rows > 0


# ══════════════════════════════════════
#   USERS
# ══════════════════════════════════════

def create_user(db: Session, user: models.User) -> models.User:
    user = _save(db, user)
    logger.info(f"[Users] Created user {user.id}")
    return user


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def update_user(db: Session, user: models.User) -> models.User:
    """Persist edits to name, email or password hash. exp and is_admin are not touched here."""
    user.updated_at = models.utcnow()
    user = _save(db, user)
    logger.info(f"[Users] Updated user {user.id}")
    return user


def list_users(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(models.User.created_at.desc(), models.User.id.desc()).all()


def delete_user(db: Session, user_id: int) -> bool:
    """Reports, comments on them and comments by the user go with it (ON DELETE CASCADE)."""
    return _delete_by_id(db, models.User, user_id)


# ══════════════════════════════════════
#   REPORTS
# ══════════════════════════════════════

def create_report(db: Session, report: models.Report) -> models.Report:
    report = _save(db, report)
    logger.info(f"[Reports] Created report {report.id} for user {report.user_id}")
    return report


def get_report(db: Session, report_id: int) -> Optional[models.Report]:
    return db.query(models.Report).filter(models.Report.id == report_id).first()


def _report_view(report: models.Report, user: models.User) -> ReportOut:
    return ReportOut(
        id=report.id,
        user_id=report.user_id,
        user=PublicProfile.model_validate(user),
        latitude=report.latitude,
        longitude=report.longitude,
        image_path=report.image_path or "",
        description=report.description,
        trail=report.trail or "",
        created_at=report.created_at,
    )


def get_report_view(db: Session, report_id: int) -> Optional[ReportOut]:
    row = (
        db.query(models.Report, models.User)
        .join(models.User, models.Report.user_id == models.User.id)
        .filter(models.Report.id == report_id)
        .first()
    )
    return _report_view(*row) if row else None


def get_reports_by_date_range(db: Session, start: datetime, end: datetime) -> List[ReportOut]:
    """Reports created within [start, end], inclusive, newest first."""
    start, end = as_utc_naive(start), as_utc_naive(end)
    if start > end:
        return []

    rows = (
        db.query(models.Report, models.User)
        .join(models.User, models.Report.user_id == models.User.id)
        .filter(and_(models.Report.created_at >= start, models.Report.created_at <= end))
        .order_by(models.Report.created_at.desc(), models.Report.id.desc())
        .all()
    )
    return [_report_view(report, user) for report, user in rows]


def delete_report(db: Session, report_id: int) -> bool:
    deleted = _delete_by_id(db, models.Report, report_id)
    if deleted:
        logger.info(f"[Reports] Deleted report {report_id}")
    return deleted


def get_oldest_report_with_image(db: Session) -> Optional[models.Report]:
    return (
        db.query(models.Report)
        .filter(models.Report.image_path.isnot(None), models.Report.image_path != "")
        .order_by(models.Report.created_at.asc(), models.Report.id.asc())
        .first()
    )


# ══════════════════════════════════════
#   COMMENTS
# ══════════════════════════════════════

def create_comment(db: Session, comment: models.Comment) -> models.Comment:
    return _save(db, comment)


def get_comments_for_report(db: Session, report_id: int) -> List[CommentOut]:
    rows = (
        db.query(models.Comment, models.User)
        .join(models.User, models.Comment.user_id == models.User.id)
        .filter(models.Comment.post_id == report_id)
        .order_by(models.Comment.created_at.asc(), models.Comment.id.asc())
        .all()
    )
    return [
        CommentOut(
            id=c.id,
            post_id=c.post_id,
            user_id=c.user_id,
            user=PublicProfile.model_validate(u),
            content=c.content,
            created_at=c.created_at,
        )
        for c, u in rows
    ]
