import logging
from typing import List, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from errors import InvalidAmountError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

COMMENT_EXP = 10
MAX_LEADERBOARD = 100


class Rank(NamedTuple):
    rank: int
    exp: int


def award_exp(db: Session, user_id: int, amount: int) -> None:
    """
    Add `amount` to the user's exp.

    The increment is done in SQL (exp = exp + amount), so concurrent awards
    on the same row cannot lose updates.
    """
    if type(amount) is not int or amount <= 0:
        raise InvalidAmountError(f"exp amount must be a positive integer, got {amount!r}")

    affected_rows = (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .update(
            {models.User.exp: models.User.exp + amount, models.User.updated_at: models.utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    if affected_rows == 0:
        raise NotFoundError(f"user {user_id} not found")


def award_comment_exp(db: Session, author_id: int, owner_id: int) -> None:
    """
    Reward a new comment: COMMENT_EXP to its author and to the report owner.

    Advisory only. A failed award is logged and never undoes the comment.
    """
    for user_id in (author_id, owner_id):
        try:
            award_exp(db, user_id, COMMENT_EXP)
        except (SQLAlchemyError, NotFoundError) as e:
            db.rollback()
            logger.warning(f"[Exp] Could not award {COMMENT_EXP} exp to user {user_id}: {e}")


def leaderboard(db: Session, limit: int) -> List[models.User]:
    """Top `limit` users by exp. Ties go to the lower (older) user id."""
    if limit < 1 or limit > MAX_LEADERBOARD:
        raise ValidationError(f"limit must be between 1 and {MAX_LEADERBOARD}")
    return (
        db.query(models.User)
        .order_by(models.User.exp.desc(), models.User.id.asc())
        .limit(limit)
        .all()
    )


def rank(db: Session, user_id: int) -> Optional[Rank]:
    """1 + number of users with strictly more exp. None if the user does not exist."""
    exp = db.query(models.User.exp).filter(models.User.id == user_id).scalar()
    if exp is None:
        return None
    ahead = db.query(models.User).filter(models.User.exp > exp).count()
    return Rank(rank=ahead + 1, exp=exp)
