import logging

from sqlalchemy.orm import Session

from imaginify.billing.plans import FREE_PLAN_ID, PLANS
from imaginify.errors import NotFoundError, handle_error
from imaginify.models.schemas import UserCreate, UserUpdate
from imaginify.models.user import User

logger = logging.getLogger(__name__)


def create_user(db: Session, user: UserCreate) -> User:
    try:
        new_user = User(
            **user.model_dump(),
            plan_id=FREE_PLAN_ID,
            credit_balance=PLANS[FREE_PLAN_ID].credits,
        )
        db.add(new_user)
        db.commit()
        db.refresh(new_user)
        logger.info(f"User {new_user.id} created for {new_user.email}")
        return new_user
    except Exception as e:
        db.rollback()
        handle_error(e)


def get_user_by_id(db: Session, user_id: int) -> User:
    try:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user
    except Exception as e:
        handle_error(e)


def get_user_by_provider_id(db: Session, provider_id: str) -> User:
    try:
        user = db.query(User).filter(User.provider_id == provider_id).first()
        if user is None:
            raise NotFoundError("User not found")
        return user
    except Exception as e:
        handle_error(e)


def update_user(db: Session, user_id: int, user: UserUpdate) -> User:
    try:
        existing = db.get(User, user_id)
        if existing is None:
            raise NotFoundError("User update failed")
        for field, value in user.model_dump(exclude_unset=True).items():
            setattr(existing, field, value)
        db.commit()
        db.refresh(existing)
        return existing
    except Exception as e:
        db.rollback()
        handle_error(e)


def delete_user(db: Session, user_id: int) -> User:
    try:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        db.delete(user)
        db.commit()
        logger.info(f"User {user_id} deleted")
        return user
    except Exception as e:
        db.rollback()
        handle_error(e)


def update_credits(db: Session, user_id: int, credit_fee: int) -> User:
    """Add ``credit_fee`` (signed) to a user's balance.

    The increment runs as a single UPDATE so concurrent requests do not
    overwrite each other. There is no lower bound on the result.
    """
    try:
        updated = (
            db.query(User)
            .filter(User.id == user_id)
            .update({User.credit_balance: User.credit_balance + credit_fee}, synchronize_session=False)
        )
        if not updated:
            raise NotFoundError("User credits update failed")
        db.commit()
        user = db.get(User, user_id)
        db.refresh(user)
        logger.info(f"Credits for user {user_id} changed by {credit_fee}, balance {user.credit_balance}")
        return user
    except Exception as e:
        db.rollback()
        handle_error(e)
