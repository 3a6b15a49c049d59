import logging
from typing import Any, Dict, List

import stripe
from sqlalchemy.orm import Session

from imaginify.billing.plans import FREE_PLAN_ID, PLANS
from imaginify.config import Settings
from imaginify.errors import NotFoundError, UpstreamError, ValidationFailure, handle_error
from imaginify.models.schemas import TransactionCreate
from imaginify.models.transaction import Transaction
from imaginify.models.user import User

logger = logging.getLogger(__name__)


def checkout_credits(settings: Settings, plan_id: int, buyer: User) -> str:
    """Open a Stripe checkout session for a credit package and return its URL."""
    plan = PLANS.get(plan_id)
    if plan is None or plan_id == FREE_PLAN_ID:
        raise ValidationFailure(f"Plan {plan_id} cannot be purchased")

    stripe.api_key = settings.stripe_secret_key
    try:
        session = stripe.checkout.Session.create(
            line_items=[{
                "price_data": {
                    "currency": "usd",
                    "unit_amount": int(plan.price * 100),  # cents
                    "product_data": {"name": plan.name},
                },
                "quantity": 1,
            }],
            metadata={
                "plan": plan.name,
                "credits": str(plan.credits),
                "buyer_id": str(buyer.id),
            },
            mode="payment",
            success_url=f"{settings.public_server_url}/profile",
            cancel_url=f"{settings.public_server_url}/",
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout error: {e}")
        raise UpstreamError(f"Checkout failed: {e.user_message or str(e)}") from e

    logger.info(f"Checkout session {session.id} opened for user {buyer.id}, plan {plan.name}")
    return session.url


def create_transaction(db: Session, transaction: TransactionCreate) -> Transaction:
    """Record a completed payment and grant its credits in one commit.

    Replayed payments (same ``stripe_id``) return the stored transaction
    without granting credits again.
    """
    try:
        existing = db.query(Transaction).filter(Transaction.stripe_id == transaction.stripe_id).first()
        if existing is not None:
            logger.info(f"Transaction {transaction.stripe_id} already recorded")
            return existing

        if db.get(User, transaction.buyer_id) is None:
            raise NotFoundError("Buyer not found")

        new_transaction = Transaction(**transaction.model_dump())
        db.add(new_transaction)
        db.query(User).filter(User.id == transaction.buyer_id).update(
            {User.credit_balance: User.credit_balance + transaction.credits},
            synchronize_session=False,
        )
        db.commit()
        db.refresh(new_transaction)
        logger.info(f"Transaction {new_transaction.stripe_id}: {transaction.credits} credits to user {transaction.buyer_id}")
        return new_transaction
    except Exception as e:
        db.rollback()
        handle_error(e)


def transaction_from_checkout(session: Dict[str, Any]) -> TransactionCreate:
    metadata = session.get("metadata") or {}
    try:
        return TransactionCreate(
            stripe_id=session["id"],
            amount=(session.get("amount_total") or 0) / 100,
            plan=metadata["plan"],
            credits=int(metadata["credits"]),
            buyer_id=int(metadata["buyer_id"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationFailure(f"Malformed checkout session: {e}") from e


def get_user_transactions(db: Session, user_id: int) -> List[Transaction]:
    try:
        return (
            db.query(Transaction)
            .filter(Transaction.buyer_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .all()
        )
    except Exception as e:
        handle_error(e)
