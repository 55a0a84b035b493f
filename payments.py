import logging
from typing import Optional

import stripe
from fastapi import HTTPException

from config import CURRENCY, REGISTRATION_FEE_AMOUNT, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

# Stripe setup
stripe.api_key = STRIPE_SECRET_KEY


def create_checkout(email: str, user_id: str, purpose: str, success_url: str, cancel_url: str) -> dict:
    """One-time registration fee checkout."""
    if not stripe.api_key:
        raise HTTPException(status_code=500, detail="Stripe not configured")
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            customer_email=email,
            line_items=[
                {
                    "price_data": {
                        "currency": CURRENCY,
                        "product_data": {
                            "name": "AOTF registration fee",
                            "description": f"One-time {purpose} registration",
                        },
                        "unit_amount": REGISTRATION_FEE_AMOUNT,
                    },
                    "quantity": 1,
                }
            ],
            metadata={"userId": user_id, "purpose": purpose},
            success_url=success_url + "?session_id={CHECKOUT_SESSION_ID}",
            cancel_url=cancel_url,
        )
    except stripe.StripeError as e:
        logger.warning("Stripe checkout creation failed for %s: %s", user_id, e)
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Checkout session %s created for %s", session.id, user_id)
    return {"id": session.id, "url": session.url}


def verify_checkout(session_id: str, user_id: str) -> Optional[str]:
    """Returns the Stripe payment intent id when the session is paid by this user, else None."""
    if not stripe.api_key:
        raise HTTPException(status_code=500, detail="Stripe not configured")
    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    metadata = session.metadata or {}
    if metadata.get("userId") != user_id:
        raise HTTPException(status_code=403, detail="Checkout session belongs to another user")
    if session.payment_status != "paid":
        return None
    return session.payment_intent or session.id
