"""Payment intent persistence."""

from paywatch.intents.service import ALLOWED_TRANSITIONS, PaymentIntentStore

__all__ = ["ALLOWED_TRANSITIONS", "PaymentIntentStore"]
