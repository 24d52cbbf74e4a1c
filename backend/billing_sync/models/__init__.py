"""SQLAlchemy models for Billing Sync.

All models are imported here so that ``Base.metadata`` knows every table
before ``create_all`` runs. If you add a new model, import it in this file.
"""

from billing_sync.models.plan import Plan
from billing_sync.models.subscription import Subscription

__all__ = [
    "Plan",
    "Subscription",
]
