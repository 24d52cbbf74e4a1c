"""Shared API dependencies — single import point for all routers.

Collaborators are built once in the application lifespan and stored on
``app.state``; routers receive them through these dependencies, and tests
swap them with ``app.dependency_overrides``::

    from billing_sync.api.deps import get_reconciler
"""

from fastapi import Request

from billing_sync.billing.reconciler import BillingReconciler


def get_reconciler(request: Request) -> BillingReconciler:
    """Return the application's billing reconciler."""
    return request.app.state.reconciler


__all__ = [
    "get_reconciler",
]
