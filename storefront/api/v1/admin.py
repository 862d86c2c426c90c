from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from storefront.api.deps import require_admin
from storefront.core.rate_limiter import limiter
from storefront.db.session import get_db
from storefront.models.user import User
from storefront.services import analytics_service, checkout_service
from storefront.utils.response import success

router = APIRouter()


# ============= ANALYTICS =============

@router.get("/stats")
@limiter.limit("60/minute")
def get_dashboard_stats(
    request: Request,
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: Get analytics dashboard"""
    return success(data=analytics_service.dashboard_stats(db), message="Analytics retrieved successfully")


@router.get("/sales-chart")
@limiter.limit("60/minute")
def get_sales_chart(
    request: Request,
    period: str = Query("7d"),
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return success(data=analytics_service.sales_chart(db, period), message="Sales chart retrieved successfully")


# ============= RECONCILIATION =============

@router.get("/reconciliation")
def get_reconciliation_queue(
    current_admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Admin: payments captured without an order"""
    attempts = checkout_service.list_unreconciled(db)
    return success(
        data=[checkout_service.serialize_attempt(attempt) for attempt in attempts],
        message="Reconciliation queue retrieved successfully",
    )
