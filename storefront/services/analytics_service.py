from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.core.exceptions import InvalidArgument
from storefront.models.order import Order, OrderItem, OrderStatus
from storefront.models.product import Product
from storefront.models.user import User, UserRole
from storefront.services.pricing import ZERO, to_money

SALES_CHART_PERIODS = {"7d": 7, "30d": 30, "3m": 90}


def dashboard_stats(db: Session) -> dict:
    """Admin: headline numbers for the dashboard"""
    total_revenue = db.query(func.sum(Order.total)).filter(
        Order.status != OrderStatus.CANCELLED
    ).scalar() or ZERO

    total_orders = db.query(Order).count()
    active_products = db.query(Product).filter(Product.is_active == True).count()
    customers = db.query(User).filter(User.role == UserRole.CUSTOMER).count()

    top_products = db.query(
        OrderItem.product_id,
        OrderItem.product_name,
        func.sum(OrderItem.quantity).label("total_sold"),
    ).group_by(OrderItem.product_id, OrderItem.product_name).order_by(
        func.sum(OrderItem.quantity).desc()
    ).limit(5).all()

    recent_orders = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(10).all()

    return {
        "totalRevenue": str(to_money(total_revenue)),
        "totalOrders": total_orders,
        "activeProducts": active_products,
        "customers": customers,
        "topProducts": [
            {"productId": row.product_id, "name": row.product_name, "sold": int(row.total_sold)}
            for row in top_products
        ],
        "recentOrders": [
            {
                "id": order.id,
                "orderNumber": order.order_number,
                "total": str(to_money(order.total)),
                "status": order.status.value,
                "createdAt": order.created_at,
            }
            for order in recent_orders
        ],
    }


def sales_chart(db: Session, period: str = "7d") -> List[dict]:
    """One row per day in the period, days without sales included as zero."""
    if period not in SALES_CHART_PERIODS:
        raise InvalidArgument(f"Invalid period. Allowed values: {', '.join(SALES_CHART_PERIODS)}")

    days = SALES_CHART_PERIODS[period]
    today = datetime.utcnow().date()
    start = today - timedelta(days=days - 1)

    orders = db.query(Order.created_at, Order.total).filter(
        Order.created_at >= datetime.combine(start, datetime.min.time()),
        Order.status != OrderStatus.CANCELLED,
    ).all()

    buckets: Dict[date, Dict[str, object]] = {
        start + timedelta(days=offset): {"revenue": ZERO, "orders": 0}
        for offset in range(days)
    }
    for created_at, total in orders:
        bucket = buckets.get(created_at.date())
        if bucket is None:
            continue
        bucket["revenue"] = bucket["revenue"] + Decimal(str(total))
        bucket["orders"] += 1

    return [
        {"date": day.isoformat(), "revenue": str(to_money(values["revenue"])), "orders": values["orders"]}
        for day, values in sorted(buckets.items())
    ]
