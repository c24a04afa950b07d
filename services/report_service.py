from collections import defaultdict
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from sqlmodel import Session, col, func, select

from database.models import Product, Transaction, TransactionItem, utcnow

ZERO = Decimal("0")


def sales_report(session: Session, days: int = 7, top: int = 10) -> dict:
    """
    Sales summary for the last `days` days: totals, top products by revenue,
    a daily series and the payment-method mix.
    """
    start = datetime.combine(utcnow().date() - timedelta(days=days - 1), time.min, tzinfo=timezone.utc)
    transactions = session.exec(
        select(Transaction)
        .where(Transaction.created_at >= start, Transaction.status == "completed")
        .order_by(Transaction.created_at)
    ).all()

    total_sales = sum((t.total_amount for t in transactions), ZERO)
    count = len(transactions)
    average = (total_sales / count).quantize(Decimal("0.01")) if count else ZERO

    # Group by product name so deleted products still count
    product_sales = {}
    transaction_ids = [t.id for t in transactions]
    if transaction_ids:
        items = session.exec(select(TransactionItem).where(col(TransactionItem.transaction_id).in_(transaction_ids))).all()
        for item in items:
            entry = product_sales.setdefault(item.product_name, {"name": item.product_name, "quantity": 0, "revenue": ZERO})
            entry["quantity"] += item.quantity
            entry["revenue"] += item.total_price
    top_products = sorted(product_sales.values(), key=lambda x: x["revenue"], reverse=True)[:top]

    daily = defaultdict(lambda: {"sales": ZERO, "transactions": 0})
    methods = defaultdict(lambda: {"count": 0, "amount": ZERO})
    for t in transactions:
        day = daily[t.created_at.strftime('%Y-%m-%d')]
        day["sales"] += t.total_amount
        day["transactions"] += 1
        method = methods[t.payment_method or "unknown"]
        method["count"] += 1
        method["amount"] += t.total_amount

    daily_sales = [{"date": d, **v} for d, v in sorted(daily.items())]
    payment_methods = [{"method": m, **v} for m, v in sorted(methods.items())]

    low_stock = session.exec(select(Product).where(Product.stock_quantity < Product.min_stock_level)).all()

    return {
        "days": days,
        "total_sales": total_sales,
        "total_transactions": count,
        "average_order_value": average,
        "top_products": top_products,
        "daily_sales": daily_sales,
        "payment_methods": payment_methods,
        "low_stock_products": [
            {"id": p.id, "name": p.name, "stock_quantity": p.stock_quantity, "min_stock_level": p.min_stock_level}
            for p in low_stock
        ],
    }


def dashboard_summary(session: Session) -> dict:
    total_products = session.exec(select(func.count(Product.id))).one()
    low_stock = session.exec(select(func.count(Product.id)).where(Product.stock_quantity < Product.min_stock_level)).one()
    recent_sales = session.exec(select(Transaction).order_by(col(Transaction.created_at).desc()).limit(5)).all()

    today_start = datetime.combine(utcnow().date(), time.min, tzinfo=timezone.utc)
    # SQL sum returns None when there are no rows
    today_sales_total = session.exec(
        select(func.sum(Transaction.total_amount)).where(Transaction.created_at >= today_start)
    ).one() or ZERO

    return {
        "total_products": total_products,
        "low_stock": low_stock,
        "today_sales_total": today_sales_total,
        "recent_sales": [
            {"id": t.id, "invoice_number": t.invoice_number, "total_amount": t.total_amount,
             "payment_method": t.payment_method, "created_at": t.created_at}
            for t in recent_sales
        ],
    }
