from datetime import datetime, timedelta
from decimal import Decimal

from database import ADMIN_STATS, DAILY_STATS, Session, to_str_id
from schemas import AdminStats, DailySalesStats, SalesStats

OVERALL = "overall"


def record_sale(session: Session, amount: Decimal, now: datetime) -> None:
    """Count one paid order. Runs inside the payment confirmation transaction."""
    day = now.date().isoformat()
    session.update_one(
        ADMIN_STATS,
        {"_id": OVERALL},
        {"$inc": {"total_orders": 1, "total_earnings": amount}, "$set": {"last_updated": now}},
        upsert=True,
    )
    session.update_one(
        DAILY_STATS,
        {"_id": day},
        {"$inc": {"orders": 1, "earnings": amount}, "$set": {"date": day, "last_updated": now}},
        upsert=True,
    )


def get_admin_stats(session: Session, now: datetime, days: int = 30) -> AdminStats:
    overall = session.find_one(ADMIN_STATS, {"_id": OVERALL})
    wanted = [(now - timedelta(days=i)).date().isoformat() for i in range(days)]
    daily = session.find(DAILY_STATS, {"_id": {"$in": wanted}}, sort=[("date", -1)])
    return AdminStats(
        overall=SalesStats(**overall) if overall else SalesStats(),
        daily=[DailySalesStats(**to_str_id(d)) for d in daily],
    )
