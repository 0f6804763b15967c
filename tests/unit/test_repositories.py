"""Unit tests for the statistics repository"""

from datetime import datetime, timezone
from decimal import Decimal
from moony_analytics.domain.models import SpendingStatistics
from moony_analytics.infrastructure.database.models import UserSpendingAnalytics
from moony_analytics.infrastructure.database.repositories import StatisticsRepository


def snapshot(user_id, average, two_months_ago=None):
    return SpendingStatistics(
        user_id=user_id,
        average_monthly_spending=Decimal(average),
        last_month_spending=Decimal("100.00"),
        two_months_ago_spending=two_months_ago,
        current_month_spending=Decimal("12.34"),
        last_calculated_at=datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc),
    )


def test_upsert_inserts_new_row(db, make_user):
    make_user("user-1")

    StatisticsRepository(db).upsert(snapshot("user-1", "250.00", Decimal("200.00")))
    db.commit()

    row = StatisticsRepository(db).get("user-1")
    assert row.average_monthly_spending == Decimal("250.00")
    assert row.two_months_ago_spending == Decimal("200.00")
    assert row.current_month_spending == Decimal("12.34")


def test_upsert_overwrites_existing_row(db, make_user):
    make_user("user-1")
    repo = StatisticsRepository(db)

    repo.upsert(snapshot("user-1", "250.00", Decimal("200.00")))
    db.commit()
    repo.upsert(snapshot("user-1", "300.00"))
    db.commit()

    rows = db.query(UserSpendingAnalytics).filter(UserSpendingAnalytics.user_id == "user-1").all()
    assert len(rows) == 1
    assert rows[0].average_monthly_spending == Decimal("300.00")
    assert rows[0].two_months_ago_spending is None


def test_get_missing_row(db):
    assert StatisticsRepository(db).get("nobody") is None
