"""Data access layer for users and spending statistics"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from moony_analytics.infrastructure.database.models import User, UserSpendingAnalytics
from moony_analytics.domain.models import PendingConnection, SpendingStatistics
from moony_analytics.utils.date_utils import ensure_utc


class UserRepository:
    """Repository for users and their Plaid connections"""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def find_user_id_by_item_id(self, item_id: str) -> Optional[str]:
        """Reverse lookup from a Plaid item (connection) to its owner"""
        row = (
            self.db.query(User.id)
            .filter(User.plaid_item_id == item_id)
            .first()
        )
        return row[0] if row else None

    def find_pending_connections(self, connected_before: datetime) -> List[PendingConnection]:
        """
        Users connected before the cutoff with a usable Plaid connection
        but no statistics row, oldest connection first.
        """
        rows = (
            self.db.query(User.id, User.plaid_connected_at)
            .outerjoin(UserSpendingAnalytics, UserSpendingAnalytics.user_id == User.id)
            .filter(
                User.plaid_connected_at.isnot(None),
                User.plaid_connected_at < connected_before,
                User.plaid_item_id.isnot(None),
                User.plaid_access_token.isnot(None),
                UserSpendingAnalytics.id.is_(None),
            )
            .order_by(User.plaid_connected_at.asc())
            .all()
        )
        return [PendingConnection(user_id=user_id, connected_at=ensure_utc(connected_at)) for user_id, connected_at in rows]


class StatisticsRepository:
    """Repository for spending statistics snapshots"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[UserSpendingAnalytics]:
        return (
            self.db.query(UserSpendingAnalytics)
            .filter(UserSpendingAnalytics.user_id == user_id)
            .first()
        )

    def upsert(self, statistics: SpendingStatistics) -> UserSpendingAnalytics:
        """Create or overwrite the user's snapshot; last write wins"""
        row = self.get(statistics.user_id)
        if row is None:
            row = UserSpendingAnalytics(user_id=statistics.user_id)
            self._apply(row, statistics)
            self.db.add(row)
            try:
                self.db.flush()
                return row
            except IntegrityError:
                # A concurrent run inserted first; fall through to overwrite it
                self.db.rollback()
                row = self.get(statistics.user_id)
                if row is None:
                    raise

        self._apply(row, statistics)
        self.db.flush()
        return row

    @staticmethod
    def _apply(row: UserSpendingAnalytics, statistics: SpendingStatistics) -> None:
        row.average_monthly_spending = statistics.average_monthly_spending
        row.last_month_spending = statistics.last_month_spending
        row.two_months_ago_spending = statistics.two_months_ago_spending
        row.current_month_spending = statistics.current_month_spending
        row.last_calculated_at = statistics.last_calculated_at
