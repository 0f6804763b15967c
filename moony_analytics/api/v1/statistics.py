"""GET /v1/statistics/{user_id} - Latest spending statistics snapshot"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from moony_analytics.api.v1.schemas import StatisticsResponse
from moony_analytics.infrastructure.database.session import get_db
from moony_analytics.infrastructure.database.repositories import StatisticsRepository
from moony_analytics.utils.date_utils import ensure_utc

router = APIRouter()


@router.get("/statistics/{user_id}", response_model=StatisticsResponse)
def get_statistics(user_id: str, db: Session = Depends(get_db)):
    """
    Retrieve the stored statistics for a user.

    Returns 404 until the first successful run.
    """
    row = StatisticsRepository(db).get(user_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Statistics not found")

    return StatisticsResponse(
        user_id=row.user_id,
        average_monthly_spending=row.average_monthly_spending,
        last_month_spending=row.last_month_spending,
        two_months_ago_spending=row.two_months_ago_spending,
        current_month_spending=row.current_month_spending,
        last_calculated_at=ensure_utc(row.last_calculated_at),
    )
