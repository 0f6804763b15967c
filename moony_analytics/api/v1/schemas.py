"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class WebhookResponse(BaseModel):
    """Response for POST /v1/webhooks/plaid"""

    status: str = "success"
    message: str


class ScanResponse(BaseModel):
    """Response for POST /v1/reconciliation/scan"""

    processed: int
    succeeded: int
    failed: int


class ReconciliationHealthResponse(BaseModel):
    """Response for GET /v1/reconciliation/health"""

    status: str
    users_needing_statistics: int
    oldest_pending_connection: Optional[datetime] = None


class StatisticsResponse(BaseModel):
    """Response for GET /v1/statistics/{user_id}"""

    user_id: str
    average_monthly_spending: Decimal
    last_month_spending: Decimal
    two_months_ago_spending: Optional[Decimal] = None
    current_month_spending: Decimal
    last_calculated_at: datetime
