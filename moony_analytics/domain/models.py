"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class Transaction:
    """Transaction record from the external provider (positive amount = money out)"""

    transaction_id: str
    amount: Decimal
    date: date
    account_id: str
    merchant_name: Optional[str] = None
    category: List[str] = field(default_factory=list)

    @property
    def categories(self) -> List[str]:
        return list(self.category or [])

    @classmethod
    def from_provider(cls, raw: Mapping[str, Any]) -> "Transaction":
        """
        Build from a provider JSON record.

        Raises:
            ValueError: If a required field is missing or cannot be parsed
        """
        try:
            categories = raw.get("category") or []
            if isinstance(categories, str):
                categories = [categories]
            amount = Decimal(str(raw["amount"]))
            if not amount.is_finite():
                raise ValueError(f"non-finite amount {raw['amount']!r}")
            return cls(
                transaction_id=str(raw["transaction_id"]),
                amount=amount,
                date=date.fromisoformat(raw["date"]),
                account_id=str(raw.get("account_id") or ""),
                merchant_name=raw.get("merchant_name"),
                category=[str(c) for c in categories],
            )
        except (AttributeError, KeyError, TypeError, InvalidOperation) as e:
            raise ValueError(f"Malformed transaction record: {e}") from e


@dataclass(frozen=True)
class ProcessedTransaction:
    """Spending transaction kept for statistics"""

    transaction_id: str
    amount: Decimal
    date: date
    account_id: str
    merchant_name: Optional[str] = None
    category: Optional[str] = None  # primary category only

    @property
    def categories(self) -> List[str]:
        return [self.category] if self.category else []


@dataclass
class MonthlyAggregate:
    """Spending total for one calendar month"""

    year: int
    month: int
    total_spending: Decimal
    transaction_count: int


@dataclass(frozen=True)
class SpendingSummary:
    """Aggregated spending figures, rounded to cents"""

    average_monthly_spending: Decimal
    last_month_spending: Decimal
    two_months_ago_spending: Optional[Decimal]
    current_month_spending: Decimal

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "average_monthly_spending": str(self.average_monthly_spending),
            "last_month_spending": str(self.last_month_spending),
            "two_months_ago_spending": (
                str(self.two_months_ago_spending) if self.two_months_ago_spending is not None else None
            ),
            "current_month_spending": str(self.current_month_spending),
        }


@dataclass(frozen=True)
class SpendingStatistics:
    """Persisted statistics snapshot for a user"""

    user_id: str
    average_monthly_spending: Decimal
    last_month_spending: Decimal
    two_months_ago_spending: Optional[Decimal]
    current_month_spending: Decimal
    last_calculated_at: datetime

    @classmethod
    def from_summary(cls, user_id: str, summary: SpendingSummary, calculated_at: datetime) -> "SpendingStatistics":
        return cls(
            user_id=user_id,
            average_monthly_spending=summary.average_monthly_spending,
            last_month_spending=summary.last_month_spending,
            two_months_ago_spending=summary.two_months_ago_spending,
            current_month_spending=summary.current_month_spending,
            last_calculated_at=calculated_at,
        )


@dataclass(frozen=True)
class VerificationKey:
    """Provider-published public key for webhook signature checks"""

    key_id: str
    jwk: Dict[str, Any]
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass
class ProcessingOutcome:
    """Result handed back to the HTTP layer for a webhook delivery"""

    success: bool
    message: str
    retryable: bool = False
    dispatched: bool = False  # a statistics run was started


@dataclass
class PendingConnection:
    """Connected user still waiting for a statistics snapshot"""

    user_id: str
    connected_at: datetime
