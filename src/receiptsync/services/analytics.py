"""Spending analytics over the local receipt store."""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

import pandas as pd
from pydantic import BaseModel, Field

from receiptsync.models.money import ZERO

if TYPE_CHECKING:
    from receiptsync.models import ReceiptRecord
    from receiptsync.services.repository import ReceiptRepository

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Other"
MONTH_FORMAT = "%b %Y"


class SpendingSummary(BaseModel):
    """Aggregated spending figures."""

    receipt_count: int = 0
    total_spending: Decimal = ZERO
    by_month: dict[str, Decimal] = Field(default_factory=dict)
    by_category: dict[str, Decimal] = Field(default_factory=dict)


def _decimal_sum(values: pd.Series) -> Decimal:
    return sum(values, ZERO)


def _utc_timestamp(value: datetime) -> pd.Timestamp:
    stamp = pd.Timestamp(value)
    if stamp.tzinfo is None:
        return stamp.tz_localize("UTC")
    return stamp.tz_convert("UTC")


class SpendingAnalytics:
    """Read-only spending views computed from stored receipts.

    Amounts stay ``Decimal`` throughout; pandas is only used for grouping.
    Receipts without a transaction date fall back to their creation time.
    Every view accepts the same inclusive ``[start, end]`` range, so the parts
    of a summary always describe the same receipts.
    """

    def __init__(self, repository: ReceiptRepository) -> None:
        self.repository = repository

    def _receipts_frame(self, records: list[ReceiptRecord]) -> pd.DataFrame:
        df = pd.DataFrame(
            [
                {
                    "id": record.id,
                    "date": record.transaction_date or record.created_at,
                    "total": record.total,
                }
                for record in records
            ],
            columns=["id", "date", "total"],
        )
        if not df.empty:
            df["date"] = pd.to_datetime(df["date"], utc=True)
        return df

    def _items_frame(self, records: list[ReceiptRecord]) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "category": item.category or DEFAULT_CATEGORY,
                    "amount": item.line_total,
                }
                for record in records
                for item in record.line_items
            ],
            columns=["category", "amount"],
        )

    def receipts_in_range(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ReceiptRecord]:
        """Stored receipts whose effective date falls within [start, end]."""
        records = self.repository.list()
        if start is None and end is None:
            return records

        df = self._receipts_frame(records)
        if df.empty:
            return []
        if start is not None:
            df = df[df["date"] >= _utc_timestamp(start)]
        if end is not None:
            df = df[df["date"] <= _utc_timestamp(end)]
        keep = set(df["id"])
        return [record for record in records if record.id in keep]

    def _total(self, records: list[ReceiptRecord]) -> Decimal:
        df = self._receipts_frame(records)
        if df.empty:
            return ZERO
        return _decimal_sum(df["total"])

    def _by_month(self, records: list[ReceiptRecord]) -> dict[str, Decimal]:
        df = self._receipts_frame(records)
        if df.empty:
            return {}

        df = df.assign(month=df["date"].dt.tz_localize(None).dt.to_period("M"))
        grouped = df.groupby("month", sort=True)["total"].apply(_decimal_sum)
        return {
            period.to_timestamp().strftime(MONTH_FORMAT): amount
            for period, amount in grouped.items()
        }

    def _by_category(self, records: list[ReceiptRecord]) -> dict[str, Decimal]:
        df = self._items_frame(records)
        if df.empty:
            return {}

        grouped = df.groupby("category")["amount"].apply(_decimal_sum)
        ordered = sorted(grouped.items(), key=lambda pair: (-pair[1], pair[0]))
        return dict(ordered)

    def total_spending(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Decimal:
        """Sum of receipt totals, optionally within [start, end]."""
        return self._total(self.receipts_in_range(start, end))

    def spending_by_month(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Decimal]:
        """Receipt totals per calendar month, oldest first, keyed 'Jul 2025'."""
        return self._by_month(self.receipts_in_range(start, end))

    def spending_by_category(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Decimal]:
        """Line-item spending per category, largest first.

        Each item counts as unit price times quantity, so multi-quantity lines
        weigh in at what was actually paid rather than at their unit price.
        """
        return self._by_category(self.receipts_in_range(start, end))

    def summary(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> SpendingSummary:
        """All spending views over one set of receipts."""
        records = self.receipts_in_range(start, end)
        summary = SpendingSummary(
            receipt_count=len(records),
            total_spending=self._total(records),
            by_month=self._by_month(records),
            by_category=self._by_category(records),
        )
        logger.debug(
            "Computed spending summary",
            extra={"receipt_count": summary.receipt_count},
        )
        return summary
