"""
Cash-flow summaries for the finance dashboard.

``CashFlowAggregator.summarize`` is a pure function of a transaction set, a
window and "today": no database access and no state kept between calls.
``for_window`` loads the set a window needs and hands it to ``summarize``.

Window rules: a non-cancelled transaction counts its ``final_amount`` as due
on its ``due_date`` and, once paid, as paid on its ``paid_date``. Only dates
inside ``[start, end]`` contribute.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from apps.finances.exceptions import TransactionValidationError
from apps.finances.models import (
    ZERO,
    FinancialTransaction,
    RECEIVABLE_TYPES,
    TransactionStatus,
    TransactionType,
)

logger = logging.getLogger(__name__)


@dataclass
class SideTotals:
    total: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def pending(self):
        return max(self.total - self.paid, ZERO)

    def to_dict(self):
        return {'total': self.total, 'paid': self.paid, 'pending': self.pending}


@dataclass
class DayFigures:
    receivables_paid: Decimal = ZERO
    payables_paid: Decimal = ZERO
    receivables_due: Decimal = ZERO
    payables_due: Decimal = ZERO

    @property
    def net_flow(self):
        return self.receivables_paid - self.payables_paid


@dataclass
class CashFlowSummary:
    start_date: date
    end_date: date
    receivables: SideTotals = field(default_factory=SideTotals)
    payables: SideTotals = field(default_factory=SideTotals)
    daily: Dict[date, DayFigures] = field(default_factory=dict)
    overdue_transactions: List[FinancialTransaction] = field(default_factory=list)
    recent_transactions: List[FinancialTransaction] = field(default_factory=list)

    @property
    def net_flow(self):
        return self.receivables.paid - self.payables.paid

    def daily_breakdown(self):
        return [
            {
                'date': day,
                'receivables_paid': figures.receivables_paid,
                'payables_paid': figures.payables_paid,
                'net_flow': figures.net_flow,
                'receivables_due': figures.receivables_due,
                'payables_due': figures.payables_due,
            }
            for day, figures in sorted(self.daily.items())
        ]

    def monthly_breakdown(self):
        months: Dict[Tuple[int, int], List[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for day, figures in self.daily.items():
            bucket = months[(day.year, day.month)]
            bucket[0] += figures.receivables_paid
            bucket[1] += figures.payables_paid
        return [
            {
                'month': f'{year:04d}-{month:02d}',
                'receivables': receivables,
                'payables': payables,
                'net': receivables - payables,
            }
            for (year, month), (receivables, payables) in sorted(months.items())
        ]


def current_month_window(today: date) -> Tuple[date, date]:
    start = today.replace(day=1)
    if start.month == 12:
        next_month = start.replace(year=start.year + 1, month=1)
    else:
        next_month = start.replace(month=start.month + 1)
    return start, date.fromordinal(next_month.toordinal() - 1)


class CashFlowAggregator:
    """
    Window summaries and period statistics over financial transactions.

    Args:
        today: reference date for overdue classification (defaults to local today)
        recent_limit: how many recently touched transactions to include
    """

    def __init__(self, today: Optional[date] = None, recent_limit: Optional[int] = None):
        self.today = today or timezone.localdate()
        self.recent_limit = recent_limit or settings.FINANCE_RECENT_TRANSACTIONS_LIMIT

    def resolve_window(self, start: Optional[date] = None, end: Optional[date] = None):
        """Fill missing bounds from the current month and reject inverted windows."""
        default_start, default_end = current_month_window(self.today)
        start = start or default_start
        end = end or default_end
        if start > end:
            raise TransactionValidationError('start_date must be on or before end_date.')
        return start, end

    def summarize(self, transactions: Iterable[FinancialTransaction], start: date, end: date) -> CashFlowSummary:
        if start > end:
            raise TransactionValidationError('start_date must be on or before end_date.')

        transactions = list({tx.id: tx for tx in transactions}.values())
        summary = CashFlowSummary(start_date=start, end_date=end)

        for tx in transactions:
            if tx.status == TransactionStatus.CANCELLED:
                continue
            receivable = tx.transaction_type in RECEIVABLE_TYPES
            side = summary.receivables if receivable else summary.payables

            if start <= tx.due_date <= end:
                side.total += tx.final_amount
                day = summary.daily.setdefault(tx.due_date, DayFigures())
                if receivable:
                    day.receivables_due += tx.final_amount
                else:
                    day.payables_due += tx.final_amount

            if tx.status == TransactionStatus.PAID and tx.paid_date and start <= tx.paid_date <= end:
                side.paid += tx.final_amount
                day = summary.daily.setdefault(tx.paid_date, DayFigures())
                if receivable:
                    day.receivables_paid += tx.final_amount
                else:
                    day.payables_paid += tx.final_amount

        summary.overdue_transactions = sorted(
            (tx for tx in transactions if tx.is_overdue(self.today)),
            key=lambda tx: (tx.due_date, tx.created_at, str(tx.id)),
        )
        summary.recent_transactions = sorted(
            transactions,
            key=lambda tx: (tx.updated_at, str(tx.id)),
            reverse=True,
        )[:self.recent_limit]
        return summary

    def for_window(self, start: Optional[date] = None, end: Optional[date] = None) -> CashFlowSummary:
        """Load everything the window needs and summarize it."""
        start, end = self.resolve_window(start, end)

        in_window = Q(due_date__range=(start, end)) | Q(paid_date__range=(start, end))
        transactions = list(
            FinancialTransaction.objects.filter(in_window).exclude(status=TransactionStatus.CANCELLED)
        )
        transactions += list(FinancialTransaction.objects.overdue(self.today))
        transactions += list(FinancialTransaction.objects.order_by('-updated_at', '-id')[:self.recent_limit])

        summary = self.summarize(transactions, start, end)
        logger.debug(
            "Cash flow %s..%s: net %s, %s overdue",
            start, end, summary.net_flow, len(summary.overdue_transactions)
        )
        return summary

    def statistics(self, year: int, month: Optional[int] = None):
        """
        Counts and amounts per type and per effective status for a month or a year.

        Transactions are bucketed by due date; cancelled ones are counted
        but left out of the amounts.
        """
        if month is not None and not (1 <= month <= 12):
            raise TransactionValidationError('Month must be between 1 and 12.')

        queryset = FinancialTransaction.objects.filter(due_date__year=year)
        if month is not None:
            queryset = queryset.filter(due_date__month=month)

        by_type = {
            value: {'count': 0, 'amount': ZERO, 'paid': ZERO, 'pending': ZERO}
            for value in TransactionType.values
        }
        by_status = {
            value: {'count': 0, 'amount': ZERO}
            for value in TransactionStatus.values
        }

        for tx in queryset.only(
            'id', 'transaction_type', 'status', 'final_amount', 'due_date'
        ):
            status = tx.effective_status(self.today)
            type_bucket = by_type[tx.transaction_type]
            status_bucket = by_status[status]
            type_bucket['count'] += 1
            status_bucket['count'] += 1
            if status == TransactionStatus.CANCELLED:
                continue
            type_bucket['amount'] += tx.final_amount
            status_bucket['amount'] += tx.final_amount
            if status == TransactionStatus.PAID:
                type_bucket['paid'] += tx.final_amount
            else:
                type_bucket['pending'] += tx.final_amount

        receivables = sum(
            (by_type[t]['paid'] for t in RECEIVABLE_TYPES), ZERO
        )
        payables = sum(
            (by_type[t]['paid'] for t in TransactionType.values if t not in RECEIVABLE_TYPES), ZERO
        )

        return {
            'year': year,
            'month': month,
            'by_type': by_type,
            'by_status': by_status,
            'overdue_count': by_status[TransactionStatus.OVERDUE]['count'],
            'net_flow': receivables - payables,
        }
