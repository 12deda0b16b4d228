"""
Monthly recurring charges and the invoice cascade.

Generating a month is idempotent per reference: a student (or teacher) that
already has a non-cancelled charge for the period is skipped, so calling a
generator twice leaves the same set of transactions as calling it once.

The invoice cascade is best-effort overall and all-or-nothing per item. Every
provider call is dispatched concurrently and awaited as a group; one failure
never stops the others and the caller gets ``(success_count,
total_attempted)`` instead of an exception.
"""
import calendar
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction as db_transaction

from apps.school.models import EmploymentStatus, EnrollmentStatus, Student, Teacher
from apps.finances.exceptions import FinanceError, ProviderError, TransactionValidationError
from apps.finances.models import FinancialTransaction, ReferenceType, TransactionType
from .invoice_reconciliation import InvoiceReconciler, InvoiceResult
from .transaction_management import validate_amounts, validate_period

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """Settled result of one task: either ``value`` or ``error`` is set."""
    item: Any
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self):
        return self.error is None


def settle_all(func: Callable, items: Iterable, max_workers: int = 8) -> List[Outcome]:
    """
    Run ``func(item)`` for every item concurrently and wait for all of them.

    Exceptions are captured per item rather than raised, and outcomes keep
    the order of ``items``.
    """
    items = list(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as executor:
        futures = [executor.submit(func, item) for item in items]
        wait(futures)

    outcomes = []
    for item, future in zip(items, futures):
        error = future.exception()
        if error is None:
            outcomes.append(Outcome(item=item, value=future.result()))
        else:
            outcomes.append(Outcome(item=item, error=error))
    return outcomes


@dataclass
class CascadeResult:
    results: List[InvoiceResult] = field(default_factory=list)

    @property
    def total_attempted(self):
        return len(self.results)

    @property
    def success_count(self):
        return sum(1 for result in self.results if result.success)

    @property
    def failures(self):
        return [result for result in self.results if not result.success]


@dataclass
class BulkChargeResult:
    transaction_type: str
    month: int
    year: int
    created: List[FinancialTransaction] = field(default_factory=list)
    skipped_count: int = 0
    cascade: Optional[CascadeResult] = None

    @property
    def created_count(self):
        return len(self.created)

    @property
    def message(self):
        label = 'tuition' if self.transaction_type == TransactionType.TUITION else 'salary'
        text = f'{self.created_count} {label} transaction(s) created for {self.month:02d}/{self.year}'
        if self.skipped_count:
            text += f', {self.skipped_count} skipped'
        if self.cascade is not None:
            text += (
                f'; {self.cascade.success_count} invoice(s) succeeded '
                f'of {self.cascade.total_attempted} attempted'
            )
        return text + '.'


def due_date_for(month: int, year: int, day: int) -> date:
    """Configured due day, clamped to the last day of short months."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


class BulkChargeGenerator:
    """
    Create a month of tuition or salary transactions in one call.

    Args:
        reconciler: InvoiceReconciler used by the cascade; built lazily and
            released by ``close()`` when not passed in
        max_workers: thread pool size for concurrent provider calls
    """

    def __init__(self, reconciler=None, max_workers=None):
        self._reconciler = reconciler
        self._owns_reconciler = reconciler is None
        self.max_workers = max_workers or settings.FINANCE_INVOICE_MAX_WORKERS

    @property
    def reconciler(self):
        if self._reconciler is None:
            self._reconciler = InvoiceReconciler()
        return self._reconciler

    def close(self):
        if self._owns_reconciler and self._reconciler is not None:
            self._reconciler.close()
            self._reconciler = None

    def generate_tuitions(self, month: int, year: int, amount: Decimal, created_by=None) -> BulkChargeResult:
        """One pending tuition per active student lacking one for the period."""
        validate_period(month, year)
        validate_amounts(amount)

        due_date = due_date_for(month, year, settings.FINANCE_TUITION_DUE_DAY)
        students = Student.objects.filter(status=EnrollmentStatus.ACTIVE).order_by('name', 'id')

        result = BulkChargeResult(transaction_type=TransactionType.TUITION, month=month, year=year)
        charged = self._already_charged(TransactionType.TUITION, month, year)

        for student in students:
            if student.id in charged:
                result.skipped_count += 1
                continue
            transaction = self._create_charge(
                transaction_type=TransactionType.TUITION,
                reference_type=ReferenceType.STUDENT,
                reference_id=student.id,
                amount=amount,
                due_date=due_date,
                month=month,
                year=year,
                description=f'Tuition {month:02d}/{year} - {student.name}',
                created_by=created_by,
            )
            if transaction is None:
                result.skipped_count += 1
            else:
                result.created.append(transaction)

        logger.info(result.message)
        return result

    def generate_salaries(self, month: int, year: int, created_by=None) -> BulkChargeResult:
        """One pending salary per active teacher, amount from the teacher's salary."""
        validate_period(month, year)

        due_date = due_date_for(month, year, settings.FINANCE_SALARY_DUE_DAY)
        teachers = Teacher.objects.filter(status=EmploymentStatus.ACTIVE).order_by('name', 'id')

        result = BulkChargeResult(transaction_type=TransactionType.SALARY, month=month, year=year)
        charged = self._already_charged(TransactionType.SALARY, month, year)

        for teacher in teachers:
            if teacher.id in charged:
                result.skipped_count += 1
                continue
            if not teacher.salary or teacher.salary <= 0:
                logger.warning("Teacher %s has no salary configured; skipped", teacher.id)
                result.skipped_count += 1
                continue
            transaction = self._create_charge(
                transaction_type=TransactionType.SALARY,
                reference_type=ReferenceType.TEACHER,
                reference_id=teacher.id,
                amount=teacher.salary,
                due_date=due_date,
                month=month,
                year=year,
                description=f'Salary {month:02d}/{year} - {teacher.name}',
                created_by=created_by,
            )
            if transaction is None:
                result.skipped_count += 1
            else:
                result.created.append(transaction)

        logger.info(result.message)
        return result

    def generate_invoices(self, transactions, kind=None) -> CascadeResult:
        """
        Request a provider invoice for every transaction.

        Preparation (validation, customer lookup) and persistence run on this
        thread; only the provider calls go to the pool. Any per-item failure,
        validation or provider, is recorded in that item's result.
        """
        transactions = list(transactions)
        results = {}
        prepared = []

        for transaction in transactions:
            try:
                request = self.reconciler.prepare(transaction, kind)
            except FinanceError as exc:
                results[transaction.id] = InvoiceResult.failure(transaction.id, exc)
                continue
            prepared.append((transaction, request))

        outcomes = settle_all(
            lambda pair: self.reconciler.dispatch(pair[1]),
            prepared,
            max_workers=self.max_workers,
        )

        for outcome in outcomes:
            transaction, request = outcome.item
            if outcome.ok:
                result = self.reconciler.apply(transaction, request, provider_invoice=outcome.value)
            else:
                error = outcome.error
                if not isinstance(error, ProviderError):
                    error = ProviderError(f'Unexpected provider failure: {error}')
                result = self.reconciler.apply(transaction, request, error=error)
            results[transaction.id] = result

        cascade = CascadeResult(results=[results[tx.id] for tx in transactions])
        logger.info(
            "Invoice cascade: %s succeeded of %s attempted",
            cascade.success_count, cascade.total_attempted
        )
        return cascade

    @staticmethod
    def _already_charged(transaction_type, month, year):
        return set(
            FinancialTransaction.objects.for_period(transaction_type, month, year)
            .values_list('reference_id', flat=True)
        )

    @staticmethod
    def _create_charge(*, transaction_type, reference_type, reference_id, amount, due_date,
                       month, year, description, created_by):
        """Create one charge, or return None if a concurrent run got there first."""
        try:
            with db_transaction.atomic():
                return FinancialTransaction.objects.create(
                    transaction_type=transaction_type,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    amount=amount,
                    due_date=due_date,
                    period_month=month,
                    period_year=year,
                    description=description,
                    created_by=created_by,
                )
        except IntegrityError:
            logger.info(
                "%s for %s %s in %02d/%s already exists; skipped",
                transaction_type, reference_type, reference_id, month, year
            )
            return None


def transactions_for_cascade(transaction_ids):
    """Load transactions for a cascade request, rejecting unknown ids."""
    transaction_ids = list(dict.fromkeys(transaction_ids))
    found = FinancialTransaction.objects.in_bulk(transaction_ids)
    missing = [str(tid) for tid in transaction_ids if tid not in found]
    if missing:
        raise TransactionValidationError(f"Unknown transaction ids: {', '.join(missing)}")
    return [found[tid] for tid in transaction_ids]
