"""Single-transaction operations: create, update, pay, cancel, delete, list."""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from django.db import IntegrityError, transaction as db_transaction
from django.db.models import Count, DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from apps.accounts.models import User
from apps.school.models import Student, Teacher
from apps.finances.exceptions import (
    ConflictError,
    FinanceError,
    TransactionNotFoundError,
    TransactionValidationError,
)
from apps.finances.models import (
    ZERO,
    ExternalInvoice,
    FinancialTransaction,
    PAYABLE_TYPES,
    RECEIVABLE_TYPES,
    ReferenceType,
    TransactionStatus,
    compute_final_amount,
)
from .references import validate_reference
from .status_machine import PaymentStatusMachine

logger = logging.getLogger(__name__)


# Fields update_transaction accepts; type and reference are fixed at creation
MUTABLE_FIELDS = (
    'amount',
    'discount',
    'late_fee',
    'due_date',
    'description',
    'observation',
    'category',
)
IMMUTABLE_FIELDS = ('transaction_type', 'reference_type', 'reference_id', 'period_month', 'period_year')


def validate_amounts(amount, discount=ZERO, late_fee=ZERO):
    """Reject non-positive amounts, negative adjustments and negative totals."""
    if amount is None or amount <= 0:
        raise TransactionValidationError('Amount must be greater than zero.')
    if discount is not None and discount < 0:
        raise TransactionValidationError('Discount cannot be negative.')
    if late_fee is not None and late_fee < 0:
        raise TransactionValidationError('Late fee cannot be negative.')
    if compute_final_amount(amount, discount, late_fee) < 0:
        raise TransactionValidationError('Discount cannot exceed amount plus late fee.')


def validate_period(month, year):
    if (month is None) != (year is None):
        raise TransactionValidationError('Billing period needs both month and year.')
    if month is not None and not (1 <= month <= 12):
        raise TransactionValidationError('Month must be between 1 and 12.')
    if year is not None and not (2000 <= year <= 2100):
        raise TransactionValidationError('Year must be between 2000 and 2100.')


@db_transaction.atomic
def create_transaction(
    *,
    transaction_type: str,
    amount: Decimal,
    due_date: date,
    discount: Decimal = ZERO,
    late_fee: Decimal = ZERO,
    reference_type: str = '',
    reference_id: Optional[UUID] = None,
    description: str = '',
    observation: str = '',
    category: str = '',
    period_month: Optional[int] = None,
    period_year: Optional[int] = None,
    created_by: Optional[User] = None,
) -> FinancialTransaction:
    """
    Create a pending financial transaction.

    Raises:
        TransactionValidationError: bad amounts, bad period, or a reference
            that does not match the transaction type
        ConflictError: a non-cancelled charge already exists for the same
            reference and billing period
    """
    validate_amounts(amount, discount, late_fee)
    validate_period(period_month, period_year)
    validate_reference(transaction_type, reference_type, reference_id)

    if period_month is not None:
        duplicate = FinancialTransaction.objects.for_period(
            transaction_type, period_month, period_year
        ).for_reference(reference_type, reference_id).exists()
        if duplicate:
            raise ConflictError(
                f'A {transaction_type} for {period_month:02d}/{period_year} already exists for this {reference_type}.'
            )

    try:
        with db_transaction.atomic():
            transaction = FinancialTransaction.objects.create(
                transaction_type=transaction_type,
                amount=amount,
                discount=discount or ZERO,
                late_fee=late_fee or ZERO,
                due_date=due_date,
                reference_type=reference_type or '',
                reference_id=reference_id,
                description=description,
                observation=observation,
                category=category,
                period_month=period_month,
                period_year=period_year,
                created_by=created_by,
            )
    except IntegrityError:
        raise ConflictError('A charge for this reference and period already exists.')

    logger.info(
        "Created %s transaction %s for %s",
        transaction_type, transaction.id, transaction.final_amount
    )
    return transaction


def get_transaction(transaction_id: UUID) -> FinancialTransaction:
    try:
        return FinancialTransaction.objects.select_related('external_invoice').get(id=transaction_id)
    except FinancialTransaction.DoesNotExist:
        raise TransactionNotFoundError(f'Financial transaction {transaction_id} not found.')


def _lock(transaction_id):
    try:
        return FinancialTransaction.objects.select_for_update().get(id=transaction_id)
    except FinancialTransaction.DoesNotExist:
        raise TransactionNotFoundError(f'Financial transaction {transaction_id} not found.')


@db_transaction.atomic
def update_transaction(transaction_id: UUID, **changes) -> FinancialTransaction:
    """
    Edit a pending transaction.

    ``final_amount`` is recomputed from the new amount/discount/late fee.

    Raises:
        TransactionValidationError: immutable field or unknown field given, bad amounts
        InvalidTransitionError: transaction is paid or cancelled
        ConflictError: amounts or due date changed while a provider invoice is open
    """
    for field_name in IMMUTABLE_FIELDS:
        if field_name in changes:
            raise TransactionValidationError(f'{field_name} cannot be changed after creation.')
    unknown = set(changes) - set(MUTABLE_FIELDS)
    if unknown:
        raise TransactionValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    transaction = _lock(transaction_id)
    PaymentStatusMachine.ensure_mutable(transaction)

    if {'amount', 'discount', 'late_fee', 'due_date'} & set(changes):
        invoice = ExternalInvoice.objects.filter(transaction=transaction).first()
        if invoice is not None and invoice.is_open:
            raise ConflictError('Cancel the open provider invoice before changing amounts or due date.')

    validate_amounts(
        changes.get('amount', transaction.amount),
        changes.get('discount', transaction.discount),
        changes.get('late_fee', transaction.late_fee),
    )

    for field_name, value in changes.items():
        setattr(transaction, field_name, value)
    transaction.save()
    return transaction


def pay_transaction(
    transaction_id: UUID,
    *,
    payment_method: str,
    paid_date: Optional[date] = None,
    reconciler=None,
) -> FinancialTransaction:
    """
    Record a payment.

    After the payment is committed, an invoice still open on the provider is
    handed to the reconciler so both sides agree.

    Raises:
        ConflictError: already paid (transaction left unchanged)
        InvalidTransitionError: cancelled
        TransactionValidationError: missing/unknown payment method
    """
    with db_transaction.atomic():
        transaction = _lock(transaction_id)
        PaymentStatusMachine.pay(transaction, payment_method, paid_date)

    invoice = ExternalInvoice.objects.filter(transaction=transaction).first()
    if invoice is not None and invoice.is_open:
        if reconciler is None:
            from .invoice_reconciliation import InvoiceReconciler
            with InvoiceReconciler() as own_reconciler:
                own_reconciler.on_local_payment(transaction)
        else:
            reconciler.on_local_payment(transaction)

    return transaction


@db_transaction.atomic
def cancel_transaction(transaction_id: UUID) -> FinancialTransaction:
    """
    Raises:
        InvalidTransitionError: paid or already cancelled
    """
    transaction = _lock(transaction_id)
    return PaymentStatusMachine.cancel(transaction)


@db_transaction.atomic
def delete_transaction(transaction_id: UUID):
    """
    Physically delete a transaction.

    Raises:
        ConflictError: the provider invoice is still open; cancel instead
    """
    transaction = _lock(transaction_id)
    invoice = ExternalInvoice.objects.filter(transaction=transaction).first()
    if invoice is not None:
        if invoice.is_open:
            raise ConflictError(
                'Transaction has an open provider invoice. Cancel it instead of deleting.'
            )
        invoice.delete()
    transaction.delete()
    logger.info("Deleted transaction %s", transaction_id)


@dataclass
class ItemResult:
    id: UUID
    success: bool
    error: Optional[str] = None

    def to_dict(self):
        data = {'id': self.id, 'success': self.success}
        if self.error:
            data['error'] = self.error
        return data


def bulk_pay(transaction_ids, *, payment_method: str, paid_date: Optional[date] = None, reconciler=None):
    """
    Pay several transactions; each one succeeds or fails on its own.

    Returns:
        list[ItemResult] in the order of ``transaction_ids``
    """
    results = []
    for transaction_id in transaction_ids:
        try:
            pay_transaction(
                transaction_id,
                payment_method=payment_method,
                paid_date=paid_date,
                reconciler=reconciler,
            )
        except FinanceError as exc:
            results.append(ItemResult(id=transaction_id, success=False, error=str(exc.detail)))
        else:
            results.append(ItemResult(id=transaction_id, success=True))
    return results


# =============================================================================
# Listing
# =============================================================================

@dataclass(frozen=True)
class TransactionQuery:
    """Validated list filters. Dates bound ``due_date``; status is the effective one."""
    transaction_type: Optional[str] = None
    status: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    month: Optional[int] = None
    year: Optional[int] = None
    search: str = ''


def list_transactions(query: TransactionQuery, today: Optional[date] = None):
    """Queryset of transactions matching the query, newest due date first."""
    today = today or timezone.localdate()
    queryset = FinancialTransaction.objects.select_related('external_invoice')

    if query.transaction_type:
        queryset = queryset.filter(transaction_type=query.transaction_type)
    if query.status:
        queryset = queryset.with_effective_status(query.status, today)
    if query.start_date:
        queryset = queryset.filter(due_date__gte=query.start_date)
    if query.end_date:
        queryset = queryset.filter(due_date__lte=query.end_date)
    if query.year:
        queryset = queryset.filter(due_date__year=query.year)
    if query.month:
        queryset = queryset.filter(due_date__month=query.month)

    if query.search:
        term = query.search
        student_ids = Student.objects.filter(
            Q(name__icontains=term) | Q(registration_number__icontains=term)
        ).values_list('id', flat=True)
        teacher_ids = Teacher.objects.filter(name__icontains=term).values_list('id', flat=True)
        queryset = queryset.filter(
            Q(description__icontains=term) |
            Q(observation__icontains=term) |
            Q(category__icontains=term) |
            Q(reference_type=ReferenceType.STUDENT, reference_id__in=student_ids) |
            Q(reference_type=ReferenceType.TEACHER, reference_id__in=teacher_ids)
        )

    return queryset.order_by('-due_date', '-created_at', 'id')


def summarize_transactions(queryset):
    """Counts and amounts for a filtered list, split into receivables and payables."""
    money = DecimalField(max_digits=14, decimal_places=2)

    def side(types):
        in_side = Q(transaction_type__in=types) & ~Q(status=TransactionStatus.CANCELLED)
        return {
            'count': Count('id', filter=Q(transaction_type__in=types)),
            'amount': Coalesce(Sum('final_amount', filter=in_side), Value(ZERO), output_field=money),
            'paid': Coalesce(
                Sum('final_amount', filter=in_side & Q(status=TransactionStatus.PAID)),
                Value(ZERO), output_field=money
            ),
            'pending': Coalesce(
                Sum('final_amount', filter=in_side & Q(status=TransactionStatus.PENDING)),
                Value(ZERO), output_field=money
            ),
        }

    receivables = {f'receivables_{k}': v for k, v in side(RECEIVABLE_TYPES).items()}
    payables = {f'payables_{k}': v for k, v in side(PAYABLE_TYPES).items()}

    totals = queryset.order_by().aggregate(
        total_count=Count('id'),
        total_amount=Coalesce(
            Sum('final_amount', filter=~Q(status=TransactionStatus.CANCELLED)),
            Value(ZERO), output_field=money
        ),
        **receivables,
        **payables,
    )

    return {
        'total_count': totals['total_count'],
        'total_amount': totals['total_amount'],
        'receivables': {k: totals[f'receivables_{k}'] for k in ('count', 'amount', 'paid', 'pending')},
        'payables': {k: totals[f'payables_{k}'] for k in ('count', 'amount', 'paid', 'pending')},
    }
