from django.db import models
from django.db.models import Q
from django.core.validators import MinValueValidator
from django.utils import timezone
from decimal import Decimal
import uuid


ZERO = Decimal('0.00')


class TransactionType(models.TextChoices):
    TUITION = 'tuition', 'Tuition'
    SALARY = 'salary', 'Salary'
    EXPENSE = 'expense', 'Expense'
    INCOME = 'income', 'Income'


RECEIVABLE_TYPES = (TransactionType.TUITION, TransactionType.INCOME)
PAYABLE_TYPES = (TransactionType.SALARY, TransactionType.EXPENSE)


class TransactionStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PAID = 'paid', 'Paid'
    OVERDUE = 'overdue', 'Overdue'
    CANCELLED = 'cancelled', 'Cancelled'


class PaymentMethod(models.TextChoices):
    PIX = 'pix', 'PIX'
    BANK_TRANSFER = 'bank_transfer', 'Bank transfer'
    CREDIT_CARD = 'credit_card', 'Credit card'
    DEBIT_CARD = 'debit_card', 'Debit card'
    CASH = 'cash', 'Cash'
    CHECK = 'check', 'Check'


class ReferenceType(models.TextChoices):
    TEACHER = 'teacher', 'Teacher'
    STUDENT = 'student', 'Student'


# Which reference a transaction type must carry (None = no reference allowed)
REQUIRED_REFERENCE = {
    TransactionType.TUITION: ReferenceType.STUDENT,
    TransactionType.SALARY: ReferenceType.TEACHER,
    TransactionType.EXPENSE: None,
    TransactionType.INCOME: None,
}


class InvoiceKind(models.TextChoices):
    BOLETO = 'boleto', 'Boleto'
    PIX = 'pix', 'PIX voucher'


class InvoiceStatus(models.TextChoices):
    OPEN = 'open', 'Open'
    LATE = 'late', 'Late'
    PAID = 'paid', 'Paid'
    CANCELLED = 'cancelled', 'Cancelled'
    FAILED = 'failed', 'Failed'


CANCELLABLE_INVOICE_STATUSES = (InvoiceStatus.OPEN, InvoiceStatus.LATE)
RETRIABLE_INVOICE_STATUSES = (InvoiceStatus.FAILED, InvoiceStatus.CANCELLED)


def compute_final_amount(amount, discount=ZERO, late_fee=ZERO):
    """Amount owed after discount and late fee. May be negative; callers reject that."""
    return (amount or ZERO) + (late_fee or ZERO) - (discount or ZERO)


class FinancialTransactionQuerySet(models.QuerySet):

    def receivables(self):
        return self.filter(transaction_type__in=RECEIVABLE_TYPES)

    def payables(self):
        return self.filter(transaction_type__in=PAYABLE_TYPES)

    def overdue(self, today=None):
        """Pending transactions whose due date has passed."""
        today = today or timezone.localdate()
        return self.filter(status=TransactionStatus.PENDING, due_date__lt=today)

    def with_effective_status(self, status, today=None):
        """Filter by the status a reader sees, with overdue derived from due_date."""
        today = today or timezone.localdate()
        if status == TransactionStatus.OVERDUE:
            return self.overdue(today)
        if status == TransactionStatus.PENDING:
            return self.filter(status=TransactionStatus.PENDING, due_date__gte=today)
        return self.filter(status=status)

    def for_reference(self, reference_type, reference_id):
        return self.filter(reference_type=reference_type, reference_id=reference_id)

    def for_period(self, transaction_type, month, year):
        return self.filter(
            transaction_type=transaction_type,
            period_month=month,
            period_year=year,
        ).exclude(status=TransactionStatus.CANCELLED)


class FinancialTransaction(models.Model):
    """
    One money movement: a tuition charged to a student, a salary owed to a
    teacher, or an ad-hoc expense or income.

    The stored status is one of pending, paid or cancelled. Overdue is never
    written; it is derived from ``due_date`` by ``effective_status``.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    transaction_type = models.CharField(max_length=20, choices=TransactionType.choices)

    # Financial details
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))]
    )
    discount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)]
    )
    late_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=ZERO,
        validators=[MinValueValidator(ZERO)]
    )
    final_amount = models.DecimalField(max_digits=12, decimal_places=2, editable=False)

    # Lifecycle
    due_date = models.DateField()
    paid_date = models.DateField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.PENDING
    )
    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        blank=True
    )

    # Polymorphic reference: {type, id}
    reference_type = models.CharField(
        max_length=20,
        choices=ReferenceType.choices,
        blank=True
    )
    reference_id = models.UUIDField(null=True, blank=True)

    # Billing period for recurring charges
    period_month = models.PositiveSmallIntegerField(null=True, blank=True)
    period_year = models.PositiveSmallIntegerField(null=True, blank=True)

    description = models.CharField(max_length=255, blank=True)
    observation = models.TextField(blank=True)
    category = models.CharField(max_length=100, blank=True)

    created_by = models.ForeignKey(
        'accounts.User',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='financial_transactions'
    )

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = FinancialTransactionQuerySet.as_manager()

    class Meta:
        db_table = 'financial_transactions'
        indexes = [
            models.Index(fields=['transaction_type', 'status'], name='ft_type_status_idx'),
            models.Index(fields=['status', 'due_date'], name='ft_status_due_idx'),
            models.Index(fields=['due_date'], name='ft_due_date_idx'),
            models.Index(fields=['paid_date'], name='ft_paid_date_idx'),
            models.Index(fields=['reference_type', 'reference_id'], name='ft_reference_idx'),
            models.Index(fields=['period_year', 'period_month'], name='ft_period_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['transaction_type', 'reference_type', 'reference_id', 'period_month', 'period_year'],
                condition=Q(period_month__isnull=False) & ~Q(status='cancelled'),
                name='unique_charge_per_reference_period',
            ),
        ]
        ordering = ['-due_date', '-created_at']

    def __str__(self):
        return f"{self.get_transaction_type_display()} {self.final_amount} due {self.due_date} ({self.status})"

    def save(self, *args, **kwargs):
        """Keep final_amount in step with its inputs on every write."""
        self.final_amount = compute_final_amount(self.amount, self.discount, self.late_fee)
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and {'amount', 'discount', 'late_fee'} & set(update_fields):
            kwargs['update_fields'] = set(update_fields) | {'final_amount'}
        super().save(*args, **kwargs)

    @property
    def reference(self):
        """The tagged reference as a dict, or None for expense/income."""
        if not self.reference_type:
            return None
        return {'type': self.reference_type, 'id': self.reference_id}

    @property
    def is_receivable(self):
        return self.transaction_type in RECEIVABLE_TYPES

    def effective_status(self, today=None):
        """Status as every reader must see it: overdue when pending past due."""
        today = today or timezone.localdate()
        if self.status == TransactionStatus.PENDING and self.due_date < today:
            return TransactionStatus.OVERDUE
        return TransactionStatus(self.status)

    def is_overdue(self, today=None):
        return self.effective_status(today) == TransactionStatus.OVERDUE

    def days_overdue(self, today=None):
        today = today or timezone.localdate()
        if not self.is_overdue(today):
            return 0
        return (today - self.due_date).days

    @property
    def can_be_paid(self):
        return self.status == TransactionStatus.PENDING

    @property
    def can_be_cancelled(self):
        return self.status == TransactionStatus.PENDING


class ExternalInvoice(models.Model):
    """Local mirror of the payment provider's invoice for one transaction."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    transaction = models.OneToOneField(
        FinancialTransaction,
        on_delete=models.PROTECT,
        related_name='external_invoice'
    )

    # Provider identifiers and state (invoice_id is blank when the request failed)
    invoice_id = models.CharField(max_length=100, blank=True, db_index=True)
    kind = models.CharField(max_length=10, choices=InvoiceKind.choices)
    status = models.CharField(max_length=20, choices=InvoiceStatus.choices)

    # Payment artifacts
    boleto_url = models.URLField(max_length=500, blank=True)
    pix_qr_code = models.TextField(blank=True)
    pix_qr_code_url = models.URLField(max_length=500, blank=True)

    paid_at = models.DateTimeField(null=True, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    # Sync bookkeeping
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    last_synced_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'external_invoices'
        indexes = [
            models.Index(fields=['status'], name='invoices_status_idx'),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.get_kind_display()} {self.invoice_id or '-'} ({self.status})"

    @property
    def is_cancellable(self):
        return self.status in CANCELLABLE_INVOICE_STATUSES

    @property
    def is_retriable(self):
        return self.status in RETRIABLE_INVOICE_STATUSES

    @property
    def is_open(self):
        """Provider may still collect money on this invoice."""
        return self.status in CANCELLABLE_INVOICE_STATUSES
