import pytest
from decimal import Decimal
from datetime import timedelta
from apps.finances.models import (
    ExternalInvoice,
    FinancialTransaction,
    InvoiceKind,
    InvoiceStatus,
    TransactionStatus,
    TransactionType,
    compute_final_amount,
)


class TestComputeFinalAmount:

    def test_adds_late_fee_and_subtracts_discount(self):
        assert compute_final_amount(Decimal('650'), Decimal('50'), Decimal('13')) == Decimal('613')

    def test_missing_adjustments_count_as_zero(self):
        assert compute_final_amount(Decimal('100.00'), None, None) == Decimal('100.00')


@pytest.mark.django_db
class TestFinalAmount:
    """final_amount always follows amount, discount and late fee."""

    def test_set_on_create(self, make_transaction):
        tx = make_transaction(amount=Decimal('650.00'), discount=Decimal('50.00'), late_fee=Decimal('13.00'))
        assert tx.final_amount == Decimal('613.00')

    @pytest.mark.parametrize('field, value, expected', [
        ('amount', Decimal('700.00'), Decimal('700.00')),
        ('discount', Decimal('25.00'), Decimal('625.00')),
        ('late_fee', Decimal('10.00'), Decimal('660.00')),
    ])
    def test_recomputed_on_each_field_change(self, make_transaction, field, value, expected):
        tx = make_transaction(amount=Decimal('650.00'))
        setattr(tx, field, value)
        tx.save()
        tx.refresh_from_db()
        assert tx.final_amount == expected

    def test_recomputed_with_update_fields(self, make_transaction):
        tx = make_transaction(amount=Decimal('650.00'))
        tx.discount = Decimal('50.00')
        tx.save(update_fields=['discount'])
        tx.refresh_from_db()
        assert tx.final_amount == Decimal('600.00')


@pytest.mark.django_db
class TestEffectiveStatus:

    def test_pending_past_due_is_overdue(self, make_transaction, today):
        tx = make_transaction(due_date=today - timedelta(days=3))
        assert tx.status == TransactionStatus.PENDING
        assert tx.effective_status(today) == TransactionStatus.OVERDUE
        assert tx.days_overdue(today) == 3

    def test_due_today_is_not_overdue(self, make_transaction, today):
        tx = make_transaction(due_date=today)
        assert tx.effective_status(today) == TransactionStatus.PENDING
        assert tx.days_overdue(today) == 0

    def test_moving_due_date_forward_clears_overdue(self, make_transaction, today):
        tx = make_transaction(due_date=today - timedelta(days=1))
        assert tx.is_overdue(today)
        tx.due_date = today + timedelta(days=1)
        assert not tx.is_overdue(today)

    @pytest.mark.parametrize('status', [TransactionStatus.PAID, TransactionStatus.CANCELLED])
    def test_terminal_states_never_overdue(self, make_transaction, today, status):
        tx = make_transaction(due_date=today - timedelta(days=30), status=status)
        assert tx.effective_status(today) == status


@pytest.mark.django_db
class TestQuerySet:

    def test_overdue_and_pending_filters_split_on_due_date(self, make_transaction, today):
        late = make_transaction(due_date=today - timedelta(days=1))
        upcoming = make_transaction(due_date=today + timedelta(days=1))
        make_transaction(due_date=today - timedelta(days=1), status=TransactionStatus.PAID)

        overdue = FinancialTransaction.objects.with_effective_status(TransactionStatus.OVERDUE, today)
        pending = FinancialTransaction.objects.with_effective_status(TransactionStatus.PENDING, today)

        assert list(overdue) == [late]
        assert list(pending) == [upcoming]

    def test_receivables_and_payables(self, tuition, salary, expense, make_transaction):
        income = make_transaction(transaction_type=TransactionType.INCOME)

        assert set(FinancialTransaction.objects.receivables()) == {tuition, income}
        assert set(FinancialTransaction.objects.payables()) == {salary, expense}


@pytest.mark.django_db
class TestExternalInvoice:

    @pytest.mark.parametrize('status, cancellable, retriable', [
        (InvoiceStatus.OPEN, True, False),
        (InvoiceStatus.LATE, True, False),
        (InvoiceStatus.PAID, False, False),
        (InvoiceStatus.CANCELLED, False, True),
        (InvoiceStatus.FAILED, False, True),
    ])
    def test_state_predicates(self, tuition, status, cancellable, retriable):
        invoice = ExternalInvoice.objects.create(
            transaction=tuition,
            invoice_id='inv_1',
            kind=InvoiceKind.BOLETO,
            status=status,
        )
        assert invoice.is_cancellable is cancellable
        assert invoice.is_retriable is retriable
