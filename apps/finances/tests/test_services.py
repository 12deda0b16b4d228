import pytest
import uuid
from decimal import Decimal
from datetime import date, timedelta
from apps.finances.exceptions import (
    ConflictError,
    InvalidTransitionError,
    TransactionNotFoundError,
    TransactionValidationError,
)
from apps.finances.models import (
    ExternalInvoice,
    FinancialTransaction,
    InvoiceKind,
    InvoiceStatus,
    PaymentMethod,
    ReferenceType,
    TransactionStatus,
    TransactionType,
)
from apps.finances.services import (
    TransactionQuery,
    bulk_pay,
    cancel_transaction,
    create_transaction,
    delete_transaction,
    list_transactions,
    pay_transaction,
    summarize_transactions,
    update_transaction,
)


@pytest.mark.django_db
class TestCreateTransaction:

    def test_create_tuition(self, student, finance_user):
        tx = create_transaction(
            transaction_type=TransactionType.TUITION,
            amount=Decimal('650.00'),
            discount=Decimal('50.00'),
            due_date=date(2025, 2, 10),
            reference_type=ReferenceType.STUDENT,
            reference_id=student.id,
            created_by=finance_user,
        )

        assert tx.status == TransactionStatus.PENDING
        assert tx.final_amount == Decimal('600.00')
        assert tx.reference == {'type': 'student', 'id': student.id}
        assert tx.created_by == finance_user

    def test_create_expense_without_reference(self):
        tx = create_transaction(
            transaction_type=TransactionType.EXPENSE,
            amount=Decimal('200.00'),
            due_date=date(2025, 2, 1),
            category='maintenance',
        )
        assert tx.reference is None

    @pytest.mark.parametrize('amount', [Decimal('0'), Decimal('-10.00')])
    def test_rejects_non_positive_amount(self, amount):
        with pytest.raises(TransactionValidationError):
            create_transaction(
                transaction_type=TransactionType.EXPENSE,
                amount=amount,
                due_date=date(2025, 2, 1),
            )

    def test_rejects_negative_final_amount(self):
        with pytest.raises(TransactionValidationError):
            create_transaction(
                transaction_type=TransactionType.EXPENSE,
                amount=Decimal('100.00'),
                discount=Decimal('150.00'),
                due_date=date(2025, 2, 1),
            )
        assert FinancialTransaction.objects.count() == 0

    def test_tuition_requires_student_reference(self, teacher):
        with pytest.raises(TransactionValidationError):
            create_transaction(
                transaction_type=TransactionType.TUITION,
                amount=Decimal('650.00'),
                due_date=date(2025, 2, 10),
            )
        with pytest.raises(TransactionValidationError):
            create_transaction(
                transaction_type=TransactionType.TUITION,
                amount=Decimal('650.00'),
                due_date=date(2025, 2, 10),
                reference_type=ReferenceType.TEACHER,
                reference_id=teacher.id,
            )

    def test_salary_reference_must_exist(self):
        with pytest.raises(TransactionValidationError):
            create_transaction(
                transaction_type=TransactionType.SALARY,
                amount=Decimal('3000.00'),
                due_date=date(2025, 2, 5),
                reference_type=ReferenceType.TEACHER,
                reference_id=uuid.uuid4(),
            )

    def test_expense_rejects_reference(self, student):
        with pytest.raises(TransactionValidationError):
            create_transaction(
                transaction_type=TransactionType.EXPENSE,
                amount=Decimal('50.00'),
                due_date=date(2025, 2, 1),
                reference_type=ReferenceType.STUDENT,
                reference_id=student.id,
            )

    def test_duplicate_period_charge_conflicts(self, student):
        kwargs = dict(
            transaction_type=TransactionType.TUITION,
            amount=Decimal('650.00'),
            due_date=date(2025, 2, 10),
            reference_type=ReferenceType.STUDENT,
            reference_id=student.id,
            period_month=2,
            period_year=2025,
        )
        first = create_transaction(**kwargs)

        with pytest.raises(ConflictError):
            create_transaction(**kwargs)

        cancel_transaction(first.id)
        assert create_transaction(**kwargs).status == TransactionStatus.PENDING


@pytest.mark.django_db
class TestUpdateTransaction:

    def test_update_recomputes_final_amount(self, tuition):
        updated = update_transaction(tuition.id, late_fee=Decimal('13.00'), discount=Decimal('3.00'))
        assert updated.final_amount == Decimal('660.00')

    def test_type_and_reference_are_immutable(self, tuition, teacher):
        with pytest.raises(TransactionValidationError):
            update_transaction(tuition.id, transaction_type=TransactionType.SALARY)
        with pytest.raises(TransactionValidationError):
            update_transaction(tuition.id, reference_id=teacher.id)

    def test_rejects_negative_result(self, tuition):
        with pytest.raises(TransactionValidationError):
            update_transaction(tuition.id, discount=Decimal('700.00'))
        tuition.refresh_from_db()
        assert tuition.final_amount == Decimal('650.00')

    def test_cancelled_cannot_be_edited(self, tuition):
        cancel_transaction(tuition.id)
        with pytest.raises(InvalidTransitionError):
            update_transaction(tuition.id, description='changed')

    def test_amount_locked_while_invoice_open(self, tuition):
        ExternalInvoice.objects.create(
            transaction=tuition, invoice_id='inv_1', kind=InvoiceKind.BOLETO, status=InvoiceStatus.OPEN
        )
        with pytest.raises(ConflictError):
            update_transaction(tuition.id, amount=Decimal('700.00'))
        assert update_transaction(tuition.id, observation='called guardian').observation == 'called guardian'

    def test_unknown_transaction(self):
        with pytest.raises(TransactionNotFoundError):
            update_transaction(uuid.uuid4(), description='x')


@pytest.mark.django_db
class TestPayTransaction:

    def test_pay_cancels_open_provider_invoice(self, tuition, reconciler, fake_cora):
        reconciler.generate_invoice(tuition)
        invoice_id = tuition.external_invoice.invoice_id

        pay_transaction(tuition.id, payment_method=PaymentMethod.CASH, reconciler=reconciler)

        invoice = ExternalInvoice.objects.get(transaction=tuition)
        assert fake_cora.cancelled == [invoice_id]
        assert invoice.status == InvoiceStatus.CANCELLED

    def test_provider_failure_does_not_undo_payment(self, tuition, reconciler, fake_cora):
        reconciler.generate_invoice(tuition)
        fake_cora.fail_all = True

        tx = pay_transaction(tuition.id, payment_method=PaymentMethod.CASH, reconciler=reconciler)

        tx.refresh_from_db()
        invoice = ExternalInvoice.objects.get(transaction=tuition)
        assert tx.status == TransactionStatus.PAID
        assert invoice.status == InvoiceStatus.OPEN
        assert 'Provider not updated' in invoice.last_error

    def test_double_pay_conflicts(self, tuition):
        pay_transaction(tuition.id, payment_method=PaymentMethod.PIX, paid_date=date(2025, 2, 10))
        with pytest.raises(ConflictError):
            pay_transaction(tuition.id, payment_method=PaymentMethod.CASH)
        tuition.refresh_from_db()
        assert tuition.payment_method == PaymentMethod.PIX


@pytest.mark.django_db
class TestDeleteTransaction:

    def test_delete_pending(self, expense):
        delete_transaction(expense.id)
        assert not FinancialTransaction.objects.filter(id=expense.id).exists()

    def test_open_invoice_blocks_delete(self, tuition):
        ExternalInvoice.objects.create(
            transaction=tuition, invoice_id='inv_1', kind=InvoiceKind.BOLETO, status=InvoiceStatus.LATE
        )
        with pytest.raises(ConflictError):
            delete_transaction(tuition.id)
        assert FinancialTransaction.objects.filter(id=tuition.id).exists()

    def test_failed_invoice_is_removed_with_transaction(self, tuition):
        ExternalInvoice.objects.create(
            transaction=tuition, kind=InvoiceKind.BOLETO, status=InvoiceStatus.FAILED
        )
        delete_transaction(tuition.id)
        assert ExternalInvoice.objects.count() == 0


@pytest.mark.django_db
class TestBulkPay:

    def test_each_item_reported(self, tuition, expense):
        cancel_transaction(expense.id)
        missing = uuid.uuid4()

        results = bulk_pay([tuition.id, expense.id, missing], payment_method=PaymentMethod.CASH)

        assert [r.success for r in results] == [True, False, False]
        assert results[1].error
        tuition.refresh_from_db()
        assert tuition.status == TransactionStatus.PAID


@pytest.mark.django_db
class TestListTransactions:

    def test_status_filter_uses_effective_status(self, make_transaction, today):
        late = make_transaction(due_date=today - timedelta(days=2))
        upcoming = make_transaction(due_date=today + timedelta(days=2))

        overdue = list_transactions(TransactionQuery(status=TransactionStatus.OVERDUE), today=today)
        pending = list_transactions(TransactionQuery(status=TransactionStatus.PENDING), today=today)

        assert list(overdue) == [late]
        assert list(pending) == [upcoming]

    def test_search_matches_student_name(self, tuition, expense):
        results = list_transactions(TransactionQuery(search='souza'))
        assert list(results) == [tuition]

    def test_type_and_month_filters(self, make_transaction):
        feb = make_transaction(transaction_type=TransactionType.INCOME, due_date=date(2025, 2, 14))
        make_transaction(transaction_type=TransactionType.INCOME, due_date=date(2025, 3, 14))
        make_transaction(transaction_type=TransactionType.EXPENSE, due_date=date(2025, 2, 14))

        query = TransactionQuery(transaction_type=TransactionType.INCOME, month=2, year=2025)
        assert list(list_transactions(query)) == [feb]

    def test_summary_splits_receivables_and_payables(self, tuition, expense, salary):
        pay_transaction(expense.id, payment_method=PaymentMethod.CASH)

        summary = summarize_transactions(FinancialTransaction.objects.all())

        assert summary['total_count'] == 3
        assert summary['receivables']['amount'] == Decimal('650.00')
        assert summary['receivables']['pending'] == Decimal('650.00')
        assert summary['payables']['amount'] == Decimal('3400.00')
        assert summary['payables']['paid'] == Decimal('200.00')
