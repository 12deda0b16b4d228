import pytest
from datetime import date, timedelta
from apps.finances.exceptions import (
    ConflictError,
    InvalidTransitionError,
    TransactionValidationError,
)
from apps.finances.models import PaymentMethod, TransactionStatus
from apps.finances.services import PaymentStatusMachine


@pytest.mark.django_db
class TestPay:

    def test_pay_sets_status_method_and_date(self, tuition):
        PaymentStatusMachine.pay(tuition, PaymentMethod.PIX, date(2025, 2, 10))
        tuition.refresh_from_db()

        assert tuition.status == TransactionStatus.PAID
        assert tuition.payment_method == PaymentMethod.PIX
        assert tuition.paid_date == date(2025, 2, 10)

    def test_paid_date_defaults_to_today(self, tuition, today):
        PaymentStatusMachine.pay(tuition, PaymentMethod.CASH)
        assert tuition.paid_date == today

    def test_overdue_transaction_can_be_paid(self, make_transaction, today):
        tx = make_transaction(due_date=today - timedelta(days=10))
        PaymentStatusMachine.pay(tx, PaymentMethod.BANK_TRANSFER)
        assert tx.effective_status(today) == TransactionStatus.PAID

    def test_second_pay_conflicts_and_changes_nothing(self, tuition):
        PaymentStatusMachine.pay(tuition, PaymentMethod.PIX, date(2025, 2, 10))

        with pytest.raises(ConflictError):
            PaymentStatusMachine.pay(tuition, PaymentMethod.CASH, date(2025, 2, 20))

        tuition.refresh_from_db()
        assert tuition.status == TransactionStatus.PAID
        assert tuition.payment_method == PaymentMethod.PIX
        assert tuition.paid_date == date(2025, 2, 10)

    def test_payment_method_required(self, tuition):
        with pytest.raises(TransactionValidationError):
            PaymentStatusMachine.pay(tuition, '')

    def test_unknown_payment_method(self, tuition):
        with pytest.raises(TransactionValidationError):
            PaymentStatusMachine.pay(tuition, 'bitcoin')

    def test_cannot_pay_cancelled(self, tuition):
        PaymentStatusMachine.cancel(tuition)
        with pytest.raises(InvalidTransitionError):
            PaymentStatusMachine.pay(tuition, PaymentMethod.PIX)


@pytest.mark.django_db
class TestCancel:

    def test_cancel_pending(self, tuition):
        PaymentStatusMachine.cancel(tuition)
        tuition.refresh_from_db()
        assert tuition.status == TransactionStatus.CANCELLED

    def test_cancel_overdue(self, make_transaction, today):
        tx = make_transaction(due_date=today - timedelta(days=1))
        PaymentStatusMachine.cancel(tx)
        assert tx.effective_status(today) == TransactionStatus.CANCELLED

    def test_cannot_cancel_paid(self, tuition):
        PaymentStatusMachine.pay(tuition, PaymentMethod.PIX)
        with pytest.raises(InvalidTransitionError, match='cannot cancel a paid transaction'):
            PaymentStatusMachine.cancel(tuition)

    def test_cancelled_is_terminal(self, tuition):
        PaymentStatusMachine.cancel(tuition)

        with pytest.raises(InvalidTransitionError):
            PaymentStatusMachine.cancel(tuition)
        with pytest.raises(InvalidTransitionError):
            PaymentStatusMachine.ensure_mutable(tuition)
