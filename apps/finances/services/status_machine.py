"""
Payment status lifecycle for financial transactions.

Stored states are ``pending``, ``paid`` and ``cancelled``. ``overdue`` is a
read-time classification of a pending transaction whose due date has passed
(see ``FinancialTransaction.effective_status``), so every transition below
that starts from "pending" also applies to an overdue transaction.

    pending|overdue --pay-->    paid        (terminal)
    pending|overdue --cancel--> cancelled   (terminal)
"""
import logging

from django.utils import timezone

from apps.finances.exceptions import (
    ConflictError,
    InvalidTransitionError,
    TransactionValidationError,
)
from apps.finances.models import PaymentMethod, TransactionStatus

logger = logging.getLogger(__name__)


class PaymentStatusMachine:
    """
    Guards and applies status transitions.

    The ``ensure_*`` methods only check; ``pay`` and ``cancel`` check, mutate
    and save. Callers are expected to hold a row lock
    (``select_for_update``) when they go through ``pay``/``cancel``.
    """

    @staticmethod
    def ensure_can_pay(transaction):
        if transaction.status == TransactionStatus.PAID:
            raise ConflictError('Transaction is already paid.')
        if transaction.status == TransactionStatus.CANCELLED:
            raise InvalidTransitionError('Cannot pay a cancelled transaction.')

    @staticmethod
    def ensure_can_cancel(transaction):
        if transaction.status == TransactionStatus.PAID:
            raise InvalidTransitionError('cannot cancel a paid transaction')
        if transaction.status == TransactionStatus.CANCELLED:
            raise InvalidTransitionError('Transaction is already cancelled.')

    @staticmethod
    def ensure_mutable(transaction):
        """Only pending (or overdue) transactions accept edits and invoices."""
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidTransitionError(
                f'Transaction is {transaction.status} and can no longer be modified.'
            )

    @classmethod
    def pay(cls, transaction, payment_method, paid_date=None):
        """
        Move a pending transaction to paid.

        Args:
            transaction: FinancialTransaction (locked by the caller)
            payment_method: one of PaymentMethod values
            paid_date: date of payment, today when omitted

        Raises:
            ConflictError: already paid
            InvalidTransitionError: cancelled
            TransactionValidationError: missing or unknown payment method
        """
        cls.ensure_can_pay(transaction)

        if not payment_method:
            raise TransactionValidationError('Payment method is required.')
        if payment_method not in PaymentMethod.values:
            raise TransactionValidationError(f'Unknown payment method: {payment_method}')

        transaction.status = TransactionStatus.PAID
        transaction.payment_method = payment_method
        transaction.paid_date = paid_date or timezone.localdate()
        transaction.save(update_fields=['status', 'payment_method', 'paid_date', 'updated_at'])

        logger.info(
            "Transaction %s paid via %s on %s",
            transaction.id, payment_method, transaction.paid_date
        )
        return transaction

    @classmethod
    def cancel(cls, transaction):
        cls.ensure_can_cancel(transaction)

        transaction.status = TransactionStatus.CANCELLED
        transaction.save(update_fields=['status', 'updated_at'])

        logger.info("Transaction %s cancelled", transaction.id)
        return transaction
