"""
Invoice reconciliation with the payment provider.

The reconciler keeps one ``ExternalInvoice`` mirror per transaction in step
with the provider. Generating an invoice is split in three steps so that the
bulk cascade can run the network part concurrently while database work stays
on the calling thread:

    prepare()   validate the transaction, build the provider request (DB reads)
    dispatch()  call the provider (network only, may raise ProviderError)
    apply()     persist the outcome on the mirror (DB writes)

Provider failures never change the transaction's payment status.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from django.db import transaction as db_transaction
from django.utils import timezone

from apps.finances.cora import CoraClient, ProviderInvoice
from apps.finances.exceptions import (
    ConflictError,
    InvalidTransitionError,
    ProviderError,
    TransactionValidationError,
)
from apps.finances.models import (
    CANCELLABLE_INVOICE_STATUSES,
    ExternalInvoice,
    FinancialTransaction,
    InvoiceKind,
    InvoiceStatus,
    TransactionStatus,
    TransactionType,
)
from .references import billing_contact
from .status_machine import PaymentStatusMachine

logger = logging.getLogger(__name__)


# Invoice flavour per transaction type; None means the caller may choose
DEFAULT_INVOICE_KIND = {
    TransactionType.TUITION: InvoiceKind.BOLETO,
    TransactionType.SALARY: InvoiceKind.PIX,
    TransactionType.EXPENSE: None,
    TransactionType.INCOME: None,
}

PAYMENT_FORMS = {
    InvoiceKind.BOLETO: ['BANK_SLIP', 'PIX'],
    InvoiceKind.PIX: ['PIX'],
}


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


@dataclass(frozen=True)
class InvoiceRequest:
    transaction_id: UUID
    kind: str
    payload: Dict[str, Any]
    # One key per attempt so a retry is not replayed as the earlier invoice
    idempotency_key: str


@dataclass
class InvoiceResult:
    """Outcome of one invoice generation attempt."""
    transaction_id: UUID
    success: bool
    invoice: Optional[ExternalInvoice] = None
    error: Optional[str] = None
    error_code: Optional[str] = field(default=None, repr=False)

    @classmethod
    def failure(cls, transaction_id, exc, invoice=None):
        code = exc.get_codes() if hasattr(exc, 'get_codes') else None
        return cls(
            transaction_id=transaction_id,
            success=False,
            invoice=invoice,
            error=str(getattr(exc, 'detail', exc)),
            error_code=code if isinstance(code, str) else None,
        )

    def to_dict(self):
        data = {'id': self.transaction_id, 'success': self.success}
        if self.error:
            data['error'] = self.error
        return data


class InvoiceReconciler:
    """
    Create, refresh and cancel the provider invoice bound to a transaction.

    Args:
        client: provider client; built from settings when omitted, in which
            case ``close()`` (or leaving a ``with`` block) closes it
    """

    def __init__(self, client=None):
        self._owns_client = client is None
        self.client = client or CoraClient.from_settings()

    def close(self):
        if self._owns_client:
            self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def prepare(self, transaction: FinancialTransaction, kind: Optional[str] = None) -> InvoiceRequest:
        """
        Validate that an invoice may be requested and build the request.

        Raises:
            InvalidTransitionError: transaction is paid or cancelled
            ConflictError: an invoice already exists and is not retriable
            TransactionValidationError: kind not allowed for this type
        """
        PaymentStatusMachine.ensure_mutable(transaction)

        existing = self._get_invoice(transaction)
        if existing is not None and not existing.is_retriable:
            raise ConflictError(
                f'Transaction already has a {existing.status} invoice ({existing.invoice_id}).'
            )

        kind = self._resolve_kind(transaction, kind)
        attempt = (existing.attempts if existing is not None else 0) + 1
        name, email, document = billing_contact(transaction)
        cents = to_cents(transaction.final_amount)

        payload = {
            'code': str(transaction.id),
            'kind': kind,
            'amount': cents,
            'customer': {
                'name': name,
                'email': email,
                'document': document,
            },
            'services': [{
                'name': transaction.description or transaction.get_transaction_type_display(),
                'amount': cents,
            }],
            'payment_terms': {'due_date': transaction.due_date.isoformat()},
            'payment_forms': PAYMENT_FORMS[kind],
        }
        return InvoiceRequest(
            transaction_id=transaction.id,
            kind=kind,
            payload=payload,
            idempotency_key=f'{transaction.id}:{attempt}',
        )

    def dispatch(self, request: InvoiceRequest) -> ProviderInvoice:
        """Send the request to the provider. Safe to call from worker threads."""
        return self.client.create_invoice(request.payload, idempotency_key=request.idempotency_key)

    def apply(
        self,
        transaction: FinancialTransaction,
        request: InvoiceRequest,
        provider_invoice: Optional[ProviderInvoice] = None,
        error: Optional[Exception] = None,
    ) -> InvoiceResult:
        """
        Record the provider outcome on the invoice mirror.

        A new invoice must come back open (or late); anything else is stored
        as a failed attempt.
        """
        if error is None and provider_invoice.status not in CANCELLABLE_INVOICE_STATUSES:
            error = ProviderError(
                f'Provider returned a {provider_invoice.status} invoice ({provider_invoice.invoice_id}) '
                'instead of an open one.'
            )

        with db_transaction.atomic():
            invoice = (
                ExternalInvoice.objects.select_for_update()
                .filter(transaction=transaction)
                .first()
            ) or ExternalInvoice(transaction=transaction)

            invoice.kind = request.kind
            invoice.amount = transaction.final_amount
            invoice.attempts += 1
            invoice.last_synced_at = timezone.now()

            if error is not None:
                invoice.invoice_id = ''
                invoice.status = InvoiceStatus.FAILED
                invoice.boleto_url = ''
                invoice.pix_qr_code = ''
                invoice.pix_qr_code_url = ''
                invoice.last_error = str(getattr(error, 'detail', error))
                invoice.save()
                logger.warning(
                    "Invoice generation failed for transaction %s: %s",
                    transaction.id, invoice.last_error
                )
                return InvoiceResult.failure(transaction.id, error, invoice=invoice)

            self._copy_provider_state(invoice, provider_invoice)
            invoice.last_error = ''
            invoice.save()

        logger.info(
            "Invoice %s (%s) issued for transaction %s",
            invoice.invoice_id, invoice.kind, transaction.id
        )
        return InvoiceResult(transaction_id=transaction.id, success=True, invoice=invoice)

    def generate_invoice(self, transaction: FinancialTransaction, kind: Optional[str] = None) -> InvoiceResult:
        """
        Issue a provider invoice for one transaction.

        Validation problems raise; provider problems come back as a failed
        ``InvoiceResult`` and leave the transaction's status untouched.
        """
        request = self.prepare(transaction, kind)
        try:
            provider_invoice = self.dispatch(request)
        except ProviderError as exc:
            return self.apply(transaction, request, error=exc)
        return self.apply(transaction, request, provider_invoice=provider_invoice)

    # ------------------------------------------------------------------
    # Refresh / cancel
    # ------------------------------------------------------------------

    def refresh_from_provider(self, transaction: FinancialTransaction) -> ExternalInvoice:
        """
        Re-fetch the provider invoice and update the mirror.

        A provider-confirmed payment on a pending transaction moves it to
        paid with the provider's date and method. This is the only way the
        status machine is entered from outside.

        Raises:
            TransactionValidationError: no provider invoice to refresh
            ProviderError: provider call failed (mirror left untouched)
        """
        invoice = self._get_invoice(transaction)
        if invoice is None or not invoice.invoice_id:
            raise TransactionValidationError('Transaction has no provider invoice to refresh.')

        provider_invoice = self.client.get_invoice(invoice.invoice_id)

        with db_transaction.atomic():
            invoice = ExternalInvoice.objects.select_for_update().get(pk=invoice.pk)
            self._copy_provider_state(invoice, provider_invoice)
            invoice.last_synced_at = timezone.now()
            invoice.last_error = ''
            invoice.save()

            locked = FinancialTransaction.objects.select_for_update().get(pk=transaction.pk)
            if provider_invoice.status == InvoiceStatus.PAID and locked.status == TransactionStatus.PENDING:
                self._apply_provider_payment(locked, provider_invoice)
                transaction.refresh_from_db()

        return invoice

    def cancel_invoice(self, transaction: FinancialTransaction) -> ExternalInvoice:
        """
        Cancel the provider invoice. The transaction itself is not cancelled.

        Raises:
            InvalidTransitionError: no invoice, or invoice not in a cancellable state
            ProviderError: provider call failed
        """
        invoice = self._get_invoice(transaction)
        if invoice is None or not invoice.invoice_id:
            raise InvalidTransitionError('Transaction has no provider invoice to cancel.')
        if not invoice.is_cancellable:
            raise InvalidTransitionError(f'Invoice is {invoice.status} and cannot be cancelled.')

        provider_invoice = self.client.cancel_invoice(invoice.invoice_id)

        with db_transaction.atomic():
            invoice = ExternalInvoice.objects.select_for_update().get(pk=invoice.pk)
            self._copy_provider_state(invoice, provider_invoice)
            invoice.last_synced_at = timezone.now()
            invoice.last_error = ''
            invoice.save()

        logger.info("Invoice %s cancelled for transaction %s", invoice.invoice_id, transaction.id)
        return invoice

    def on_local_payment(self, transaction: FinancialTransaction):
        """
        Keep the provider in step after a payment recorded locally.

        An invoice that is still open on the provider would let the customer
        pay twice, so it is cancelled. A provider failure here is recorded on
        the mirror and logged; the local payment stands.
        """
        invoice = self._get_invoice(transaction)
        if invoice is None or not invoice.is_open:
            return None

        try:
            return self.cancel_invoice(transaction)
        except ProviderError as exc:
            invoice.last_error = f'Provider not updated after local payment: {exc.detail}'
            invoice.save(update_fields=['last_error', 'updated_at'])
            logger.warning(
                "Could not cancel open invoice %s after paying transaction %s: %s",
                invoice.invoice_id, transaction.id, exc.detail
            )
            return invoice

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _get_invoice(transaction):
        return ExternalInvoice.objects.filter(transaction_id=transaction.pk).first()

    @staticmethod
    def _resolve_kind(transaction, kind):
        default = DEFAULT_INVOICE_KIND[TransactionType(transaction.transaction_type)]
        if kind is None:
            return default or InvoiceKind.BOLETO
        if kind not in InvoiceKind.values:
            raise TransactionValidationError(f'Unknown invoice kind: {kind}')
        if default is not None and kind != default:
            raise TransactionValidationError(
                f'{transaction.get_transaction_type_display()} invoices are issued as {default}.'
            )
        return kind

    @staticmethod
    def _copy_provider_state(invoice, provider_invoice):
        invoice.invoice_id = provider_invoice.invoice_id
        invoice.status = provider_invoice.status
        invoice.boleto_url = provider_invoice.boleto_url
        invoice.pix_qr_code = provider_invoice.pix_qr_code
        invoice.pix_qr_code_url = provider_invoice.pix_qr_code_url
        invoice.paid_at = provider_invoice.paid_at

    @staticmethod
    def _apply_provider_payment(transaction, provider_invoice):
        if provider_invoice.paid_at is None or provider_invoice.payment_method is None:
            logger.warning(
                "Provider reports invoice %s paid without date/method; transaction %s left pending",
                provider_invoice.invoice_id, transaction.id
            )
            return
        PaymentStatusMachine.pay(
            transaction,
            payment_method=provider_invoice.payment_method,
            paid_date=timezone.localdate(provider_invoice.paid_at),
        )
        logger.info(
            "Transaction %s marked paid from provider invoice %s",
            transaction.id, provider_invoice.invoice_id
        )
