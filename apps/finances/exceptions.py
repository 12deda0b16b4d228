"""
Domain exceptions for the finances app.

Every error a finance service raises is an ``APIException`` so that views can
let it propagate and DRF renders the right status code.

Exception Hierarchy:
    FinanceError (base)
    ├── TransactionValidationError   400  bad input, missing/mismatched reference
    ├── InvalidTransitionError       400  payment status machine violation
    ├── TransactionNotFoundError     404
    ├── InvoiceNotFoundError         404
    ├── ConflictError                409  double pay, duplicate charge, protected delete
    └── ProviderError                502  invoice provider call failed
"""
from rest_framework import status
from rest_framework.exceptions import APIException


class FinanceError(APIException):
    """Base exception for finance service errors."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Financial operation failed.'
    default_code = 'finance_error'


class TransactionValidationError(FinanceError):
    """Invalid amount, reference or transition input."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid financial transaction data.'
    default_code = 'invalid_transaction'


class InvalidTransitionError(FinanceError):
    """Transition not allowed from the transaction's current status."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid status transition for this transaction.'
    default_code = 'invalid_transition'


class TransactionNotFoundError(FinanceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Financial transaction not found.'
    default_code = 'transaction_not_found'


class InvoiceNotFoundError(FinanceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Provider invoice not found.'
    default_code = 'invoice_not_found'


class ConflictError(FinanceError):
    """Operation collides with the current state (already paid, already charged)."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'The transaction is in a conflicting state.'
    default_code = 'conflict'


class ProviderError(FinanceError):
    """
    Invoice provider call failed: network error, timeout, 4xx/5xx or a
    malformed response body.
    """
    status_code = status.HTTP_502_BAD_GATEWAY
    default_detail = 'Payment provider request failed.'
    default_code = 'provider_error'

    def __init__(self, detail=None, code=None, status_code=None):
        super().__init__(detail, code)
        # HTTP status returned by the provider, when there was one
        self.provider_status = status_code
