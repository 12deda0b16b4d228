"""
Finances services - Business logic layer.

This package contains all business operations for the finances app:
- Transaction CRUD, payment and cancellation
- Payment status lifecycle
- Provider invoice reconciliation
- Monthly bulk charges and the invoice cascade
- Cash-flow summaries and statistics
"""

from .status_machine import PaymentStatusMachine

from .transaction_management import (
    create_transaction,
    get_transaction,
    update_transaction,
    pay_transaction,
    cancel_transaction,
    delete_transaction,
    bulk_pay,
    list_transactions,
    summarize_transactions,
    TransactionQuery,
)

from .invoice_reconciliation import (
    InvoiceReconciler,
    InvoiceResult,
)

from .bulk_charges import (
    BulkChargeGenerator,
    BulkChargeResult,
    CascadeResult,
    settle_all,
    transactions_for_cascade,
)

from .cash_flow import (
    CashFlowAggregator,
    CashFlowSummary,
)

from .references import (
    describe_reference,
    load_reference_targets,
)

__all__ = [
    'PaymentStatusMachine',
    # Transaction Management
    'create_transaction',
    'get_transaction',
    'update_transaction',
    'pay_transaction',
    'cancel_transaction',
    'delete_transaction',
    'bulk_pay',
    'list_transactions',
    'summarize_transactions',
    'TransactionQuery',
    # Invoices
    'InvoiceReconciler',
    'InvoiceResult',
    # Bulk Charges
    'BulkChargeGenerator',
    'BulkChargeResult',
    'CascadeResult',
    'settle_all',
    'transactions_for_cascade',
    # Cash Flow
    'CashFlowAggregator',
    'CashFlowSummary',
    # References
    'describe_reference',
    'load_reference_targets',
]
