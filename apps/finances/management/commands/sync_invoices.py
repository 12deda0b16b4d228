"""
Management command to refresh open provider invoices.

Pulls the current state of every open or late invoice from the provider and
applies it locally. Invoices the provider reports as paid move their pending
transaction to paid.

Usage:
    python manage.py sync_invoices
    python manage.py sync_invoices --dry-run
"""

from django.core.management.base import BaseCommand

from apps.finances.exceptions import ProviderError
from apps.finances.models import CANCELLABLE_INVOICE_STATUSES, ExternalInvoice, TransactionStatus
from apps.finances.services import InvoiceReconciler


class Command(BaseCommand):
    help = 'Refresh open provider invoices and apply provider-confirmed payments'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the invoices that would be refreshed without calling the provider',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']

        invoices = (
            ExternalInvoice.objects
            .filter(status__in=CANCELLABLE_INVOICE_STATUSES)
            .exclude(invoice_id='')
            .select_related('transaction')
            .order_by('created_at')
        )

        count = invoices.count()
        if count == 0:
            self.stdout.write(self.style.SUCCESS('No open invoices to refresh.'))
            return

        self.stdout.write(f'\nFound {count} open invoice(s):\n')

        if dry_run:
            for invoice in invoices:
                self.stdout.write(
                    f'  - {invoice.invoice_id} | {invoice.status} | '
                    f'{invoice.transaction.description or invoice.transaction_id}'
                )
            self.stdout.write(self.style.WARNING('\n--dry-run mode: No changes made.'))
            return

        refreshed = paid = failed = 0

        with InvoiceReconciler() as reconciler:
            for invoice in invoices:
                transaction = invoice.transaction
                was_pending = transaction.status == TransactionStatus.PENDING
                try:
                    reconciler.refresh_from_provider(transaction)
                except ProviderError as exc:
                    failed += 1
                    self.stdout.write(self.style.ERROR(f'  ✗ {invoice.invoice_id}: {exc.detail}'))
                    continue

                refreshed += 1
                if was_pending and transaction.status == TransactionStatus.PAID:
                    paid += 1
                    self.stdout.write(f'  ✓ {invoice.invoice_id}: paid on {transaction.paid_date}')

        self.stdout.write(
            self.style.SUCCESS(f'\n✓ Refreshed {refreshed} invoice(s), {paid} newly paid.')
        )
        if failed:
            self.stdout.write(self.style.WARNING(f'{failed} invoice(s) could not be refreshed.'))
