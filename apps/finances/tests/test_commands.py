import pytest
from io import StringIO
from django.core.management import call_command
from apps.finances.models import ExternalInvoice, InvoiceStatus, TransactionStatus


@pytest.mark.django_db
class TestSyncInvoices:

    def test_nothing_to_refresh(self):
        out = StringIO()
        call_command('sync_invoices', stdout=out)
        assert 'No open invoices to refresh.' in out.getvalue()

    def test_applies_provider_payments(self, tuition, salary, reconciler, fake_cora):
        reconciler.generate_invoice(tuition)
        reconciler.generate_invoice(salary)
        fake_cora.mark_paid(tuition.external_invoice.invoice_id)
        out = StringIO()

        call_command('sync_invoices', stdout=out)

        tuition.refresh_from_db()
        salary.refresh_from_db()
        assert tuition.status == TransactionStatus.PAID
        assert salary.status == TransactionStatus.PENDING
        assert 'Refreshed 2 invoice(s), 1 newly paid.' in out.getvalue()

    def test_dry_run_makes_no_changes(self, tuition, reconciler, fake_cora):
        reconciler.generate_invoice(tuition)
        fake_cora.mark_paid(tuition.external_invoice.invoice_id)
        out = StringIO()

        call_command('sync_invoices', '--dry-run', stdout=out)

        tuition.refresh_from_db()
        assert tuition.status == TransactionStatus.PENDING
        assert '--dry-run mode' in out.getvalue()

    def test_provider_failure_reported_per_invoice(self, tuition, reconciler, fake_cora):
        reconciler.generate_invoice(tuition)
        fake_cora.fail_all = True
        out = StringIO()

        call_command('sync_invoices', stdout=out)

        assert '1 invoice(s) could not be refreshed.' in out.getvalue()
        assert ExternalInvoice.objects.get(transaction=tuition).status == InvoiceStatus.OPEN
