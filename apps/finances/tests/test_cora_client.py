import json
import httpx
import pytest
from datetime import datetime, timezone as dt_timezone
from apps.finances.cora import CoraClient, ProviderInvoice
from apps.finances.exceptions import ProviderError
from apps.finances.models import InvoiceStatus, PaymentMethod


INVOICE_BODY = {
    'invoice_id': 'inv_123',
    'status': 'OPEN',
    'boleto_url': 'https://cora.test/boleto/inv_123',
    'pix_qr_code': '00020126PIX',
    'pix_qr_code_url': 'https://cora.test/pix/inv_123',
}


def make_client(handler):
    return CoraClient('https://cora.test/', token='secret', transport=httpx.MockTransport(handler))


class TestProviderInvoice:

    def test_parses_paid_invoice(self):
        invoice = ProviderInvoice.from_payload({
            'invoice_id': 'inv_9',
            'status': 'paid',
            'paid_at': '2025-02-11T14:03:00Z',
            'payment_method': 'BANK_SLIP',
        })

        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at == datetime(2025, 2, 11, 14, 3, tzinfo=dt_timezone.utc)
        assert invoice.payment_method == PaymentMethod.BANK_TRANSFER

    def test_in_payment_maps_to_open(self):
        assert ProviderInvoice.from_payload({'invoice_id': 'x', 'status': 'IN_PAYMENT'}).status == InvoiceStatus.OPEN

    @pytest.mark.parametrize('body', [
        [],
        {'status': 'OPEN'},
        {'invoice_id': 'x', 'status': 'WEIRD'},
        {'invoice_id': 'x', 'status': 'PAID', 'paid_at': 'yesterday'},
    ])
    def test_malformed_payload(self, body):
        with pytest.raises(ProviderError):
            ProviderInvoice.from_payload(body)


class TestCoraClient:

    def test_create_invoice_sends_payload_and_headers(self):
        seen = {}

        def handler(request):
            seen['method'] = request.method
            seen['url'] = str(request.url)
            seen['auth'] = request.headers['Authorization']
            seen['key'] = request.headers['Idempotency-Key']
            seen['body'] = json.loads(request.content)
            return httpx.Response(201, json=INVOICE_BODY)

        invoice = make_client(handler).create_invoice({'code': 'tx-1', 'amount': 65000}, idempotency_key='tx-1')

        assert invoice.invoice_id == 'inv_123'
        assert invoice.status == InvoiceStatus.OPEN
        assert seen == {
            'method': 'POST',
            'url': 'https://cora.test/invoices',
            'auth': 'Bearer secret',
            'key': 'tx-1',
            'body': {'code': 'tx-1', 'amount': 65000},
        }

    def test_cancel_uses_delete(self):
        def handler(request):
            assert request.method == 'DELETE'
            assert request.url.path == '/invoices/inv_123'
            return httpx.Response(200, json={**INVOICE_BODY, 'status': 'CANCELLED'})

        assert make_client(handler).cancel_invoice('inv_123').status == InvoiceStatus.CANCELLED

    def test_http_error_becomes_provider_error(self):
        client = make_client(lambda request: httpx.Response(503, json={'error': 'down'}))

        with pytest.raises(ProviderError) as exc_info:
            client.get_invoice('inv_123')

        assert exc_info.value.provider_status == 503
        assert exc_info.value.status_code == 502

    def test_timeout_becomes_provider_error(self):
        def handler(request):
            raise httpx.ReadTimeout('timed out', request=request)

        with pytest.raises(ProviderError, match='timed out'):
            make_client(handler).get_invoice('inv_123')

    def test_connection_error_becomes_provider_error(self):
        def handler(request):
            raise httpx.ConnectError('refused', request=request)

        with pytest.raises(ProviderError):
            make_client(handler).get_invoice('inv_123')

    def test_non_json_body(self):
        client = make_client(lambda request: httpx.Response(200, text='<html>oops</html>'))

        with pytest.raises(ProviderError, match='not JSON'):
            client.get_invoice('inv_123')

    def test_context_manager_closes_http_client(self):
        with make_client(lambda request: httpx.Response(200, json=INVOICE_BODY)) as client:
            client.get_invoice('inv_123')

        assert client.client.is_closed
