"""
Cora payment provider client.

Thin synchronous wrapper over the provider's invoice endpoints. Every failure
mode (connection error, timeout, non-2xx status, unparseable body) is raised
as ``ProviderError`` so callers only ever deal with one error type.

Provider invoice shape::

    {
        "invoice_id": "inv_123",
        "status": "OPEN",
        "boleto_url": "https://...",       # optional
        "pix_qr_code": "00020126...",      # optional
        "pix_qr_code_url": "https://...",  # optional
        "paid_at": "2025-02-11T14:03:00Z", # optional
        "payment_method": "PIX"            # optional, set once paid
    }
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Optional

import httpx
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .exceptions import ProviderError
from .models import InvoiceStatus, PaymentMethod

logger = logging.getLogger(__name__)


# Provider status -> local mirror status
PROVIDER_STATUSES = {
    'DRAFT': InvoiceStatus.OPEN,
    'OPEN': InvoiceStatus.OPEN,
    'IN_PAYMENT': InvoiceStatus.OPEN,
    'LATE': InvoiceStatus.LATE,
    'PAID': InvoiceStatus.PAID,
    'CANCELLED': InvoiceStatus.CANCELLED,
}

# Provider payment form -> local payment method
PROVIDER_PAYMENT_METHODS = {
    'PIX': PaymentMethod.PIX,
    'BANK_SLIP': PaymentMethod.BANK_TRANSFER,
    'CREDIT_CARD': PaymentMethod.CREDIT_CARD,
}


@dataclass(frozen=True)
class ProviderInvoice:
    invoice_id: str
    status: str
    boleto_url: str = ''
    pix_qr_code: str = ''
    pix_qr_code_url: str = ''
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'ProviderInvoice':
        """Parse a provider response body, raising ProviderError when malformed."""
        if not isinstance(data, dict):
            raise ProviderError('Malformed provider response: expected an object.')

        invoice_id = data.get('invoice_id')
        raw_status = str(data.get('status') or '').upper()
        if not invoice_id or raw_status not in PROVIDER_STATUSES:
            raise ProviderError(
                f'Malformed provider response: invoice_id={invoice_id!r} status={raw_status!r}'
            )

        paid_at = None
        if data.get('paid_at'):
            paid_at = parse_datetime(str(data['paid_at']))
            if paid_at is None:
                raise ProviderError(f"Malformed provider paid_at: {data['paid_at']!r}")
            if timezone.is_naive(paid_at):
                paid_at = timezone.make_aware(paid_at, dt_timezone.utc)

        payment_method = None
        if data.get('payment_method'):
            payment_method = PROVIDER_PAYMENT_METHODS.get(str(data['payment_method']).upper())

        return cls(
            invoice_id=str(invoice_id),
            status=PROVIDER_STATUSES[raw_status],
            boleto_url=data.get('boleto_url') or '',
            pix_qr_code=data.get('pix_qr_code') or '',
            pix_qr_code_url=data.get('pix_qr_code_url') or '',
            paid_at=paid_at,
            payment_method=payment_method,
        )


class CoraClient:
    """
    HTTP client for the Cora invoice API.

    Args:
        base_url: Provider API root, e.g. "https://api.cora.com.br"
        token: Bearer token
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str,
        token: str = '',
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        headers = {'Accept': 'application/json'}
        if token:
            headers['Authorization'] = f'Bearer {token}'
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(cls) -> 'CoraClient':
        return cls(
            base_url=settings.CORA_API_URL,
            token=settings.CORA_API_TOKEN,
            timeout=settings.CORA_TIMEOUT,
        )

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> ProviderInvoice:
        logger.debug("%s %s%s", method, self.base_url, path)
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ProviderError(f'Provider request timed out: {method} {path}') from exc
        except httpx.HTTPStatusError as exc:
            status_code = exc.response.status_code
            raise ProviderError(
                f'Provider returned HTTP {status_code} for {method} {path}',
                status_code=status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f'Provider request failed: {exc}') from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError('Malformed provider response: body is not JSON.') from exc

        return ProviderInvoice.from_payload(data)

    def create_invoice(self, payload: Dict[str, Any], idempotency_key: str) -> ProviderInvoice:
        return self._request(
            'POST',
            '/invoices',
            json=payload,
            headers={'Idempotency-Key': idempotency_key},
        )

    def get_invoice(self, invoice_id: str) -> ProviderInvoice:
        return self._request('GET', f'/invoices/{invoice_id}')

    def cancel_invoice(self, invoice_id: str) -> ProviderInvoice:
        return self._request('DELETE', f'/invoices/{invoice_id}')
