"""
PIX voucher rendering.

The provider returns the PIX "copia e cola" payload as text; the voucher is
that payload rendered as a QR code image so it can be shown on screen or
printed for the payer.
"""
import base64
from io import BytesIO

import qrcode

from .exceptions import TransactionValidationError


class PixVoucherGenerator:
    """
    Render the PIX payload of a provider invoice as a PNG QR code.

    Example:
        Embed a voucher in an API response::

            invoice = transaction.external_invoice
            data_uri = PixVoucherGenerator.as_data_uri(invoice.pix_qr_code)
            # "data:image/png;base64,iVBORw0KGgo..."

    Note:
        Requires ``qrcode[pil]``.
    """

    @staticmethod
    def generate_qr_image(payload, output_path=None):
        """
        Build the QR code image for a PIX payload.

        Args:
            payload (str): PIX copy-and-paste string from the provider.
            output_path (str, optional): Save the PNG here instead of
                returning the image.

        Returns:
            PIL.Image.Image | str: The image, or ``output_path`` when given.

        Raises:
            TransactionValidationError: Empty payload.
        """
        if not payload:
            raise TransactionValidationError('Invoice has no PIX payload.')

        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=4,
        )
        qr.add_data(payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        if output_path:
            img.save(output_path)
            return output_path

        return img

    @classmethod
    def as_png_bytes(cls, payload):
        buffer = BytesIO()
        cls.generate_qr_image(payload).save(buffer, format='PNG')
        return buffer.getvalue()

    @classmethod
    def as_data_uri(cls, payload):
        encoded = base64.b64encode(cls.as_png_bytes(payload)).decode('ascii')
        return f'data:image/png;base64,{encoded}'

    @classmethod
    def for_invoice(cls, invoice):
        """
        Voucher dict for an ExternalInvoice: payload, data URI and provider URL.

        Raises:
            TransactionValidationError: Invoice carries no PIX payload.
        """
        if invoice is None or not invoice.pix_qr_code:
            raise TransactionValidationError('Transaction has no PIX voucher available.')
        return {
            'invoice_id': invoice.invoice_id,
            'pix_qr_code': invoice.pix_qr_code,
            'pix_qr_code_url': invoice.pix_qr_code_url,
            'image': cls.as_data_uri(invoice.pix_qr_code),
        }
