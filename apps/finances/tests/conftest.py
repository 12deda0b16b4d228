import threading
import pytest
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from apps.accounts.models import User, UserRole
from apps.school.models import Student, Teacher, EnrollmentStatus, EmploymentStatus
from apps.finances.cora import CoraClient, ProviderInvoice
from apps.finances.exceptions import ProviderError
from apps.finances.models import (
    FinancialTransaction,
    ReferenceType,
    TransactionType,
    InvoiceStatus,
)
from apps.finances.services import InvoiceReconciler


class FakeCoraClient:
    """
    In-memory stand-in for CoraClient.

    ``fail_codes`` holds transaction ids (the invoice ``code``) whose creation
    fails; ``states`` lets a test change what get/cancel return.
    """

    def __init__(self):
        self.fail_codes = set()
        self.fail_all = False
        self.created = []
        self.cancelled = []
        self.states = {}
        self._lock = threading.Lock()
        self._counter = 0
        self.close_calls = 0

    def create_invoice(self, payload, idempotency_key):
        if self.fail_all or payload['code'] in self.fail_codes:
            raise ProviderError('Provider returned HTTP 500 for POST /invoices', status_code=500)
        with self._lock:
            self._counter += 1
            invoice_id = f'inv_{self._counter}'
            self.created.append(payload)
        invoice = ProviderInvoice(
            invoice_id=invoice_id,
            status=InvoiceStatus.OPEN,
            boleto_url=f'https://cora.test/boleto/{invoice_id}' if payload['kind'] == 'boleto' else '',
            pix_qr_code=f'00020126PIX{invoice_id}',
            pix_qr_code_url=f'https://cora.test/pix/{invoice_id}',
        )
        self.states[invoice_id] = invoice
        return invoice

    def get_invoice(self, invoice_id):
        if self.fail_all:
            raise ProviderError('Provider request timed out: GET /invoices')
        return self.states[invoice_id]

    def cancel_invoice(self, invoice_id):
        if self.fail_all:
            raise ProviderError('Provider returned HTTP 503 for DELETE /invoices', status_code=503)
        current = self.states[invoice_id]
        cancelled = ProviderInvoice(
            invoice_id=invoice_id,
            status=InvoiceStatus.CANCELLED,
            boleto_url=current.boleto_url,
            pix_qr_code=current.pix_qr_code,
            pix_qr_code_url=current.pix_qr_code_url,
        )
        self.states[invoice_id] = cancelled
        self.cancelled.append(invoice_id)
        return cancelled

    def close(self):
        self.close_calls += 1

    def mark_paid(self, invoice_id, paid_at=None, payment_method='pix'):
        current = self.states[invoice_id]
        self.states[invoice_id] = ProviderInvoice(
            invoice_id=invoice_id,
            status=InvoiceStatus.PAID,
            boleto_url=current.boleto_url,
            pix_qr_code=current.pix_qr_code,
            pix_qr_code_url=current.pix_qr_code_url,
            paid_at=paid_at or timezone.now(),
            payment_method=payment_method,
        )


@pytest.fixture
def fake_cora():
    return FakeCoraClient()


@pytest.fixture(autouse=True)
def provider(monkeypatch, fake_cora):
    """Route every reconciler built from settings to the fake provider."""
    monkeypatch.setattr(CoraClient, 'from_settings', classmethod(lambda cls: fake_cora))
    return fake_cora


@pytest.fixture
def reconciler(fake_cora):
    return InvoiceReconciler(client=fake_cora)


@pytest.fixture
def today():
    return timezone.localdate()


@pytest.fixture
def api_client():
    """Return an unauthenticated API client."""
    return APIClient()


@pytest.fixture
def finance_user(db):
    """Create and return a financial officer."""
    return User.objects.create_user(
        email='finance@school.example',
        password='TestPass123!',
        display_name='Finance Officer',
        role=UserRole.FINANCIAL,
    )


@pytest.fixture
def secretary_user(db):
    """Create and return a secretary without finance access."""
    return User.objects.create_user(
        email='secretary@school.example',
        password='TestPass123!',
        display_name='Secretary',
        role=UserRole.SECRETARY,
    )


@pytest.fixture
def finance_client(api_client, finance_user):
    """Return API client authenticated as the financial officer."""
    refresh = RefreshToken.for_user(finance_user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return api_client


@pytest.fixture
def secretary_client(api_client, secretary_user):
    """Return API client authenticated as the secretary."""
    refresh = RefreshToken.for_user(secretary_user)
    api_client.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
    return api_client


@pytest.fixture
def student(db):
    return Student.objects.create(
        name='Ana Souza',
        registration_number='2025-0001',
        class_name='5A',
        guardian_name='Maria Souza',
        guardian_email='maria@example.com',
        guardian_cpf='123.456.789-00',
    )


@pytest.fixture
def students(db, student):
    """Five active students (including ``student``) and one inactive."""
    others = [
        Student.objects.create(
            name=f'Student {i}',
            registration_number=f'2025-{i:04d}',
            guardian_email=f'guardian{i}@example.com',
        )
        for i in range(2, 6)
    ]
    Student.objects.create(
        name='Former Student',
        registration_number='2024-0099',
        status=EnrollmentStatus.TRANSFERRED,
    )
    return [student] + others


@pytest.fixture
def teacher(db):
    return Teacher.objects.create(
        name='Carlos Lima',
        email='carlos@school.example',
        salary=Decimal('3200.00'),
    )


@pytest.fixture
def teachers(db, teacher):
    """Two salaried active teachers, one without salary, one inactive."""
    second = Teacher.objects.create(name='Beatriz Rocha', email='bia@school.example', salary=Decimal('2800.00'))
    Teacher.objects.create(name='Volunteer', email='vol@school.example')
    Teacher.objects.create(
        name='Retired',
        salary=Decimal('3000.00'),
        status=EmploymentStatus.INACTIVE,
    )
    return [teacher, second]


@pytest.fixture
def make_transaction(db):
    """Factory that writes a transaction directly, bypassing validation."""
    def factory(**kwargs):
        kwargs.setdefault('transaction_type', TransactionType.EXPENSE)
        kwargs.setdefault('amount', Decimal('100.00'))
        kwargs.setdefault('due_date', timezone.localdate() + timedelta(days=10))
        return FinancialTransaction.objects.create(**kwargs)
    return factory


@pytest.fixture
def tuition(make_transaction, student, today):
    return make_transaction(
        transaction_type=TransactionType.TUITION,
        reference_type=ReferenceType.STUDENT,
        reference_id=student.id,
        amount=Decimal('650.00'),
        due_date=today + timedelta(days=5),
        description='Tuition - Ana Souza',
    )


@pytest.fixture
def salary(make_transaction, teacher, today):
    return make_transaction(
        transaction_type=TransactionType.SALARY,
        reference_type=ReferenceType.TEACHER,
        reference_id=teacher.id,
        amount=Decimal('3200.00'),
        due_date=today + timedelta(days=5),
        description='Salary - Carlos Lima',
    )


@pytest.fixture
def expense(make_transaction, today):
    return make_transaction(
        transaction_type=TransactionType.EXPENSE,
        amount=Decimal('200.00'),
        due_date=today + timedelta(days=3),
        description='Cleaning supplies',
        category='maintenance',
    )
