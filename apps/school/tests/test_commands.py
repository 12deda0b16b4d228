import pytest
from io import StringIO
from django.core.management import call_command
from apps.accounts.models import User
from apps.finances.models import FinancialTransaction, TransactionStatus, TransactionType
from apps.school.models import Student, Teacher


@pytest.mark.django_db
class TestCreateSampleData:

    def test_creates_directory_and_month_charges(self):
        out = StringIO()

        call_command('create_sample_data', '--month', '2', '--year', '2025', stdout=out)

        assert Student.objects.count() == 8
        assert Teacher.objects.count() == 4
        assert User.objects.get(email='finance@school.example').can_manage_finances()
        assert not User.objects.get(email='secretary@school.example').can_manage_finances()
        assert FinancialTransaction.objects.filter(
            transaction_type=TransactionType.TUITION, period_month=2, period_year=2025
        ).count() == 7
        assert FinancialTransaction.objects.filter(
            transaction_type=TransactionType.SALARY, period_month=2, period_year=2025
        ).count() == 3
        assert FinancialTransaction.objects.filter(status=TransactionStatus.PAID).count() == 2
        assert 'Sample data created successfully!' in out.getvalue()

    def test_rerun_does_not_duplicate_charges(self):
        call_command('create_sample_data', '--month', '2', '--year', '2025', stdout=StringIO())
        out = StringIO()

        call_command('create_sample_data', '--month', '2', '--year', '2025', stdout=out)

        assert FinancialTransaction.objects.filter(period_month=2, period_year=2025).count() == 10
        assert '0 tuition transaction(s) created for 02/2025, 7 skipped' in out.getvalue()

    def test_clear(self):
        call_command('create_sample_data', '--month', '2', '--year', '2025', stdout=StringIO())
        call_command('create_sample_data', '--clear', '--month', '3', '--year', '2025', stdout=StringIO())

        assert not FinancialTransaction.objects.filter(period_month=2).exists()
        assert FinancialTransaction.objects.filter(period_month=3).count() == 10

    def test_rerun_does_not_duplicate_one_off_transactions(self):
        call_command('create_sample_data', '--month', '2', '--year', '2025', stdout=StringIO())
        call_command('create_sample_data', '--month', '2', '--year', '2025', stdout=StringIO())

        one_offs = FinancialTransaction.objects.filter(period_month__isnull=True)
        assert one_offs.count() == 3
        assert one_offs.filter(status=TransactionStatus.PAID).count() == 2
        assert FinancialTransaction.objects.count() == 13
