"""
Management command to create sample data for trying out the API.

Usage:
    python manage.py create_sample_data
    python manage.py create_sample_data --clear --month 3 --year 2025

This creates:
- 3 users (admin, finance officer, secretary)
- 8 students, one of them transferred
- 4 teachers, one without a salary
- The month's tuitions and salaries
- A few paid and overdue transactions for the dashboards
"""

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from decimal import Decimal
from datetime import timedelta

from apps.accounts.models import User, UserRole
from apps.school.models import Student, Teacher, EnrollmentStatus
from apps.finances.models import ExternalInvoice, FinancialTransaction, PaymentMethod, TransactionType
from apps.finances.services import BulkChargeGenerator, PaymentStatusMachine


STUDENTS = [
    ('Ana Souza', '5A', 'Maria Souza'),
    ('Bruno Costa', '5A', 'Paulo Costa'),
    ('Clara Mendes', '5B', 'Julia Mendes'),
    ('Davi Ferreira', '6A', 'Rita Ferreira'),
    ('Eva Martins', '6A', ''),
    ('Felipe Alves', '6B', 'Sergio Alves'),
    ('Gabriela Rocha', '7A', 'Helena Rocha'),
]

TEACHERS = [
    ('Carlos Lima', 'Mathematics', Decimal('3200.00')),
    ('Beatriz Rocha', 'Portuguese', Decimal('2800.00')),
    ('Daniel Prado', 'Science', Decimal('3000.00')),
    ('Volunteer Reader', 'Library', None),
]


class Command(BaseCommand):
    help = 'Create sample school and finance data'

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing school and finance data first',
        )
        parser.add_argument('--month', type=int, help='Billing month (default: current)')
        parser.add_argument('--year', type=int, help='Billing year (default: current)')
        parser.add_argument(
            '--tuition',
            type=Decimal,
            default=Decimal('650.00'),
            help='Monthly tuition amount',
        )

    @transaction.atomic
    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            self.clear_data()

        today = timezone.localdate()
        month = options['month'] or today.month
        year = options['year'] or today.year

        self.stdout.write('Creating sample data...')
        users = self.create_users()
        self.create_students()
        self.create_teachers()
        self.create_charges(users['finance'], month, year, options['tuition'])
        self.create_extras(users['finance'], today)

        self.stdout.write(self.style.SUCCESS('Sample data created successfully!'))
        self.stdout.write('')
        self.stdout.write('Test accounts:')
        self.stdout.write('  admin@school.example / admin123 (superuser)')
        self.stdout.write('  finance@school.example / password123')
        self.stdout.write('  secretary@school.example / password123 (no finance access)')

    def clear_data(self):
        ExternalInvoice.objects.all().delete()
        FinancialTransaction.objects.all().delete()
        Teacher.objects.all().delete()
        Student.objects.all().delete()
        User.objects.filter(email__endswith='@school.example').delete()

    def create_users(self):
        self.stdout.write('  Creating users...')

        accounts = {
            'admin': ('admin@school.example', 'admin123', 'Admin User', UserRole.ADMIN, True),
            'finance': ('finance@school.example', 'password123', 'Finance Officer', UserRole.FINANCIAL, False),
            'secretary': ('secretary@school.example', 'password123', 'Secretary', UserRole.SECRETARY, False),
        }

        users = {}
        for key, (email, password, display_name, role, superuser) in accounts.items():
            user, _ = User.objects.get_or_create(
                email=email,
                defaults={
                    'display_name': display_name,
                    'role': role,
                    'is_staff': superuser,
                    'is_superuser': superuser,
                }
            )
            user.set_password(password)
            user.save()
            users[key] = user
        return users

    def create_students(self):
        self.stdout.write('  Creating students...')

        for index, (name, class_name, guardian) in enumerate(STUDENTS, start=1):
            slug = name.split()[0].lower()
            Student.objects.get_or_create(
                registration_number=f'SAMPLE-{index:03d}',
                defaults={
                    'name': name,
                    'class_name': class_name,
                    'guardian_name': guardian,
                    'guardian_email': f'{slug}.family@example.com',
                }
            )

        Student.objects.get_or_create(
            registration_number='SAMPLE-099',
            defaults={
                'name': 'Former Student',
                'status': EnrollmentStatus.TRANSFERRED,
            }
        )

    def create_teachers(self):
        self.stdout.write('  Creating teachers...')

        for name, specialization, salary in TEACHERS:
            slug = name.split()[0].lower()
            Teacher.objects.get_or_create(
                email=f'{slug}@school.example',
                defaults={
                    'name': name,
                    'specialization': specialization,
                    'salary': salary,
                }
            )

    def create_charges(self, user, month, year, tuition):
        self.stdout.write(f'  Creating charges for {month:02d}/{year}...')

        generator = BulkChargeGenerator()
        try:
            for result in (
                generator.generate_tuitions(month, year, tuition, created_by=user),
                generator.generate_salaries(month, year, created_by=user),
            ):
                self.stdout.write(f'    {result.message}')
        finally:
            generator.close()

    def create_extras(self, user, today):
        """One-off receivables and payables so the dashboards have something to show."""
        self.stdout.write('  Creating one-off transactions...')

        extras = [
            (TransactionType.EXPENSE, Decimal('420.00'), today - timedelta(days=3),
             'Cleaning supplies', 'maintenance', (PaymentMethod.BANK_TRANSFER, today - timedelta(days=2))),
            (TransactionType.EXPENSE, Decimal('980.00'), today - timedelta(days=10),
             'Electricity bill', 'utilities', None),
            (TransactionType.INCOME, Decimal('1500.00'), today,
             'Book fair proceeds', 'events', (PaymentMethod.CASH, today)),
        ]

        for transaction_type, amount, due_date, description, category, payment in extras:
            entry, created = FinancialTransaction.objects.get_or_create(
                transaction_type=transaction_type,
                description=description,
                due_date=due_date,
                defaults={
                    'amount': amount,
                    'category': category,
                    'created_by': user,
                }
            )
            if created and payment is not None:
                PaymentStatusMachine.pay(entry, *payment)
