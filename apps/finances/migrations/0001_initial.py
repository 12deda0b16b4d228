# Generated manually for the finances app

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='FinancialTransaction',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('transaction_type', models.CharField(choices=[('tuition', 'Tuition'), ('salary', 'Salary'), ('expense', 'Expense'), ('income', 'Income')], max_length=20)),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(Decimal('0.01'))])),
                ('discount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, validators=[MinValueValidator(Decimal('0.00'))])),
                ('late_fee', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12, validators=[MinValueValidator(Decimal('0.00'))])),
                ('final_amount', models.DecimalField(decimal_places=2, editable=False, max_digits=12)),
                ('due_date', models.DateField()),
                ('paid_date', models.DateField(blank=True, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('paid', 'Paid'), ('overdue', 'Overdue'), ('cancelled', 'Cancelled')], default='pending', max_length=20)),
                ('payment_method', models.CharField(blank=True, choices=[('pix', 'PIX'), ('bank_transfer', 'Bank transfer'), ('credit_card', 'Credit card'), ('debit_card', 'Debit card'), ('cash', 'Cash'), ('check', 'Check')], max_length=20)),
                ('reference_type', models.CharField(blank=True, choices=[('teacher', 'Teacher'), ('student', 'Student')], max_length=20)),
                ('reference_id', models.UUIDField(blank=True, null=True)),
                ('period_month', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('period_year', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('observation', models.TextField(blank=True)),
                ('category', models.CharField(blank=True, max_length=100)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='financial_transactions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'db_table': 'financial_transactions',
                'ordering': ['-due_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['transaction_type', 'status'], name='ft_type_status_idx'),
                    models.Index(fields=['status', 'due_date'], name='ft_status_due_idx'),
                    models.Index(fields=['due_date'], name='ft_due_date_idx'),
                    models.Index(fields=['paid_date'], name='ft_paid_date_idx'),
                    models.Index(fields=['reference_type', 'reference_id'], name='ft_reference_idx'),
                    models.Index(fields=['period_year', 'period_month'], name='ft_period_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(
                        condition=models.Q(('period_month__isnull', False), models.Q(('status', 'cancelled'), _negated=True)),
                        fields=('transaction_type', 'reference_type', 'reference_id', 'period_month', 'period_year'),
                        name='unique_charge_per_reference_period',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='ExternalInvoice',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('invoice_id', models.CharField(blank=True, db_index=True, max_length=100)),
                ('kind', models.CharField(choices=[('boleto', 'Boleto'), ('pix', 'PIX voucher')], max_length=10)),
                ('status', models.CharField(choices=[('open', 'Open'), ('late', 'Late'), ('paid', 'Paid'), ('cancelled', 'Cancelled'), ('failed', 'Failed')], max_length=20)),
                ('boleto_url', models.URLField(blank=True, max_length=500)),
                ('pix_qr_code', models.TextField(blank=True)),
                ('pix_qr_code_url', models.URLField(blank=True, max_length=500)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True)),
                ('last_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('transaction', models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name='external_invoice', to='finances.financialtransaction')),
            ],
            options={
                'db_table': 'external_invoices',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status'], name='invoices_status_idx'),
                ],
            },
        ),
    ]
