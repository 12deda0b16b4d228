from decimal import Decimal

from rest_framework import serializers
from django.utils import timezone

from .models import (
    ExternalInvoice,
    FinancialTransaction,
    InvoiceKind,
    InvoiceStatus,
    PaymentMethod,
    ReferenceType,
    TransactionStatus,
    TransactionType,
)
from .services.references import describe_reference


# =============================================================================
# Input Serializers
# =============================================================================

class TransactionFilterSerializer(serializers.Serializer):
    """
    Validate query parameters for the transaction list.

    Query Parameters:
        type (str): Filter by transaction type
        status (str): Filter by effective status (overdue is derived)
        start_date (date): Due on or after this date
        end_date (date): Due on or before this date
        month (int): Due in this month
        year (int): Due in this year
        search (str): Free text over description, observation, category and
            the referenced student/teacher
    """

    type = serializers.ChoiceField(choices=TransactionType.choices, required=False)
    status = serializers.ChoiceField(choices=TransactionStatus.choices, required=False)
    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    month = serializers.IntegerField(min_value=1, max_value=12, required=False)
    year = serializers.IntegerField(min_value=2000, max_value=2100, required=False)
    search = serializers.CharField(max_length=100, required=False, allow_blank=True)

    def validate(self, attrs):
        """Validate date range."""
        start_date = attrs.get('start_date')
        end_date = attrs.get('end_date')

        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError({
                'end_date': 'End date must be on or after start date'
            })

        return attrs


class PayInputSerializer(serializers.Serializer):
    """
    Fields:
        payment_method (str): How the transaction was settled
        paid_date (date): Defaults to today
    """

    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices)
    paid_date = serializers.DateField(required=False)

    def validate_paid_date(self, value):
        if value > timezone.localdate():
            raise serializers.ValidationError('Paid date cannot be in the future')
        return value


class InvoiceKindInputSerializer(serializers.Serializer):
    kind = serializers.ChoiceField(choices=InvoiceKind.choices, required=False)


class BulkSalaryInputSerializer(serializers.Serializer):
    """
    Fields:
        month (int): Billing month, 1-12
        year (int): Billing year
        generate_invoices (bool): Request a provider invoice for each new charge
    """

    month = serializers.IntegerField(min_value=1, max_value=12)
    year = serializers.IntegerField(min_value=2000, max_value=2100)
    generate_invoices = serializers.BooleanField(required=False, default=False)


class BulkTuitionInputSerializer(BulkSalaryInputSerializer):
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))


class TransactionIdsInputSerializer(serializers.Serializer):
    transaction_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=False,
        max_length=500,
    )
    kind = serializers.ChoiceField(choices=InvoiceKind.choices, required=False)


class BulkPayInputSerializer(PayInputSerializer):
    transaction_ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=False,
        max_length=500,
    )


class CashFlowQuerySerializer(serializers.Serializer):
    """Window bounds; both default to the current month."""

    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)

    def validate(self, attrs):
        start_date = attrs.get('start_date')
        end_date = attrs.get('end_date')

        if start_date and end_date and start_date > end_date:
            raise serializers.ValidationError({
                'end_date': 'End date must be on or after start date'
            })

        return attrs


class StatisticsQuerySerializer(serializers.Serializer):
    year = serializers.IntegerField(min_value=2000, max_value=2100, required=False)
    month = serializers.IntegerField(min_value=1, max_value=12, required=False)


class InvoiceFilterSerializer(serializers.Serializer):
    """
    Query parameters for the provider invoice list.

    Query Parameters:
        status (str): Mirror status (open, late, paid, cancelled, failed)
        kind (str): boleto or pix
        type (str): Type of the transaction the invoice belongs to
    """

    status = serializers.ChoiceField(choices=InvoiceStatus.choices, required=False)
    kind = serializers.ChoiceField(choices=InvoiceKind.choices, required=False)
    type = serializers.ChoiceField(choices=TransactionType.choices, required=False)


class InvoiceByTransactionQuerySerializer(serializers.Serializer):
    transaction_id = serializers.UUIDField()


# =============================================================================
# Output Serializers
# =============================================================================


class ExternalInvoiceSerializer(serializers.ModelSerializer):
    """Provider invoice mirror."""

    class Meta:
        model = ExternalInvoice
        fields = [
            'id',
            'invoice_id',
            'kind',
            'status',
            'boleto_url',
            'pix_qr_code',
            'pix_qr_code_url',
            'paid_at',
            'amount',
            'attempts',
            'last_error',
            'last_synced_at',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ExternalInvoiceDetailSerializer(ExternalInvoiceSerializer):
    """Invoice with a short summary of the transaction it bills."""

    transaction = serializers.SerializerMethodField()

    class Meta(ExternalInvoiceSerializer.Meta):
        fields = ExternalInvoiceSerializer.Meta.fields + ['transaction']
        read_only_fields = fields

    def get_transaction(self, obj):
        transaction = obj.transaction
        today = self.context.get('today') or timezone.localdate()
        return {
            'id': transaction.id,
            'type': transaction.transaction_type,
            'final_amount': transaction.final_amount,
            'due_date': transaction.due_date,
            'status': transaction.effective_status(today).value,
            'description': transaction.description,
        }


class FinancialTransactionSerializer(serializers.ModelSerializer):
    """
    Main serializer for financial transactions.

    ``status`` is the effective status (overdue derived from the due date);
    ``stored_status`` is what the database holds.
    """

    type = serializers.CharField(source='transaction_type', read_only=True)
    status = serializers.SerializerMethodField()
    stored_status = serializers.CharField(source='status', read_only=True)
    days_overdue = serializers.SerializerMethodField()
    reference = serializers.SerializerMethodField()
    external_invoice = serializers.SerializerMethodField()
    created_by = serializers.SerializerMethodField()

    class Meta:
        model = FinancialTransaction
        fields = [
            'id',
            'type',
            'amount',
            'discount',
            'late_fee',
            'final_amount',
            'due_date',
            'paid_date',
            'status',
            'stored_status',
            'days_overdue',
            'payment_method',
            'reference',
            'period_month',
            'period_year',
            'description',
            'observation',
            'category',
            'is_receivable',
            'can_be_paid',
            'can_be_cancelled',
            'external_invoice',
            'created_by',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def _today(self):
        if 'today' not in self.context:
            self.context['today'] = timezone.localdate()
        return self.context['today']

    def get_status(self, obj):
        return obj.effective_status(self._today()).value

    def get_days_overdue(self, obj):
        return obj.days_overdue(self._today())

    def get_reference(self, obj):
        return describe_reference(obj, self.context.get('reference_targets'))

    def get_external_invoice(self, obj):
        try:
            invoice = obj.external_invoice
        except ExternalInvoice.DoesNotExist:
            return None
        return ExternalInvoiceSerializer(invoice).data

    def get_created_by(self, obj):
        if obj.created_by_id is None:
            return None
        return {'id': obj.created_by_id, 'display_name': obj.created_by.get_display_name()}


class FinancialTransactionCreateSerializer(serializers.Serializer):
    """Validate input for creating a transaction; business rules live in the service."""

    type = serializers.ChoiceField(choices=TransactionType.choices)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    late_fee = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    due_date = serializers.DateField()
    reference_type = serializers.ChoiceField(
        choices=ReferenceType.choices,
        required=False,
        allow_blank=True
    )
    reference_id = serializers.UUIDField(required=False, allow_null=True)
    period_month = serializers.IntegerField(min_value=1, max_value=12, required=False, allow_null=True)
    period_year = serializers.IntegerField(min_value=2000, max_value=2100, required=False, allow_null=True)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)
    observation = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True)

    def to_service_kwargs(self):
        data = dict(self.validated_data)
        data['transaction_type'] = data.pop('type')
        return data


class FinancialTransactionUpdateSerializer(serializers.Serializer):
    """
    Validate input for editing a pending transaction.

    Type and reference are accepted only so the service can reject them with
    a clear message.
    """

    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    discount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    late_fee = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    due_date = serializers.DateField(required=False)
    description = serializers.CharField(max_length=255, required=False, allow_blank=True)
    observation = serializers.CharField(required=False, allow_blank=True)
    category = serializers.CharField(max_length=100, required=False, allow_blank=True)
    type = serializers.CharField(required=False)
    reference_type = serializers.CharField(required=False, allow_blank=True)
    reference_id = serializers.UUIDField(required=False, allow_null=True)

    def to_service_kwargs(self):
        data = dict(self.validated_data)
        if 'type' in data:
            data['transaction_type'] = data.pop('type')
        return data


class InvoiceResultSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    success = serializers.BooleanField()
    error = serializers.CharField(required=False)


class BulkOperationResponseSerializer(serializers.Serializer):
    """Response shape of every bulk endpoint."""

    success = serializers.BooleanField()
    message = serializers.CharField()
    created_count = serializers.IntegerField()
    skipped_count = serializers.IntegerField()
    created = FinancialTransactionSerializer(many=True)
    invoice_results = InvoiceResultSerializer(many=True)
    success_count = serializers.IntegerField()
    total_attempted = serializers.IntegerField()


class SideTotalsSerializer(serializers.Serializer):
    total = serializers.DecimalField(max_digits=14, decimal_places=2)
    paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    pending = serializers.DecimalField(max_digits=14, decimal_places=2)


class DailyBreakdownSerializer(serializers.Serializer):
    date = serializers.DateField()
    receivables_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    payables_paid = serializers.DecimalField(max_digits=14, decimal_places=2)
    net_flow = serializers.DecimalField(max_digits=14, decimal_places=2)
    receivables_due = serializers.DecimalField(max_digits=14, decimal_places=2)
    payables_due = serializers.DecimalField(max_digits=14, decimal_places=2)


class MonthlyBreakdownSerializer(serializers.Serializer):
    month = serializers.CharField()
    receivables = serializers.DecimalField(max_digits=14, decimal_places=2)
    payables = serializers.DecimalField(max_digits=14, decimal_places=2)
    net = serializers.DecimalField(max_digits=14, decimal_places=2)


class CashFlowSerializer(serializers.Serializer):
    """Serializer for a CashFlowSummary."""

    start_date = serializers.DateField()
    end_date = serializers.DateField()
    receivables = serializers.SerializerMethodField()
    payables = serializers.SerializerMethodField()
    net_flow = serializers.DecimalField(max_digits=14, decimal_places=2)
    daily_breakdown = serializers.SerializerMethodField()
    monthly_breakdown = serializers.SerializerMethodField()
    overdue_transactions = serializers.SerializerMethodField()
    recent_transactions = serializers.SerializerMethodField()

    def get_receivables(self, obj):
        return SideTotalsSerializer(obj.receivables.to_dict()).data

    def get_payables(self, obj):
        return SideTotalsSerializer(obj.payables.to_dict()).data

    def get_daily_breakdown(self, obj):
        return DailyBreakdownSerializer(obj.daily_breakdown(), many=True).data

    def get_monthly_breakdown(self, obj):
        return MonthlyBreakdownSerializer(obj.monthly_breakdown(), many=True).data

    def get_overdue_transactions(self, obj):
        return FinancialTransactionSerializer(
            obj.overdue_transactions, many=True, context=self.context
        ).data

    def get_recent_transactions(self, obj):
        return FinancialTransactionSerializer(
            obj.recent_transactions, many=True, context=self.context
        ).data
