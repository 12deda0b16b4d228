# ==========================================
# apps/finances/admin.py
# ==========================================

from django.contrib import admin
from django.utils import timezone
from django.utils.html import format_html

from .models import ExternalInvoice, FinancialTransaction, InvoiceStatus, TransactionStatus


STATUS_COLORS = {
    TransactionStatus.PENDING: ('#E5C49A', '#2C1810'),
    TransactionStatus.PAID: ('#6B8E5E', 'white'),
    TransactionStatus.OVERDUE: ('#B85C5C', 'white'),
    TransactionStatus.CANCELLED: ('#999', 'white'),
}

INVOICE_COLORS = {
    InvoiceStatus.OPEN: ('#E5C49A', '#2C1810'),
    InvoiceStatus.LATE: ('#D4915C', 'white'),
    InvoiceStatus.PAID: ('#6B8E5E', 'white'),
    InvoiceStatus.CANCELLED: ('#999', 'white'),
    InvoiceStatus.FAILED: ('#B85C5C', 'white'),
}


def badge(colors, value, label):
    bg, fg = colors.get(value, ('#ccc', '#666'))
    return format_html(
        '<span style="background: {}; color: {}; padding: 3px 8px; '
        'border-radius: 10px; font-size: 11px;">{}</span>',
        bg, fg, label
    )


class EffectiveStatusFilter(admin.SimpleListFilter):
    """Filter by the status readers see, with overdue derived from due date."""
    title = 'status'
    parameter_name = 'effective_status'

    def lookups(self, request, model_admin):
        return TransactionStatus.choices

    def queryset(self, request, queryset):
        if self.value():
            return queryset.with_effective_status(self.value(), timezone.localdate())
        return queryset


class ExternalInvoiceInline(admin.StackedInline):
    """Read-only provider invoice inside a transaction."""
    model = ExternalInvoice
    extra = 0
    can_delete = False
    fields = [
        'invoice_id',
        'kind',
        'status',
        'boleto_url',
        'pix_qr_code_url',
        'paid_at',
        'attempts',
        'last_error',
        'last_synced_at',
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        """Invoices are issued through the reconciler only."""
        return False


@admin.register(FinancialTransaction)
class FinancialTransactionAdmin(admin.ModelAdmin):
    """
    Admin interface for financial transactions.

    Status changes go through the API so the status machine and the provider
    stay in step; the admin is for browsing and corrections to free text.
    """

    list_display = [
        'description',
        'transaction_type',
        'final_amount',
        'due_date',
        'status_badge',
        'paid_date',
        'payment_method',
        'get_invoice_status',
    ]

    list_filter = [
        EffectiveStatusFilter,
        'transaction_type',
        'payment_method',
        'due_date',
    ]

    search_fields = [
        'description',
        'observation',
        'category',
        'reference_id',
    ]

    readonly_fields = [
        'id',
        'transaction_type',
        'amount',
        'discount',
        'late_fee',
        'final_amount',
        'due_date',
        'status',
        'paid_date',
        'payment_method',
        'reference_type',
        'reference_id',
        'period_month',
        'period_year',
        'created_by',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('Transaction', {
            'fields': ('id', 'transaction_type', 'reference_type', 'reference_id', 'period_month', 'period_year')
        }),
        ('Amounts', {
            'fields': ('amount', 'discount', 'late_fee', 'final_amount')
        }),
        ('Payment', {
            'fields': ('due_date', 'status', 'paid_date', 'payment_method')
        }),
        ('Notes', {
            'fields': ('description', 'observation', 'category')
        }),
        ('Metadata', {
            'fields': ('created_by', 'created_at', 'updated_at'),
            'classes': ('collapse',)
        }),
    )

    inlines = [ExternalInvoiceInline]
    date_hierarchy = 'due_date'
    list_select_related = ['external_invoice']

    def status_badge(self, obj):
        status = obj.effective_status()
        return badge(STATUS_COLORS, status, status.label)
    status_badge.short_description = 'Status'

    def get_invoice_status(self, obj):
        invoice = getattr(obj, 'external_invoice', None)
        if invoice is None:
            return '-'
        return badge(INVOICE_COLORS, invoice.status, invoice.get_status_display())
    get_invoice_status.short_description = 'Invoice'

    def has_add_permission(self, request):
        return False


@admin.register(ExternalInvoice)
class ExternalInvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_id', 'transaction', 'kind', 'status', 'attempts', 'last_synced_at']
    list_filter = ['kind', 'status']
    search_fields = ['invoice_id', 'transaction__description']
    readonly_fields = [field.name for field in ExternalInvoice._meta.fields]

    def has_add_permission(self, request):
        return False
