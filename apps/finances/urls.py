from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

app_name = 'finances'

router = DefaultRouter()
router.register(r'financial_transactions', views.FinancialTransactionViewSet, basename='financial-transaction')
router.register(r'cora_invoices', views.ExternalInvoiceViewSet, basename='external-invoice')

urlpatterns = [
    # GET    /api/financial_transactions/                 - List with pagination and summary
    # POST   /api/financial_transactions/                 - Create transaction
    # GET    /api/financial_transactions/{id}/            - Get transaction
    # PUT    /api/financial_transactions/{id}/            - Update pending transaction
    # PATCH  /api/financial_transactions/{id}/            - Partial update
    # DELETE /api/financial_transactions/{id}/            - Delete transaction

    # Status transitions
    # PUT    /api/financial_transactions/{id}/pay/        - Mark as paid
    # POST   /api/financial_transactions/{id}/cancel/     - Cancel
    # POST   /api/financial_transactions/bulk_pay/        - Pay several

    # Provider invoices
    # POST   /api/financial_transactions/{id}/generate_cora_invoice/
    # POST   /api/financial_transactions/{id}/refresh_invoice/
    # POST   /api/financial_transactions/{id}/cancel_invoice/
    # GET    /api/financial_transactions/{id}/pix_voucher/
    # POST   /api/financial_transactions/generate_invoices/

    # Monthly charges
    # POST   /api/financial_transactions/bulk_create_tuitions/
    # POST   /api/financial_transactions/bulk_create_salaries/

    # Dashboards
    # GET    /api/financial_transactions/cash_flow/
    # GET    /api/financial_transactions/statistics/

    # Provider invoice browsing
    # GET    /api/cora_invoices/                          - List with status/kind filters
    # GET    /api/cora_invoices/{id}/                     - Get invoice
    # GET    /api/cora_invoices/by_transaction/?transaction_id=
    # PATCH  /api/cora_invoices/{id}/cancel/              - Cancel on the provider

    path('', include(router.urls)),
]
