from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.pagination import PageNumberPagination
from django.utils import timezone
from drf_spectacular.utils import extend_schema, OpenApiParameter

from .models import ExternalInvoice, FinancialTransaction
from .exceptions import InvoiceNotFoundError
from .serializers import (
    FinancialTransactionSerializer,
    FinancialTransactionCreateSerializer,
    ExternalInvoiceDetailSerializer,
    FinancialTransactionUpdateSerializer,
    BulkOperationResponseSerializer,
    CashFlowSerializer,
    # Input serializers
    TransactionFilterSerializer,
    PayInputSerializer,
    InvoiceKindInputSerializer,
    BulkTuitionInputSerializer,
    BulkSalaryInputSerializer,
    TransactionIdsInputSerializer,
    BulkPayInputSerializer,
    CashFlowQuerySerializer,
    StatisticsQuerySerializer,
    InvoiceFilterSerializer,
    InvoiceByTransactionQuerySerializer,
)
from .services import (
    BulkChargeGenerator,
    CashFlowAggregator,
    InvoiceReconciler,
    TransactionQuery,
    bulk_pay,
    cancel_transaction,
    create_transaction,
    delete_transaction,
    get_transaction,
    list_transactions,
    load_reference_targets,
    pay_transaction,
    summarize_transactions,
    transactions_for_cascade,
    update_transaction,
)
from .permissions import CanManageFinances
from .vouchers import PixVoucherGenerator


UUID_PATTERN = '[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}'


class TransactionPagination(PageNumberPagination):
    """Page/per_page pagination that also returns the filtered list summary."""
    page_size = 20
    page_size_query_param = 'per_page'
    max_page_size = 100
    results_key = 'transactions'

    def get_paginated_response(self, data, summary=None):
        body = {
            self.results_key: data,
            'pagination': {
                'page': self.page.number,
                'per_page': self.page.paginator.per_page,
                'total': self.page.paginator.count,
                'total_pages': self.page.paginator.num_pages,
            },
        }
        if summary is not None:
            body['summary'] = summary
        return Response(body)


class InvoicePagination(TransactionPagination):
    results_key = 'invoices'


class FinancialTransactionViewSet(viewsets.ModelViewSet):
    """
    ViewSet for financial transactions.

    list: Filtered, paginated transactions with a summary
    create: Create a pending transaction
    retrieve: Get a transaction
    update: Edit a pending transaction
    destroy: Delete a transaction without an open provider invoice

    Writes go through the finances services so every rule (amount checks,
    reference validation, status transitions) lives in one place.
    """

    queryset = FinancialTransaction.objects.select_related('external_invoice', 'created_by')
    serializer_class = FinancialTransactionSerializer
    permission_classes = [IsAuthenticated, CanManageFinances]
    pagination_class = TransactionPagination
    lookup_value_regex = UUID_PATTERN

    def get_reconciler(self):
        """One provider client per request, closed in finalize_response."""
        if getattr(self, '_reconciler', None) is None:
            self._reconciler = InvoiceReconciler()
        return self._reconciler

    def finalize_response(self, request, response, *args, **kwargs):
        reconciler = getattr(self, '_reconciler', None)
        if reconciler is not None:
            self._reconciler = None
            reconciler.close()
        return super().finalize_response(request, response, *args, **kwargs)

    def get_bulk_generator(self):
        return BulkChargeGenerator(reconciler=self.get_reconciler())

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['today'] = timezone.localdate()
        return context

    def _serialize(self, transactions, many=False):
        items = list(transactions) if many else [transactions]
        context = self.get_serializer_context()
        context['reference_targets'] = load_reference_targets(items)
        return FinancialTransactionSerializer(transactions, many=many, context=context).data

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @extend_schema(parameters=[TransactionFilterSerializer])
    def list(self, request, *args, **kwargs):
        """
        GET /api/financial_transactions/?type=&status=&start_date=&end_date=&month=&year=&search=&page=&per_page=
        """
        filter_serializer = TransactionFilterSerializer(data=request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        params = filter_serializer.validated_data

        query = TransactionQuery(
            transaction_type=params.get('type'),
            status=params.get('status'),
            start_date=params.get('start_date'),
            end_date=params.get('end_date'),
            month=params.get('month'),
            year=params.get('year'),
            search=params.get('search', ''),
        )
        queryset = list_transactions(query).select_related('created_by')
        summary = summarize_transactions(queryset)

        page = self.paginate_queryset(queryset)
        return self.paginator.get_paginated_response(self._serialize(page, many=True), summary=summary)

    @extend_schema(request=FinancialTransactionCreateSerializer, responses={201: FinancialTransactionSerializer})
    def create(self, request, *args, **kwargs):
        input_serializer = FinancialTransactionCreateSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        transaction = create_transaction(
            **input_serializer.to_service_kwargs(),
            created_by=request.user
        )
        return Response(self._serialize(transaction), status=status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None, *args, **kwargs):
        return Response(self._serialize(get_transaction(pk)))

    @extend_schema(request=FinancialTransactionUpdateSerializer, responses={200: FinancialTransactionSerializer})
    def update(self, request, pk=None, *args, **kwargs):
        input_serializer = FinancialTransactionUpdateSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        transaction = update_transaction(pk, **input_serializer.to_service_kwargs())
        return Response(self._serialize(transaction))

    def destroy(self, request, pk=None, *args, **kwargs):
        delete_transaction(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    @extend_schema(request=PayInputSerializer, responses={200: FinancialTransactionSerializer})
    @action(detail=True, methods=['put'])
    def pay(self, request, pk=None):
        """
        Mark a transaction as paid.

        PUT /api/financial_transactions/{id}/pay/
        Body: {"payment_method": "pix", "paid_date": "2025-02-10"}
        """
        input_serializer = PayInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        transaction = pay_transaction(
            pk,
            payment_method=input_serializer.validated_data['payment_method'],
            paid_date=input_serializer.validated_data.get('paid_date'),
            reconciler=self.get_reconciler(),
        )
        return Response(self._serialize(get_transaction(transaction.id)))

    @extend_schema(request=None, responses={200: FinancialTransactionSerializer})
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """POST /api/financial_transactions/{id}/cancel/"""
        transaction = cancel_transaction(pk)
        return Response(self._serialize(get_transaction(transaction.id)))

    @extend_schema(request=BulkPayInputSerializer)
    @action(detail=False, methods=['post'])
    def bulk_pay(self, request):
        """
        Pay several transactions; each succeeds or fails on its own.

        POST /api/financial_transactions/bulk_pay/
        Body: {"transaction_ids": [...], "payment_method": "cash"}
        """
        input_serializer = BulkPayInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        results = bulk_pay(
            data['transaction_ids'],
            payment_method=data['payment_method'],
            paid_date=data.get('paid_date'),
            reconciler=self.get_reconciler(),
        )
        success_count = sum(1 for result in results if result.success)

        return Response({
            'success': success_count == len(results),
            'message': f'{success_count} of {len(results)} transactions paid.',
            'results': [result.to_dict() for result in results],
            'success_count': success_count,
            'total_attempted': len(results),
        })

    # ------------------------------------------------------------------
    # Provider invoices
    # ------------------------------------------------------------------

    @extend_schema(request=InvoiceKindInputSerializer, responses={200: FinancialTransactionSerializer})
    @action(detail=True, methods=['post'])
    def generate_cora_invoice(self, request, pk=None):
        """
        Issue a provider invoice (boleto or PIX) for a pending transaction.

        POST /api/financial_transactions/{id}/generate_cora_invoice/
        Body: {"kind": "boleto"}   (optional)

        A provider failure is recorded on the invoice and returned with 502.
        """
        input_serializer = InvoiceKindInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)

        transaction = get_transaction(pk)
        result = self.get_reconciler().generate_invoice(
            transaction,
            kind=input_serializer.validated_data.get('kind')
        )

        body = {
            'success': result.success,
            'transaction': self._serialize(get_transaction(transaction.id)),
        }
        if not result.success:
            body['error'] = result.error
            return Response(body, status=status.HTTP_502_BAD_GATEWAY)
        return Response(body)

    @extend_schema(request=None, responses={200: FinancialTransactionSerializer})
    @action(detail=True, methods=['post'])
    def refresh_invoice(self, request, pk=None):
        """POST /api/financial_transactions/{id}/refresh_invoice/"""
        transaction = get_transaction(pk)
        self.get_reconciler().refresh_from_provider(transaction)
        return Response(self._serialize(get_transaction(transaction.id)))

    @extend_schema(request=None, responses={200: FinancialTransactionSerializer})
    @action(detail=True, methods=['post'])
    def cancel_invoice(self, request, pk=None):
        """POST /api/financial_transactions/{id}/cancel_invoice/"""
        transaction = get_transaction(pk)
        self.get_reconciler().cancel_invoice(transaction)
        return Response(self._serialize(get_transaction(transaction.id)))

    @action(detail=True, methods=['get'])
    def pix_voucher(self, request, pk=None):
        """
        PIX voucher as a base64 PNG data URI.

        GET /api/financial_transactions/{id}/pix_voucher/
        """
        transaction = get_transaction(pk)
        invoice = getattr(transaction, 'external_invoice', None)
        return Response(PixVoucherGenerator.for_invoice(invoice))

    # ------------------------------------------------------------------
    # Bulk generation
    # ------------------------------------------------------------------

    def _bulk_response(self, result, cascade=None):
        result.cascade = cascade
        created = result.created
        if cascade is not None:
            # Reload so nested invoices reflect the cascade outcome
            by_id = {tx.id: tx for tx in FinancialTransaction.objects.select_related(
                'external_invoice', 'created_by'
            ).filter(id__in=[tx.id for tx in created])}
            created = [by_id[tx.id] for tx in created]

        body = {
            'success': True,
            'message': result.message,
            'created_count': result.created_count,
            'skipped_count': result.skipped_count,
            'created': self._serialize(created, many=True),
            'invoice_results': [r.to_dict() for r in cascade.results] if cascade else [],
            'success_count': cascade.success_count if cascade else 0,
            'total_attempted': cascade.total_attempted if cascade else 0,
        }
        code = status.HTTP_201_CREATED if result.created_count else status.HTTP_200_OK
        return Response(body, status=code)

    @extend_schema(request=BulkTuitionInputSerializer, responses={201: BulkOperationResponseSerializer})
    @action(detail=False, methods=['post'])
    def bulk_create_tuitions(self, request):
        """
        Create the month's tuition for every active student.

        POST /api/financial_transactions/bulk_create_tuitions/
        Body: {"month": 2, "year": 2025, "amount": "650.00", "generate_invoices": true}
        """
        input_serializer = BulkTuitionInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        generator = self.get_bulk_generator()
        result = generator.generate_tuitions(
            data['month'], data['year'], data['amount'], created_by=request.user
        )
        cascade = None
        if data['generate_invoices'] and result.created:
            cascade = generator.generate_invoices(result.created)
        return self._bulk_response(result, cascade)

    @extend_schema(request=BulkSalaryInputSerializer, responses={201: BulkOperationResponseSerializer})
    @action(detail=False, methods=['post'])
    def bulk_create_salaries(self, request):
        """
        Create the month's salary for every active teacher.

        POST /api/financial_transactions/bulk_create_salaries/
        Body: {"month": 2, "year": 2025, "generate_invoices": false}
        """
        input_serializer = BulkSalaryInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        generator = self.get_bulk_generator()
        result = generator.generate_salaries(data['month'], data['year'], created_by=request.user)
        cascade = None
        if data['generate_invoices'] and result.created:
            cascade = generator.generate_invoices(result.created)
        return self._bulk_response(result, cascade)

    @extend_schema(request=TransactionIdsInputSerializer)
    @action(detail=False, methods=['post'])
    def generate_invoices(self, request):
        """
        Run the invoice cascade for existing transactions.

        POST /api/financial_transactions/generate_invoices/
        Body: {"transaction_ids": [...], "kind": "boleto"}
        """
        input_serializer = TransactionIdsInputSerializer(data=request.data)
        input_serializer.is_valid(raise_exception=True)
        data = input_serializer.validated_data

        transactions = transactions_for_cascade(data['transaction_ids'])
        cascade = self.get_bulk_generator().generate_invoices(transactions, kind=data.get('kind'))

        return Response({
            'success': cascade.success_count == cascade.total_attempted,
            'message': (
                f'{cascade.success_count} invoices succeeded '
                f'of {cascade.total_attempted} attempted.'
            ),
            'invoice_results': [r.to_dict() for r in cascade.results],
            'success_count': cascade.success_count,
            'total_attempted': cascade.total_attempted,
        })

    # ------------------------------------------------------------------
    # Dashboards
    # ------------------------------------------------------------------

    @extend_schema(parameters=[CashFlowQuerySerializer], responses={200: CashFlowSerializer})
    @action(detail=False, methods=['get'])
    def cash_flow(self, request):
        """
        Cash-flow summary for a window (defaults to the current month).

        GET /api/financial_transactions/cash_flow/?start_date=2025-02-01&end_date=2025-02-28
        """
        query_serializer = CashFlowQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)
        params = query_serializer.validated_data

        aggregator = CashFlowAggregator()
        summary = aggregator.for_window(params.get('start_date'), params.get('end_date'))

        context = self.get_serializer_context()
        context['today'] = aggregator.today
        context['reference_targets'] = load_reference_targets(
            summary.overdue_transactions + summary.recent_transactions
        )
        return Response(CashFlowSerializer(summary, context=context).data)

    @extend_schema(
        parameters=[
            OpenApiParameter('year', int, description='Defaults to the current year'),
            OpenApiParameter('month', int, description='Omit for the whole year'),
        ]
    )
    @action(detail=False, methods=['get'])
    def statistics(self, request):
        """GET /api/financial_transactions/statistics/?year=2025&month=2"""
        query_serializer = StatisticsQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)
        params = query_serializer.validated_data

        aggregator = CashFlowAggregator()
        year = params.get('year') or aggregator.today.year
        return Response(aggregator.statistics(year, params.get('month')))


class ExternalInvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Browse provider invoices independently of their transactions.

    list: Paginated invoices filtered by status, kind or transaction type
    retrieve: Get one invoice
    by_transaction: The invoice bound to a transaction
    cancel: Cancel the invoice on the provider
    """

    queryset = ExternalInvoice.objects.select_related('transaction')
    serializer_class = ExternalInvoiceDetailSerializer
    permission_classes = [IsAuthenticated, CanManageFinances]
    pagination_class = InvoicePagination
    lookup_value_regex = UUID_PATTERN

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['today'] = timezone.localdate()
        return context

    def _get_invoice(self, **lookup):
        invoice = self.get_queryset().filter(**lookup).first()
        if invoice is None:
            raise InvoiceNotFoundError()
        return invoice

    @extend_schema(parameters=[InvoiceFilterSerializer])
    def list(self, request, *args, **kwargs):
        """
        GET /api/cora_invoices/?status=&kind=&type=&page=&per_page=
        """
        filter_serializer = InvoiceFilterSerializer(data=request.query_params)
        filter_serializer.is_valid(raise_exception=True)
        params = filter_serializer.validated_data

        queryset = self.get_queryset()
        if params.get('status'):
            queryset = queryset.filter(status=params['status'])
        if params.get('kind'):
            queryset = queryset.filter(kind=params['kind'])
        if params.get('type'):
            queryset = queryset.filter(transaction__transaction_type=params['type'])

        page = self.paginate_queryset(queryset.order_by('-created_at', 'id'))
        serializer = self.get_serializer(page, many=True)
        return self.paginator.get_paginated_response(serializer.data)

    def retrieve(self, request, pk=None, *args, **kwargs):
        invoice = self._get_invoice(pk=pk)
        return Response({'invoice': self.get_serializer(invoice).data})

    @extend_schema(parameters=[InvoiceByTransactionQuerySerializer])
    @action(detail=False, methods=['get'])
    def by_transaction(self, request):
        """GET /api/cora_invoices/by_transaction/?transaction_id=<uuid>"""
        query_serializer = InvoiceByTransactionQuerySerializer(data=request.query_params)
        query_serializer.is_valid(raise_exception=True)

        invoice = self._get_invoice(transaction_id=query_serializer.validated_data['transaction_id'])
        return Response({'invoice': self.get_serializer(invoice).data})

    @extend_schema(request=None)
    @action(detail=True, methods=['patch'])
    def cancel(self, request, pk=None):
        """
        Cancel an open or late invoice on the provider. The transaction stays pending.

        PATCH /api/cora_invoices/{id}/cancel/
        """
        invoice = self._get_invoice(pk=pk)
        with InvoiceReconciler() as reconciler:
            invoice = reconciler.cancel_invoice(invoice.transaction)

        invoice = self._get_invoice(pk=invoice.pk)
        return Response({
            'success': True,
            'message': 'Invoice cancelled.',
            'invoice': self.get_serializer(invoice).data,
        })
