# rental_api/views.py
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler

from rentals import queries
from rentals.exceptions import (
    InvoiceNotPayable,
    NotFound,
    PromotionError,
    RentalError,
    ValidationFailed,
    VehicleUnavailable,
)
from rentals.invoicing import InvoiceGenerator
from rentals.lifecycle import RentalLifecycle
from rentals.models import Invoice, Payment, RentalOrder
from rentals.payments import PaymentReconciler
from rentals.pricing import PricingCalculator

from .serializers import (
    CancelSerializer,
    CompleteRentalSerializer,
    InvoiceGenerateSerializer,
    InvoiceSerializer,
    InvoiceUpdateSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    PriceQuoteRequestSerializer,
    PriceQuoteSerializer,
    RefreshOverdueSerializer,
    RentalOrderCreateSerializer,
    RentalOrderSerializer,
    RentalOrderUpdateSerializer,
    RentalStatusHistorySerializer,
    StartRentalSerializer,
    TransitionSerializer,
    VoidPaymentSerializer,
)


# Most specific first; anything else raised by the services is a conflict.
ERROR_STATUS = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (VehicleUnavailable, status.HTTP_409_CONFLICT),
    (InvoiceNotPayable, status.HTTP_409_CONFLICT),
    (ValidationFailed, status.HTTP_400_BAD_REQUEST),
    (PromotionError, status.HTTP_400_BAD_REQUEST),
)


def status_for_error(exc):
    for error_class, http_status in ERROR_STATUS:
        if isinstance(exc, error_class):
            return http_status
    return status.HTTP_409_CONFLICT


def rental_exception_handler(exc, context):
    """Render rental errors as ``{"error": code, "detail": message}``."""
    if isinstance(exc, RentalError):
        return Response(exc.as_dict(), status=status_for_error(exc))

    response = exception_handler(exc, context)
    if response is not None and isinstance(exc, ValidationError):
        response.data = {"error": "validation_failed", "detail": response.data}
    return response


def _actor(request):
    user = getattr(request, "user", None)
    return user if user is not None and user.is_authenticated else None


class RentalOrderViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = RentalOrderSerializer
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        queryset = RentalOrder.objects.not_deleted().select_related('customer', 'vehicle', 'employee')
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        vehicle_id = self.request.query_params.get('vehicle')
        if vehicle_id:
            queryset = queryset.filter(vehicle_id=vehicle_id)
        return queryset

    def get_object(self):
        return queries.get_rental_order(self.kwargs['pk'])

    def _respond(self, order, http_status=status.HTTP_200_OK):
        return Response(RentalOrderSerializer(order).data, status=http_status)

    def create(self, request):
        serializer = RentalOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = RentalLifecycle().create_order(actor=_actor(request), **serializer.validated_data)
        return self._respond(order, status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = RentalOrderUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        order = RentalLifecycle().update_order(pk, actor=_actor(request), **serializer.validated_data)
        return self._respond(order)

    def destroy(self, request, pk=None):
        RentalLifecycle().delete_order(pk, actor=_actor(request))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'])
    def confirm(self, request, pk=None):
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = RentalLifecycle().confirm(pk, actor=_actor(request), notes=serializer.validated_data.get('notes'))
        return self._respond(order)

    @action(detail=True, methods=['post'])
    def start(self, request, pk=None):
        serializer = StartRentalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = RentalLifecycle().start(
            pk,
            actor=_actor(request),
            notes=data.get('notes'),
            actual_start=data.get('actual_start'),
        )
        return self._respond(order)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        serializer = CompleteRentalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = RentalLifecycle().complete(
            pk,
            actor=_actor(request),
            notes=data.get('notes'),
            actual_end=data.get('actual_end'),
            return_location=data.get('return_location'),
        )
        return self._respond(order)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = RentalLifecycle().cancel(pk, reason=serializer.validated_data.get('reason'), actor=_actor(request))
        return self._respond(order)

    @action(detail=True, methods=['get'])
    def history(self, request, pk=None):
        entries = queries.list_status_history(pk)
        return Response(RentalStatusHistorySerializer(entries, many=True).data)

    @action(detail=False, methods=['post'])
    def quote(self, request):
        """Price a prospective rental without saving anything."""
        serializer = PriceQuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        calculator = PricingCalculator()
        if data.get('vehicle_id') is not None:
            quote = calculator.quote_for_vehicle(
                data['vehicle_id'], data['start_date'], data['end_date'], data.get('promotion_code'),
            )
        else:
            quote = queries.price_quote(
                data['daily_rate'], data['start_date'], data['end_date'], data.get('promotion_code'),
                calculator=calculator,
            )
        return Response(PriceQuoteSerializer(quote).data)


class InvoiceViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = InvoiceSerializer
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        queryset = Invoice.objects.select_related('rental_order').prefetch_related('details')
        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)
        return queryset

    def get_object(self):
        return queries.get_invoice(self.kwargs['pk'])

    def create(self, request):
        serializer = InvoiceGenerateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        invoice = InvoiceGenerator().generate(
            data['rental_order_id'],
            invoice_date=data.get('invoice_date'),
            due_date=data.get('due_date'),
            tax_rate=data.get('tax_rate'),
            notes=data.get('notes'),
            actor=_actor(request),
        )
        return Response(InvoiceSerializer(queries.get_invoice(invoice.pk)).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = InvoiceUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        invoice = InvoiceGenerator().update_invoice(
            pk,
            due_date=data.get('due_date'),
            notes=data.get('notes'),
            actor=_actor(request),
        )
        return Response(InvoiceSerializer(queries.get_invoice(invoice.pk)).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        invoice = InvoiceGenerator().cancel_invoice(
            pk, reason=serializer.validated_data.get('reason'), actor=_actor(request),
        )
        return Response(InvoiceSerializer(queries.get_invoice(invoice.pk)).data)

    @action(detail=True, methods=['get'])
    def payments(self, request, pk=None):
        include_voided = request.query_params.get('include_voided') in ('1', 'true', 'yes')
        payments = queries.list_invoice_payments(pk, include_voided=include_voided)
        return Response(PaymentSerializer(payments, many=True).data)

    @action(detail=False, methods=['post'])
    def refresh_overdue(self, request):
        serializer = RefreshOverdueSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = PaymentReconciler().refresh_overdue_status(
            as_of=serializer.validated_data.get('as_of'), actor=_actor(request),
        )
        return Response({"updated": updated})


class PaymentViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = PaymentSerializer
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        queryset = Payment.objects.select_related('invoice')
        invoice_id = self.request.query_params.get('invoice')
        if invoice_id:
            queryset = queryset.filter(invoice_id=invoice_id)
        return queryset

    def get_object(self):
        return queries.get_payment(self.kwargs['pk'])

    def create(self, request):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        payment = PaymentReconciler().apply_payment(
            data.pop('invoice_id'),
            data.pop('amount'),
            data.pop('payment_method'),
            actor=_actor(request),
            **data,
        )
        return Response(PaymentSerializer(payment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def void(self, request, pk=None):
        serializer = VoidPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = PaymentReconciler().void_payment(
            pk, reason=serializer.validated_data.get('reason'), actor=_actor(request),
        )
        return Response(PaymentSerializer(payment).data)
