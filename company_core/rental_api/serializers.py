from rest_framework import serializers

from rentals.models import (
    Invoice,
    InvoiceDetail,
    Payment,
    RentalOrder,
    RentalStatusHistory,
)


MONEY = dict(max_digits=14, decimal_places=2)


# ---------------------------------------------------------------------------
# Read shapes
# ---------------------------------------------------------------------------

class RentalStatusHistorySerializer(serializers.ModelSerializer):
    changed_by = serializers.StringRelatedField()

    class Meta:
        model = RentalStatusHistory
        fields = ['id', 'old_status', 'new_status', 'changed_at', 'changed_by', 'notes']


class RentalOrderSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source='customer.full_name', read_only=True)
    vehicle_code = serializers.CharField(source='vehicle.code', read_only=True)
    promotion_message = serializers.SerializerMethodField()
    invoice_id = serializers.SerializerMethodField()

    class Meta:
        model = RentalOrder
        fields = [
            'id', 'order_number', 'customer', 'customer_name', 'vehicle', 'vehicle_code', 'employee',
            'start_date', 'end_date', 'actual_start_date', 'actual_end_date',
            'pickup_location', 'return_location',
            'daily_rental_price', 'total_days', 'sub_total', 'discount_amount',
            'promotion_code', 'promotion_consumed', 'promotion_message',
            'total_amount', 'deposit_amount', 'status', 'notes', 'invoice_id',
            'created_at', 'modified_at',
        ]
        read_only_fields = fields

    def get_promotion_message(self, obj):
        # Only present right after the service priced the order.
        return getattr(obj, 'promotion_message', None)

    def get_invoice_id(self, obj):
        invoice = Invoice.objects.filter(rental_order_id=obj.pk).only('id').first()
        return invoice.pk if invoice else None


class InvoiceDetailSerializer(serializers.ModelSerializer):
    class Meta:
        model = InvoiceDetail
        fields = ['id', 'description', 'quantity', 'unit_price', 'amount', 'sort_order']


class InvoiceSerializer(serializers.ModelSerializer):
    details = InvoiceDetailSerializer(many=True, read_only=True)
    order_number = serializers.CharField(source='rental_order.order_number', read_only=True)

    class Meta:
        model = Invoice
        fields = [
            'id', 'invoice_number', 'rental_order', 'order_number', 'customer',
            'invoice_date', 'due_date', 'sub_total', 'tax_rate', 'tax_amount',
            'discount_amount', 'total_amount', 'paid_amount', 'remaining_amount',
            'status', 'notes', 'version', 'details', 'created_at', 'modified_at',
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source='invoice.invoice_number', read_only=True)

    class Meta:
        model = Payment
        fields = [
            'id', 'payment_number', 'invoice', 'invoice_number', 'payment_date', 'amount',
            'payment_method', 'bank_account', 'transaction_code', 'notes',
            'is_voided', 'voided_at', 'void_reason', 'created_at',
        ]
        read_only_fields = fields


class PriceQuoteSerializer(serializers.Serializer):
    daily_rate = serializers.DecimalField(**MONEY)
    total_days = serializers.IntegerField()
    sub_total = serializers.DecimalField(**MONEY)
    discount_amount = serializers.DecimalField(**MONEY)
    total_amount = serializers.DecimalField(**MONEY)
    promotion_code = serializers.CharField(allow_null=True)
    promotion_valid = serializers.BooleanField()
    promotion_message = serializers.CharField(allow_null=True)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class _DateRangeMixin:
    def validate(self, attrs):
        start = attrs.get('start_date')
        end = attrs.get('end_date')
        if start and end and end <= start:
            raise serializers.ValidationError({'end_date': "End date must be after start date."})
        return attrs


class RentalOrderCreateSerializer(_DateRangeMixin, serializers.Serializer):
    customer_id = serializers.IntegerField()
    vehicle_id = serializers.IntegerField()
    employee_id = serializers.IntegerField(required=False, allow_null=True)
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    daily_rental_price = serializers.DecimalField(required=False, allow_null=True, min_value=0, **MONEY)
    promotion_code = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=50)
    pickup_location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    return_location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    deposit_amount = serializers.DecimalField(required=False, min_value=0, **MONEY)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RentalOrderUpdateSerializer(_DateRangeMixin, serializers.Serializer):
    customer_id = serializers.IntegerField(required=False)
    vehicle_id = serializers.IntegerField(required=False)
    employee_id = serializers.IntegerField(required=False, allow_null=True)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    daily_rental_price = serializers.DecimalField(required=False, min_value=0, **MONEY)
    promotion_code = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=50)
    pickup_location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    return_location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    deposit_amount = serializers.DecimalField(required=False, min_value=0, **MONEY)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class TransitionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class StartRentalSerializer(TransitionSerializer):
    actual_start = serializers.DateTimeField(required=False, allow_null=True)


class CompleteRentalSerializer(TransitionSerializer):
    actual_end = serializers.DateTimeField(required=False, allow_null=True)
    return_location = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=255)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class PriceQuoteRequestSerializer(_DateRangeMixin, serializers.Serializer):
    vehicle_id = serializers.IntegerField(required=False)
    daily_rate = serializers.DecimalField(required=False, min_value=0, **MONEY)
    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    promotion_code = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=50)

    def validate(self, attrs):
        attrs = super().validate(attrs)
        if attrs.get('vehicle_id') is None and attrs.get('daily_rate') is None:
            raise serializers.ValidationError("Provide either vehicle_id or daily_rate.")
        return attrs


class InvoiceGenerateSerializer(serializers.Serializer):
    rental_order_id = serializers.IntegerField()
    invoice_date = serializers.DateField(required=False, allow_null=True)
    due_date = serializers.DateField(required=False, allow_null=True)
    tax_rate = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, allow_null=True,
                                        min_value=0, max_value=100)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class InvoiceUpdateSerializer(serializers.Serializer):
    due_date = serializers.DateField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True)


class PaymentCreateSerializer(serializers.Serializer):
    invoice_id = serializers.IntegerField()
    # Non-positive amounts are rejected by the reconciler with its own error code.
    amount = serializers.DecimalField(**MONEY)
    payment_method = serializers.ChoiceField(choices=Payment.METHOD_CHOICES)
    payment_date = serializers.DateField(required=False, allow_null=True)
    bank_account = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=50)
    transaction_code = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    expected_version = serializers.IntegerField(required=False, allow_null=True, min_value=0)


class VoidPaymentSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class RefreshOverdueSerializer(serializers.Serializer):
    as_of = serializers.DateField(required=False, allow_null=True)
