from django.contrib import admin

from .models import (
    Customer,
    DocumentSequence,
    Employee,
    Invoice,
    InvoiceDetail,
    Payment,
    Promotion,
    RentalOrder,
    RentalStatusHistory,
    Vehicle,
    VehicleHistory,
)


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ('code', 'full_name', 'email', 'phone', 'is_deleted')
    search_fields = ('code', 'full_name', 'email', 'phone')


@admin.register(Employee)
class EmployeeAdmin(admin.ModelAdmin):
    list_display = ('code', 'full_name', 'position', 'is_deleted')
    search_fields = ('code', 'full_name')


class VehicleHistoryInline(admin.TabularInline):
    model = VehicleHistory
    extra = 0
    can_delete = False
    readonly_fields = ('action_type', 'old_status', 'new_status', 'reference_type', 'reference_id',
                       'description', 'actor', 'created_at')


@admin.register(Vehicle)
class VehicleAdmin(admin.ModelAdmin):
    list_display = ('code', 'model', 'license_plate', 'daily_rental_price', 'status', 'current_location')
    list_filter = ('status',)
    search_fields = ('code', 'model', 'license_plate')
    inlines = [VehicleHistoryInline]


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    list_display = ('code', 'promotion_type', 'value', 'max_discount', 'start_date', 'end_date',
                    'used_count', 'usage_limit', 'status')
    list_filter = ('status', 'promotion_type')
    search_fields = ('code', 'name')
    # Usage is only moved by order confirmation and cancellation.
    readonly_fields = ('used_count',)


class RentalStatusHistoryInline(admin.TabularInline):
    model = RentalStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ('old_status', 'new_status', 'changed_at', 'changed_by', 'notes')


@admin.register(RentalOrder)
class RentalOrderAdmin(admin.ModelAdmin):
    list_display = ('order_number', 'customer', 'vehicle', 'start_date', 'end_date', 'total_amount', 'status')
    list_filter = ('status', 'is_deleted')
    search_fields = ('order_number', 'customer__full_name', 'vehicle__code')
    readonly_fields = ('order_number', 'status', 'total_days', 'sub_total', 'discount_amount', 'total_amount',
                       'promotion', 'promotion_consumed')
    inlines = [RentalStatusHistoryInline]


class InvoiceDetailInline(admin.TabularInline):
    model = InvoiceDetail
    extra = 0
    can_delete = False
    readonly_fields = ('description', 'quantity', 'unit_price', 'amount', 'sort_order')


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = ('payment_number', 'payment_date', 'amount', 'payment_method', 'is_voided')
    readonly_fields = fields


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ('invoice_number', 'customer', 'invoice_date', 'due_date', 'total_amount',
                    'paid_amount', 'remaining_amount', 'status')
    list_filter = ('status',)
    search_fields = ('invoice_number', 'rental_order__order_number', 'customer__full_name')
    readonly_fields = ('invoice_number', 'rental_order', 'sub_total', 'tax_amount', 'discount_amount',
                       'total_amount', 'paid_amount', 'remaining_amount', 'status', 'version')
    inlines = [InvoiceDetailInline, PaymentInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('payment_number', 'invoice', 'payment_date', 'amount', 'payment_method', 'is_voided')
    list_filter = ('payment_method', 'is_voided')
    search_fields = ('payment_number', 'invoice__invoice_number', 'transaction_code')

    def has_change_permission(self, request, obj=None):
        # Payments are immutable; corrections go through voiding.
        return False


admin.site.register(DocumentSequence)
