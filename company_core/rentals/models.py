from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import logging

from django.conf import settings
from django.db import models, transaction
from django.db.models import F, Q
from django.utils import timezone

from .exceptions import RentalError


logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def ensure_decimal(value, default='0.00'):
    """Return a Decimal instance for the given value."""
    if isinstance(value, Decimal):
        return value
    if value in (None, ''):
        return Decimal(default)
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        logger.warning("Could not convert %r to Decimal; using %s", value, default)
        return Decimal(default)


def quantize_money(value):
    return ensure_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def money_field(**kwargs):
    kwargs.setdefault('max_digits', 14)
    kwargs.setdefault('decimal_places', 2)
    return models.DecimalField(**kwargs)


class DocumentSequence(models.Model):
    """
    Store-backed counter used to number orders, invoices and payments.

    One row per prefix and calendar day; the row is locked while it is
    incremented so concurrent requests never receive the same number. The
    day is always the day the number is issued, never a business date, so
    numbers of one prefix sort in issue order.
    """
    NUMBER_WIDTH = 5

    key = models.CharField(max_length=32, unique=True)
    last_value = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "Document Sequence"
        verbose_name_plural = "Document Sequences"

    def __str__(self):
        return f"{self.key} -> {self.last_value}"

    @classmethod
    def next_number(cls, prefix):
        key = f"{prefix}{timezone.localdate():%Y%m%d}"
        with transaction.atomic():
            sequence, _created = cls.objects.select_for_update().get_or_create(key=key)
            cls.objects.filter(pk=sequence.pk).update(
                last_value=F('last_value') + 1,
                updated_at=timezone.now(),
            )
            sequence.refresh_from_db(fields=['last_value'])
            if sequence.last_value >= 10 ** cls.NUMBER_WIDTH:
                logger.error(f"Document numbers for {key} are exhausted.")
                raise RentalError(f"No more document numbers are available for {key}.", key=key)
        return f"{key}{sequence.last_value:0{cls.NUMBER_WIDTH}d}"


class Customer(models.Model):
    code = models.CharField(max_length=20, unique=True)
    full_name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=20, blank=True, default='')
    address = models.TextField(null=True, blank=True)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.code} - {self.full_name}"


class Employee(models.Model):
    code = models.CharField(max_length=20, unique=True)
    full_name = models.CharField(max_length=200)
    email = models.EmailField(blank=True, default='')
    phone = models.CharField(max_length=20, blank=True, default='')
    position = models.CharField(max_length=100, null=True, blank=True)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.code} - {self.full_name}"


class Vehicle(models.Model):
    """
    A rentable vehicle. Only the attributes the rental workflow depends on
    are modelled here; brand/type/colour master data lives elsewhere.
    """
    STATUS_AVAILABLE = "Available"
    STATUS_RENTED = "Rented"
    STATUS_MAINTENANCE = "Maintenance"
    STATUS_REPAIR = "Repair"
    STATUS_OUT_OF_SERVICE = "OutOfService"
    STATUS_IN_TRANSIT = "InTransit"

    STATUS_CHOICES = [
        (STATUS_AVAILABLE, "Available"),
        (STATUS_RENTED, "Rented"),
        (STATUS_MAINTENANCE, "In Maintenance"),
        (STATUS_REPAIR, "In Repair"),
        (STATUS_OUT_OF_SERVICE, "Out of Service"),
        (STATUS_IN_TRANSIT, "In Transit"),
    ]

    code = models.CharField(max_length=20, unique=True, verbose_name="Plate Code")
    model = models.CharField(max_length=100, blank=True, default='')
    license_plate = models.CharField(max_length=20, blank=True, default='')
    daily_rental_price = money_field(default=ZERO)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_AVAILABLE)
    current_location = models.CharField(max_length=255, null=True, blank=True)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.code} ({self.model})" if self.model else self.code

    @property
    def is_available(self):
        return self.status == self.STATUS_AVAILABLE


class VehicleHistory(models.Model):
    ACTION_CREATED = "Created"
    ACTION_RENTED = "Rented"
    ACTION_RETURNED = "Returned"
    ACTION_RENTAL_CANCELLED = "RentalCancelled"
    ACTION_MAINTENANCE = "Maintenance"
    ACTION_REPAIR = "Repair"
    ACTION_MAINTENANCE_COMPLETED = "MaintenanceCompleted"
    ACTION_REPAIR_COMPLETED = "RepairCompleted"
    ACTION_IN = "In"
    ACTION_OUT = "Out"

    ACTION_CHOICES = [
        (ACTION_CREATED, "Created"),
        (ACTION_RENTED, "Rented"),
        (ACTION_RETURNED, "Returned"),
        (ACTION_RENTAL_CANCELLED, "Rental cancelled"),
        (ACTION_MAINTENANCE, "Maintenance"),
        (ACTION_REPAIR, "Repair"),
        (ACTION_MAINTENANCE_COMPLETED, "Maintenance completed"),
        (ACTION_REPAIR_COMPLETED, "Repair completed"),
        (ACTION_IN, "Checked in"),
        (ACTION_OUT, "Checked out"),
    ]

    vehicle = models.ForeignKey(Vehicle, on_delete=models.CASCADE, related_name='history_entries')
    action_type = models.CharField(max_length=32, choices=ACTION_CHOICES)
    old_status = models.CharField(max_length=20, null=True, blank=True)
    new_status = models.CharField(max_length=20, null=True, blank=True)
    reference_id = models.PositiveBigIntegerField(null=True, blank=True)
    reference_type = models.CharField(max_length=32, null=True, blank=True)
    description = models.TextField(null=True, blank=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name = "Vehicle History Entry"
        verbose_name_plural = "Vehicle History"

    def __str__(self):
        return f"{self.vehicle_id} {self.action_type}: {self.old_status} -> {self.new_status}"


class Promotion(models.Model):
    TYPE_PERCENTAGE = "Percentage"
    TYPE_FIXED_AMOUNT = "FixedAmount"
    TYPE_CHOICES = [
        (TYPE_PERCENTAGE, "Percentage"),
        (TYPE_FIXED_AMOUNT, "Fixed amount"),
    ]

    STATUS_ACTIVE = "Active"
    STATUS_INACTIVE = "Inactive"
    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_INACTIVE, "Inactive"),
    ]

    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200, blank=True, default='')
    promotion_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    value = money_field()
    min_amount = money_field(null=True, blank=True)
    max_discount = money_field(null=True, blank=True)
    start_date = models.DateField()
    end_date = models.DateField()
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    is_deleted = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=Q(value__gt=0),
                name='promotion_value_positive',
            ),
            models.CheckConstraint(
                condition=~Q(promotion_type='Percentage') | Q(value__lte=100),
                name='promotion_percentage_at_most_100',
            ),
            models.CheckConstraint(
                condition=Q(usage_limit__isnull=True) | Q(used_count__lte=F('usage_limit')),
                name='promotion_used_within_limit',
            ),
            models.CheckConstraint(
                condition=Q(end_date__gte=F('start_date')),
                name='promotion_window_ordered',
            ),
        ]

    def __str__(self):
        return f"{self.code} ({self.get_promotion_type_display()} {self.value})"

    @property
    def remaining_uses(self):
        if self.usage_limit is None:
            return None
        return max(self.usage_limit - self.used_count, 0)


class RentalOrderQuerySet(models.QuerySet):
    def not_deleted(self):
        return self.filter(is_deleted=False)


class RentalOrder(models.Model):
    STATUS_DRAFT = "Draft"
    STATUS_CONFIRMED = "Confirmed"
    STATUS_IN_PROGRESS = "InProgress"
    STATUS_COMPLETED = "Completed"
    STATUS_INVOICED = "Invoiced"
    STATUS_CANCELLED = "Cancelled"

    STATUS_CHOICES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_IN_PROGRESS, "In Progress"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_INVOICED, "Invoiced"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    TERMINAL_STATUSES = (STATUS_INVOICED, STATUS_CANCELLED)
    # A vehicle belongs to at most one order in any of these statuses.
    ACTIVE_STATUSES = (STATUS_DRAFT, STATUS_CONFIRMED, STATUS_IN_PROGRESS, STATUS_COMPLETED)
    # Statuses in which a consumed promotion slot is still returnable.
    PROMOTION_HOLDING_STATUSES = (STATUS_CONFIRMED, STATUS_IN_PROGRESS)
    # Amounts are frozen once the vehicle has been picked up.
    PRICING_EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_CONFIRMED)

    order_number = models.CharField(max_length=20, unique=True, editable=False)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='rental_orders')
    vehicle = models.ForeignKey(Vehicle, on_delete=models.PROTECT, related_name='rental_orders')
    employee = models.ForeignKey(
        Employee,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rental_orders',
    )
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    actual_start_date = models.DateTimeField(null=True, blank=True)
    actual_end_date = models.DateTimeField(null=True, blank=True)
    pickup_location = models.CharField(max_length=255, blank=True, default='')
    return_location = models.CharField(max_length=255, blank=True, default='')
    daily_rental_price = money_field()
    total_days = models.PositiveIntegerField(default=1)
    sub_total = money_field(default=ZERO)
    discount_amount = money_field(default=ZERO)
    promotion_code = models.CharField(max_length=50, null=True, blank=True)
    promotion = models.ForeignKey(
        Promotion,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='rental_orders',
    )
    # True while this order holds one of the promotion's usage slots.
    promotion_consumed = models.BooleanField(default=False)
    total_amount = money_field(default=ZERO)
    deposit_amount = money_field(default=ZERO)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_DRAFT)
    notes = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    modified_at = models.DateTimeField(null=True, blank=True)
    modified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = RentalOrderQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at', '-id']
        verbose_name = "Rental Order"
        verbose_name_plural = "Rental Orders"
        constraints = [
            models.UniqueConstraint(
                fields=['vehicle'],
                condition=Q(status__in=['Draft', 'Confirmed', 'InProgress', 'Completed'], is_deleted=False),
                name='one_active_order_per_vehicle',
            ),
            models.CheckConstraint(
                condition=Q(end_date__gt=F('start_date')),
                name='rental_order_end_after_start',
            ),
            models.CheckConstraint(
                condition=Q(total_days__gte=1),
                name='rental_order_at_least_one_day',
            ),
        ]

    def __str__(self):
        return f"{self.order_number} - {self.get_status_display()}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES


class RentalStatusHistory(models.Model):
    """Append-only audit trail of a rental order's status changes."""
    rental_order = models.ForeignKey(RentalOrder, on_delete=models.CASCADE, related_name='status_history')
    old_status = models.CharField(max_length=20, null=True, blank=True)
    new_status = models.CharField(max_length=20)
    changed_at = models.DateTimeField(default=timezone.now)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    notes = models.TextField(null=True, blank=True)

    class Meta:
        ordering = ['changed_at', 'id']
        verbose_name = "Rental Status History"
        verbose_name_plural = "Rental Status History"

    def __str__(self):
        return f"{self.rental_order_id}: {self.old_status or '-'} -> {self.new_status}"


class Invoice(models.Model):
    STATUS_UNPAID = "Unpaid"
    STATUS_PARTIAL = "Partial"
    STATUS_PAID = "Paid"
    STATUS_OVERDUE = "Overdue"
    STATUS_CANCELLED = "Cancelled"

    STATUS_CHOICES = [
        (STATUS_UNPAID, "Unpaid"),
        (STATUS_PARTIAL, "Partially paid"),
        (STATUS_PAID, "Paid"),
        (STATUS_OVERDUE, "Overdue"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    PAYABLE_STATUSES = (STATUS_UNPAID, STATUS_PARTIAL, STATUS_OVERDUE)
    OVERDUE_CANDIDATE_STATUSES = (STATUS_UNPAID, STATUS_PARTIAL)

    invoice_number = models.CharField(max_length=20, unique=True, editable=False)
    rental_order = models.OneToOneField(RentalOrder, on_delete=models.PROTECT, related_name='invoice')
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name='invoices')
    invoice_date = models.DateField()
    due_date = models.DateField()
    sub_total = money_field(default=ZERO)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=ZERO)
    tax_amount = money_field(default=ZERO)
    discount_amount = money_field(default=ZERO)
    total_amount = money_field(default=ZERO)
    paid_amount = money_field(default=ZERO)
    remaining_amount = money_field(default=ZERO)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_UNPAID)
    notes = models.TextField(null=True, blank=True)
    # Bumped on every balance/status write; guarded updates compare against it.
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(default=timezone.now)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    modified_at = models.DateTimeField(null=True, blank=True)
    modified_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    class Meta:
        ordering = ['-invoice_date', '-id']
        verbose_name = "Invoice"
        verbose_name_plural = "Invoices"
        constraints = [
            models.CheckConstraint(
                condition=Q(paid_amount__gte=0),
                name='invoice_paid_not_negative',
            ),
            models.CheckConstraint(
                condition=Q(paid_amount__lte=F('total_amount')),
                name='invoice_paid_within_total',
            ),
            models.CheckConstraint(
                condition=Q(due_date__gte=F('invoice_date')),
                name='invoice_due_after_issue',
            ),
        ]

    def __str__(self):
        return f"{self.invoice_number} - {self.invoice_date} - {self.total_amount:.2f}"

    @property
    def is_payable(self):
        return self.status in self.PAYABLE_STATUSES


class InvoiceDetail(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name='details')
    description = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('1.00'))
    unit_price = money_field()
    amount = money_field()
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['sort_order', 'id']
        verbose_name = "Invoice Line"
        verbose_name_plural = "Invoice Lines"

    def __str__(self):
        return f"{self.description} x {self.quantity} = {self.amount}"


class Payment(models.Model):
    METHOD_CASH = "Cash"
    METHOD_BANK_TRANSFER = "BankTransfer"
    METHOD_CREDIT_CARD = "CreditCard"

    METHOD_CHOICES = [
        (METHOD_CASH, "Cash"),
        (METHOD_BANK_TRANSFER, "Bank transfer"),
        (METHOD_CREDIT_CARD, "Credit card"),
    ]

    payment_number = models.CharField(max_length=20, unique=True, editable=False)
    invoice = models.ForeignKey(Invoice, on_delete=models.PROTECT, related_name='payments')
    payment_date = models.DateField()
    amount = money_field()
    payment_method = models.CharField(max_length=20, choices=METHOD_CHOICES)
    bank_account = models.CharField(max_length=50, null=True, blank=True)
    transaction_code = models.CharField(max_length=100, null=True, blank=True)
    notes = models.TextField(null=True, blank=True)
    is_voided = models.BooleanField(default=False)
    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    void_reason = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )

    class Meta:
        ordering = ['-payment_date', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='payment_amount_positive',
            ),
        ]

    def __str__(self):
        return f'Payment {self.payment_number} of {self.amount} on {self.payment_date} for Invoice {self.invoice_id}'
