"""Read-only lookups for reporting and presentation code."""
from .exceptions import NotFound
from .models import Invoice, Payment, RentalOrder
from .pricing import PricingCalculator


def get_rental_order(order_id):
    order = (
        RentalOrder.objects.not_deleted()
        .select_related('customer', 'vehicle', 'employee', 'promotion')
        .filter(pk=order_id)
        .first()
    )
    if order is None:
        raise NotFound(f"Rental order {order_id} does not exist.", rental_order_id=order_id)
    return order


def get_invoice(invoice_id):
    invoice = (
        Invoice.objects.select_related('rental_order', 'customer')
        .prefetch_related('details')
        .filter(pk=invoice_id)
        .first()
    )
    if invoice is None:
        raise NotFound(f"Invoice {invoice_id} does not exist.", invoice_id=invoice_id)
    return invoice


def get_payment(payment_id):
    payment = Payment.objects.select_related('invoice').filter(pk=payment_id).first()
    if payment is None:
        raise NotFound(f"Payment {payment_id} does not exist.", payment_id=payment_id)
    return payment


def list_status_history(order_id):
    order = get_rental_order(order_id)
    return order.status_history.select_related('changed_by').order_by('changed_at', 'id')


def list_invoice_payments(invoice_id, include_voided=False):
    if not Invoice.objects.filter(pk=invoice_id).exists():
        raise NotFound(f"Invoice {invoice_id} does not exist.", invoice_id=invoice_id)
    payments = Payment.objects.filter(invoice_id=invoice_id)
    if not include_voided:
        payments = payments.filter(is_voided=False)
    return payments.order_by('payment_date', 'id')


def price_quote(daily_rate, start, end, promotion_code=None, calculator=None):
    calculator = calculator or PricingCalculator()
    return calculator.calculate(daily_rate, start, end, promotion_code)
