"""
Domain errors raised by the rental services.

Every error carries a stable ``code`` so the API layer (and any other caller)
can render a user-facing message without parsing strings. Business-rule errors
are raised before anything is written; ``ConcurrencyConflict`` signals a lost
update on a guarded counter or balance and is safe for the caller to retry
after re-reading.
"""


class RentalError(Exception):
    code = "rental_error"
    default_message = "The request could not be processed."

    def __init__(self, message=None, **detail):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def as_dict(self):
        payload = {"error": self.code, "detail": self.message}
        if self.detail:
            payload["context"] = self.detail
        return payload


class NotFound(RentalError):
    code = "not_found"
    default_message = "The requested record does not exist."


class InvalidTransition(RentalError):
    code = "invalid_transition"
    default_message = "This status change is not allowed."


class ValidationFailed(RentalError):
    code = "validation_failed"
    default_message = "The request contains invalid values."


class InvalidAmount(ValidationFailed):
    code = "invalid_amount"
    default_message = "Amount must be greater than zero."


class VehicleUnavailable(ValidationFailed):
    code = "vehicle_unavailable"
    default_message = "The vehicle is not available for rental."


class InvoiceNotPayable(ValidationFailed):
    code = "invoice_not_payable"
    default_message = "This invoice does not accept payments."


class PromotionError(RentalError):
    code = "promotion_error"
    default_message = "The promotion code cannot be applied."


class PromotionNotFound(PromotionError):
    code = "promotion_not_found"
    default_message = "Promotion code does not exist or is no longer active."


class PromotionOutOfWindow(PromotionError):
    code = "promotion_out_of_window"
    default_message = "Promotion code is outside its validity period."


class PromotionUsageExhausted(PromotionError):
    code = "promotion_usage_exhausted"
    default_message = "Promotion code has no remaining uses."


class PromotionBelowMinimum(PromotionError):
    code = "promotion_below_minimum"
    default_message = "Order amount is below the promotion minimum."


class AlreadyInvoiced(RentalError):
    code = "already_invoiced"
    default_message = "An invoice already exists for this rental order."


class Overpayment(RentalError):
    code = "overpayment"
    default_message = "Payment exceeds the remaining balance."


class ConcurrencyConflict(RentalError):
    code = "concurrency_conflict"
    default_message = "The record was changed by another request. Reload and try again."
