from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from .exceptions import NotFound, ValidationFailed
from .models import Promotion, Vehicle, ZERO, ensure_decimal, quantize_money
from .promotions import PromotionValidation, PromotionValidator


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class PriceQuote:
    daily_rate: Decimal
    total_days: int
    sub_total: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    promotion_code: Optional[str] = None
    promotion_message: Optional[str] = None
    promotion_valid: bool = False
    promotion_validation: Optional[PromotionValidation] = field(default=None, compare=False, repr=False)

    @property
    def promotion(self) -> Optional[Promotion]:
        if self.promotion_validation and self.promotion_validation.is_valid:
            return self.promotion_validation.promotion
        return None


def rental_days(start, end) -> int:
    """Billable days between two instants; any started day counts, minimum one."""
    if end <= start:
        raise ValidationFailed("End date must be after start date.", start=str(start), end=str(end))
    seconds = (end - start).total_seconds()
    return max(1, math.ceil(seconds / SECONDS_PER_DAY))


class PricingCalculator:
    """Side-effect free price computation used for previews and for saving orders."""

    def __init__(self, promotion_validator=None):
        self.promotion_validator = promotion_validator or PromotionValidator()

    def calculate(self, daily_rate, start, end, promotion_code=None, as_of=None,
                  slot_held=False) -> PriceQuote:
        daily_rate = ensure_decimal(daily_rate)
        if daily_rate < 0:
            raise ValidationFailed("Daily rental price cannot be negative.", daily_rate=str(daily_rate))
        daily_rate = quantize_money(daily_rate)

        total_days = rental_days(start, end)
        sub_total = quantize_money(daily_rate * total_days)

        discount = ZERO
        message = None
        valid = False
        validation = None
        code = (promotion_code or '').strip() or None
        if code:
            validation = self.promotion_validator.validate(
                code,
                sub_total,
                rental_start=start,
                rental_end=end,
                as_of=as_of,
                slot_held=slot_held,
            )
            message = validation.message
            valid = validation.is_valid
            if valid:
                discount = validation.discount_amount
            else:
                logger.debug("Promotion %s not applied to quote: %s", code, message)

        return PriceQuote(
            daily_rate=daily_rate,
            total_days=total_days,
            sub_total=sub_total,
            discount_amount=discount,
            total_amount=quantize_money(max(sub_total - discount, ZERO)),
            promotion_code=code,
            promotion_message=message,
            promotion_valid=valid,
            promotion_validation=validation,
        )

    def quote_for_vehicle(self, vehicle_id, start, end, promotion_code=None) -> PriceQuote:
        vehicle = Vehicle.objects.filter(pk=vehicle_id, is_deleted=False).first()
        if vehicle is None:
            raise NotFound(f"Vehicle {vehicle_id} does not exist.")
        return self.calculate(vehicle.daily_rental_price, start, end, promotion_code)
