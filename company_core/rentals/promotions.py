"""Promotion code validation and usage accounting.

Validation is read-only and may be called as often as a quote is previewed.
Usage slots are only claimed through :meth:`PromotionValidator.consume`,
which increments the counter with a single conditional UPDATE so two orders
racing for the last slot cannot both win.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db.models import F, Q
from django.utils import timezone

from .exceptions import (
    PromotionBelowMinimum,
    PromotionError,
    PromotionNotFound,
    PromotionOutOfWindow,
    PromotionUsageExhausted,
)
from .models import Promotion, ZERO, ensure_decimal, quantize_money


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromotionValidation:
    is_valid: bool
    message: str
    discount_amount: Decimal = ZERO
    promotion: Optional[Promotion] = None
    reason: Optional[type] = None

    @property
    def reason_code(self) -> Optional[str]:
        return self.reason.code if self.reason else None

    def require(self) -> "PromotionValidation":
        """Raise the matching PromotionError when the code was rejected."""
        if not self.is_valid:
            error_class = self.reason or PromotionError
            raise error_class(self.message)
        return self


def _as_date(value) -> Optional[datetime.date]:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        if timezone.is_aware(value):
            value = timezone.localtime(value)
        return value.date()
    return value


def compute_discount(promotion: Promotion, sub_total) -> Decimal:
    """Discount a promotion grants on ``sub_total``, capped by the promotion and the subtotal."""
    sub_total = quantize_money(sub_total)
    value = ensure_decimal(promotion.value)

    if promotion.promotion_type == Promotion.TYPE_PERCENTAGE:
        discount = sub_total * value / Decimal('100')
    else:
        discount = min(value, sub_total)

    if promotion.max_discount is not None:
        discount = min(discount, ensure_decimal(promotion.max_discount))

    discount = min(discount, sub_total)
    return quantize_money(max(discount, ZERO))


class PromotionValidator:

    def lookup(self, code) -> Optional[Promotion]:
        code = (code or '').strip()
        if not code:
            return None
        return (
            Promotion.objects.filter(
                code__iexact=code,
                is_deleted=False,
                status=Promotion.STATUS_ACTIVE,
            )
            .first()
        )

    def validate(self, code, sub_total, rental_start=None, rental_end=None, as_of=None,
                 slot_held=False) -> PromotionValidation:
        """Check ``code`` against an order context without touching the usage counter.

        ``slot_held`` is set when the order being priced already consumed a use
        of this promotion, so its own slot does not count against it.
        """
        promotion = self.lookup(code)
        if promotion is None:
            return PromotionValidation(
                is_valid=False,
                message=PromotionNotFound.default_message,
                reason=PromotionNotFound,
            )

        evaluation_date = _as_date(as_of) or _as_date(rental_start) or timezone.localdate()
        if not (promotion.start_date <= evaluation_date <= promotion.end_date):
            return PromotionValidation(
                is_valid=False,
                message=(
                    f"Promotion {promotion.code} is valid from {promotion.start_date:%d/%m/%Y} "
                    f"to {promotion.end_date:%d/%m/%Y}."
                ),
                promotion=promotion,
                reason=PromotionOutOfWindow,
            )

        if (
            not slot_held
            and promotion.usage_limit is not None
            and promotion.used_count >= promotion.usage_limit
        ):
            return PromotionValidation(
                is_valid=False,
                message=PromotionUsageExhausted.default_message,
                promotion=promotion,
                reason=PromotionUsageExhausted,
            )

        sub_total = quantize_money(sub_total)
        if promotion.min_amount is not None and sub_total < promotion.min_amount:
            return PromotionValidation(
                is_valid=False,
                message=f"Order amount must be at least {promotion.min_amount:,.2f} to use this promotion.",
                promotion=promotion,
                reason=PromotionBelowMinimum,
            )

        discount = compute_discount(promotion, sub_total)
        return PromotionValidation(
            is_valid=True,
            message=f"Promotion applied: -{discount:,.2f}",
            discount_amount=discount,
            promotion=promotion,
        )

    def consume(self, promotion_id) -> None:
        """Claim one usage slot; raises PromotionUsageExhausted when none are left."""
        updated = (
            Promotion.objects.filter(pk=promotion_id, is_deleted=False)
            .filter(Q(usage_limit__isnull=True) | Q(used_count__lt=F('usage_limit')))
            .update(used_count=F('used_count') + 1, updated_at=timezone.now())
        )
        if updated == 0:
            if not Promotion.objects.filter(pk=promotion_id, is_deleted=False).exists():
                raise PromotionNotFound()
            logger.warning(f"Promotion {promotion_id} has no remaining uses; consume rejected.")
            raise PromotionUsageExhausted()
        logger.info(f"Consumed one use of promotion {promotion_id}.")

    def release(self, promotion_id) -> bool:
        """Give back a previously consumed slot. Never drops below zero."""
        updated = (
            Promotion.objects.filter(pk=promotion_id, used_count__gt=0)
            .update(used_count=F('used_count') - 1, updated_at=timezone.now())
        )
        if updated:
            logger.info(f"Released one use of promotion {promotion_id}.")
        else:
            logger.warning(f"Promotion {promotion_id} had no consumed uses to release.")
        return bool(updated)
