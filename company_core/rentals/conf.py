from decimal import Decimal

from django.conf import settings


DEFAULTS = {
    'RELEASE_PROMOTION_ON_CANCEL': True,
    'REVERT_OVERDUE_ON_DUE_DATE_CHANGE': False,
    'DEFAULT_TAX_RATE': '10',
    'INVOICE_DUE_DAYS': 7,
}


def get_setting(name):
    """Return a RENTALS policy value, falling back to the packaged default."""
    configured = getattr(settings, 'RENTALS', None) or {}
    if name in configured:
        return configured[name]
    return DEFAULTS[name]


def default_tax_rate():
    return Decimal(str(get_setting('DEFAULT_TAX_RATE')))
