"""Who is acting on rentals right now.

The request middleware (or a management command) binds the signed-in staff
member for the duration of its work. Services call :func:`resolve_actor`, so
an ``actor`` passed explicitly always wins over the bound one. Anonymous users
are never bound.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from django.contrib.auth.models import AbstractBaseUser


_staff_context = threading.local()


def _is_signed_in(user) -> bool:
    return user is not None and getattr(user, "is_authenticated", False)


def bind_actor(user: Optional[AbstractBaseUser]) -> None:
    if _is_signed_in(user):
        _staff_context.actor = user
    else:
        unbind_actor()


def unbind_actor() -> None:
    _staff_context.__dict__.pop("actor", None)


def current_actor() -> Optional[AbstractBaseUser]:
    return getattr(_staff_context, "actor", None)


@contextmanager
def acting_as(user: Optional[AbstractBaseUser]) -> Iterator[Optional[AbstractBaseUser]]:
    """Bind ``user`` for a block of work and restore the previous actor afterwards."""
    previous = current_actor()
    bind_actor(user)
    try:
        yield current_actor()
    finally:
        bind_actor(previous)


def resolve_actor(actor=None) -> Optional[AbstractBaseUser]:
    return actor if _is_signed_in(actor) else current_actor()
