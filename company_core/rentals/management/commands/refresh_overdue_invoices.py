import datetime

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from rentals.activity import acting_as
from rentals.payments import PaymentReconciler


class Command(BaseCommand):
    help = "Mark unpaid and partially paid invoices whose due date has passed as Overdue."

    def add_arguments(self, parser):
        parser.add_argument(
            "--as-of",
            dest="as_of",
            help="Evaluate due dates against this day (YYYY-MM-DD). Defaults to today.",
        )
        parser.add_argument(
            "--actor",
            dest="actor",
            help="Username recorded as the last modifier of the flagged invoices.",
        )

    def handle(self, *args, **options):
        as_of_value = options.get("as_of")
        if as_of_value:
            try:
                as_of = datetime.date.fromisoformat(as_of_value)
            except ValueError:
                raise CommandError(f"Invalid --as-of date {as_of_value!r}; expected YYYY-MM-DD.")
        else:
            as_of = timezone.localdate()

        user = None
        username = options.get("actor")
        if username:
            User = get_user_model()
            try:
                user = User.objects.get(**{User.USERNAME_FIELD: username})
            except User.DoesNotExist:
                raise CommandError(f"Unknown user {username!r}.")

        with acting_as(user):
            updated = PaymentReconciler().refresh_overdue_status(as_of=as_of)
        self.stdout.write(self.style.SUCCESS(f"Marked {updated} invoice(s) overdue as of {as_of}."))
