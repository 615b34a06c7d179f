import logging

from django_cron import CronJobBase, Schedule

from .payments import PaymentReconciler


logger = logging.getLogger(__name__)


class RefreshOverdueInvoicesCronJob(CronJobBase):
    RUN_EVERY_MINS = 60  # Hourly; the scan is a single UPDATE

    schedule = Schedule(run_every_mins=RUN_EVERY_MINS)
    code = 'rentals.refresh_overdue_invoices_cron_job'  # Unique code

    def do(self):
        updated = PaymentReconciler().refresh_overdue_status()
        message = f"Marked {updated} invoice(s) overdue."
        logger.info(message)
        return message
