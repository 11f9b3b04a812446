"""
Management command to run the payout pipeline

Usage:
    python manage.py process_payouts
    python manage.py process_payouts --date 2024-03-15
    python manage.py process_payouts --retry
    python manage.py process_payouts --reconcile
"""
from dateutil.parser import isoparse
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from payfac.services.payout_service import PayoutService
from payfac.services.payout_batch_service import PayoutBatchService
from payfac.services.reconciliation_service import ReconciliationService


class Command(BaseCommand):
    help = 'Send due payouts, retry failed ones or reconcile in-flight ones'

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            help='Run date (YYYY-MM-DD), defaults to today'
        )
        parser.add_argument(
            '--retry',
            action='store_true',
            help='Retry failed payouts instead of sending scheduled ones'
        )
        parser.add_argument(
            '--reconcile',
            action='store_true',
            help='Poll the rails for in-flight payouts instead of sending scheduled ones'
        )

    def handle(self, *args, **options):
        payout_service = PayoutService()

        if options['retry']:
            summary = ReconciliationService(payout_service).retry_failed_payouts()
            self.stdout.write(self.style.SUCCESS(
                f"Retried {summary['attempted']} payouts: {summary['succeeded']} succeeded, "
                f"{summary['errors']} errors"
            ))
            return

        if options['reconcile']:
            summary = ReconciliationService(payout_service).reconcile_in_flight_payouts()
            self.stdout.write(self.style.SUCCESS(
                f"Checked {summary['checked']} in-flight payouts: {summary['updated']} updated, "
                f"{summary['errors']} errors"
            ))
            return

        if options['date']:
            try:
                run_date = isoparse(options['date']).date()
            except ValueError:
                raise CommandError(f"Invalid date: {options['date']}")
        else:
            run_date = timezone.localdate()

        self.stdout.write(self.style.WARNING(f'Processing payouts due by {run_date}...'))
        result = PayoutBatchService(payout_service).process_scheduled_payouts(run_date)

        for error in result.errors:
            self.stdout.write(self.style.ERROR(f"Failed {error['reference']}: {error['error']}"))

        self.stdout.write(self.style.SUCCESS(
            f'\nPayout run complete!\n'
            f'   Processed: {result.processed}\n'
            f'   Sent:      {result.sent}\n'
            f'   Completed: {result.completed}\n'
            f'   Failed:    {result.failed}\n'
            f'   Batches:   {len(result.batches)}'
        ))
