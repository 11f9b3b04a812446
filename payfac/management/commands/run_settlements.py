"""
Management command to calculate settlements

Usage:
    python manage.py run_settlements
    python manage.py run_settlements --date 2024-03-14
    python manage.py run_settlements --date 2024-03-14 --sub-merchant SM-001
"""
from datetime import timedelta

from dateutil.parser import isoparse
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from payfac.models import SubMerchant
from payfac.services.settlement_scheduler import SettlementScheduler


class Command(BaseCommand):
    help = 'Calculate settlements for a business day (defaults to yesterday)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            help='Business date to settle (YYYY-MM-DD), defaults to yesterday'
        )
        parser.add_argument(
            '--sub-merchant',
            help='Only settle this merchant code (ignores the settlement cycle)'
        )

    def handle(self, *args, **options):
        if options['date']:
            try:
                settlement_date = isoparse(options['date']).date()
            except ValueError:
                raise CommandError(f"Invalid date: {options['date']}")
        else:
            settlement_date = timezone.localdate() - timedelta(days=1)

        scheduler = SettlementScheduler()
        self.stdout.write(self.style.WARNING(f'Calculating settlements for {settlement_date}...'))

        if options['sub_merchant']:
            try:
                sub_merchant = SubMerchant.objects.by_code(options['sub_merchant'])
            except SubMerchant.DoesNotExist:
                raise CommandError(f"Unknown sub-merchant: {options['sub_merchant']}")

            settlement = scheduler.settlement_service.calculate_settlement_for_merchant(sub_merchant, settlement_date)
            if settlement is None:
                self.stdout.write(f'Nothing to settle for {sub_merchant.merchant_code}')
            else:
                self.stdout.write(self.style.SUCCESS(
                    f'Created settlement {settlement.reference}: net {settlement.net_amount} ({settlement.status})'
                ))
            return

        result = scheduler.calculate_settlements_for_date(settlement_date)

        for failure in result.failures:
            self.stdout.write(self.style.ERROR(f"Failed {failure['sub_merchant']}: {failure['error']}"))

        self.stdout.write(self.style.SUCCESS(
            f'\nSettlement run complete!\n'
            f'   Created: {len(result.created)}\n'
            f'   Skipped: {len(result.skipped)}\n'
            f'   Failed:  {len(result.failures)}'
        ))
