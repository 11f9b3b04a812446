"""
Settlement Service

Turns a sub-merchant's ledger activity for one settlement period into a
Settlement:
- decides whether the sub-merchant settles on a given date
- works out the period the settlement covers
- aggregates captured transactions, completed refunds, lost disputes and
  reserve movements into exact amounts
- persists the settlement, its items and the ledger claims atomically
- approves (creating the payout) or rejects settlements
"""
import logging
from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List, Tuple

from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction as db_transaction
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from payfac.models import (
    SubMerchant,
    Transaction,
    Refund,
    Dispute,
    Reserve,
    Settlement,
    SettlementItem,
    Payout,
)
from payfac.constants import (
    SETTLEMENT_CYCLE_DAYS,
    DAILY_SETTLEMENT_CYCLES,
    SETTLEMENT_CYCLE_WEEKLY,
    SETTLEMENT_CYCLE_BIWEEKLY,
    SETTLEMENT_CYCLE_MONTHLY,
    SETTLEMENT_STATUS_CALCULATED,
    SETTLEMENT_ITEM_TRANSACTION,
    SETTLEMENT_ITEM_REFUND,
    SETTLEMENT_ITEM_DISPUTE,
    SETTLEMENT_ITEM_RESERVE_HELD,
    SETTLEMENT_ITEM_RESERVE_RELEASED,
    PAYOUT_STATUS_PENDING,
    NOTIFICATION_SETTLEMENT_CREATED,
)
from payfac.exceptions import PayfacError, SettlementError, ConcurrentSettlementError
from payfac.settings import get_payfac_setting
from payfac.utils.money import quantize_amount, to_decimal, to_money, sum_amounts


logger = logging.getLogger(__name__)


class SettlementCalculation:
    """
    Amounts and ledger rows making up one settlement period

    All amounts are Decimals rounded to two places. net_amount equals
    gross_amount - total_fees - reserve_held + reserve_released.
    """

    def __init__(self, transactions, refunds, disputes, releasable_reserves, reserve_percentage):
        self.transactions = list(transactions)
        self.refunds = list(refunds)
        self.disputes = list(disputes)
        self.releasable_reserves = list(releasable_reserves)

        self.gross_sales = quantize_amount(sum_amounts(t.amount for t in self.transactions))
        self.gross_refunds = quantize_amount(sum_amounts(r.amount for r in self.refunds))
        self.gross_disputes = quantize_amount(sum_amounts(d.amount for d in self.disputes))
        self.gross_amount = self.gross_sales - self.gross_refunds - self.gross_disputes

        self.processor_fees = quantize_amount(sum_amounts(t.processor_fee for t in self.transactions))
        self.platform_fees = quantize_amount(sum_amounts(t.platform_fee for t in self.transactions))
        self.refund_fees = quantize_amount(sum_amounts(r.refund_fee for r in self.refunds))
        self.dispute_fees = quantize_amount(sum_amounts(d.dispute_fee for d in self.disputes))
        self.total_fees = self.processor_fees + self.platform_fees + self.refund_fees + self.dispute_fees

        self.reserve_held = quantize_amount(self.gross_sales * to_decimal(reserve_percentage or 0))
        self.reserve_released = quantize_amount(sum_amounts(r.amount for r in self.releasable_reserves))

        self.net_amount = self.gross_amount - self.total_fees - self.reserve_held + self.reserve_released

    @property
    def transaction_count(self):
        return len(self.transactions)

    @property
    def refund_count(self):
        return len(self.refunds)

    @property
    def dispute_count(self):
        return len(self.disputes)

    @property
    def has_activity(self):
        return bool(self.transactions or self.refunds or self.disputes or self.releasable_reserves)

    def to_settlement_fields(self) -> Dict[str, Any]:
        """Field values for the Settlement row"""
        money_fields = (
            'gross_sales', 'gross_refunds', 'gross_disputes', 'gross_amount',
            'processor_fees', 'platform_fees', 'refund_fees', 'dispute_fees', 'total_fees',
            'reserve_held', 'reserve_released', 'net_amount',
        )
        fields = {name: to_money(getattr(self, name)) for name in money_fields}
        fields.update(
            transaction_count=self.transaction_count,
            refund_count=self.refund_count,
            dispute_count=self.dispute_count,
        )
        return fields


class SettlementService:
    """
    Service for calculating, approving and rejecting settlements

    Collaborators are passed in so tests (and callers with their own rails)
    can swap them.
    """

    def __init__(self, payout_service=None, notification_service=None):
        if notification_service is None:
            from payfac.services.notification_service import NotificationService
            notification_service = NotificationService()
        if payout_service is None:
            from payfac.services.payout_service import PayoutService
            payout_service = PayoutService(notification_service=notification_service)

        self.payout_service = payout_service
        self.notifications = notification_service

    # ==========================================
    # SETTLEMENT RETRIEVAL
    # ==========================================

    def get_settlement(self, settlement_id: str) -> Settlement:
        """
        Get a settlement by ID

        Raises:
            ObjectDoesNotExist: If settlement not found
        """
        try:
            settlement = Settlement.objects.with_full_details().get(id=settlement_id)
            logger.debug(f"Retrieved settlement {settlement_id}")
            return settlement
        except ObjectDoesNotExist:
            logger.error(f"Settlement {settlement_id} not found")
            raise

    def get_settlement_by_reference(self, reference: str) -> Settlement:
        """
        Get a settlement by reference

        Raises:
            ObjectDoesNotExist: If settlement not found
        """
        try:
            settlement = Settlement.objects.with_full_details().get(reference=reference)
            logger.debug(f"Retrieved settlement by reference {reference}")
            return settlement
        except ObjectDoesNotExist:
            logger.error(f"Settlement with reference {reference} not found")
            raise

    def get_settlement_details(self, settlement: Settlement) -> Dict[str, Any]:
        """Settlement with its line items and payout"""
        return {
            'settlement': settlement,
            'items': list(settlement.items.all()),
            'payout': settlement.payout,
        }

    def get_settlements_for_sub_merchant(
        self,
        sub_merchant: SubMerchant,
        start_date=None,
        end_date=None,
        status: Optional[str] = None
    ) -> List[Settlement]:
        """
        Settlements of a sub-merchant, newest first

        Args:
            sub_merchant: SubMerchant instance
            start_date: First settlement date included (optional)
            end_date: Last settlement date included (optional)
            status: Filter by status (optional)
        """
        queryset = Settlement.objects.for_sub_merchant(sub_merchant).in_date_range(start_date, end_date)
        if status:
            queryset = queryset.filter(status=status)

        settlements = list(queryset.with_full_details())
        logger.debug(f"Retrieved {len(settlements)} settlements for sub-merchant {sub_merchant.id}")
        return settlements

    def get_settlement_stats(self, sub_merchant=None, start_date=None, end_date=None) -> Dict[str, Any]:
        """
        Settlement statistics

        Args:
            sub_merchant: Filter by sub-merchant (optional)
            start_date: First settlement date included (optional)
            end_date: Last settlement date included (optional)

        Returns:
            dict: Totals plus a count per status
        """
        stats = Settlement.objects.statistics(sub_merchant, start_date, end_date)

        logger.info(f"Settlement stats: {stats['total_count']} settlements, net {stats['total_net_amount']}")
        return stats

    # ==========================================
    # SCHEDULE AND PERIOD
    # ==========================================

    def should_settle_today(self, sub_merchant: SubMerchant, on_date) -> bool:
        """
        Whether the sub-merchant's cycle is due on a date

        Daily cycles (D+0 to D+3) are always due. Weekly cycles are due on
        the configured weekday (0 = Sunday). Biweekly cycles also need the
        day of month to fall in an even week ((day // 7) % 2 == 0).
        Monthly cycles are due on the configured day of month.
        """
        cycle = sub_merchant.settlement_cycle
        weekday = on_date.isoweekday() % 7

        if cycle in DAILY_SETTLEMENT_CYCLES:
            return True
        if cycle == SETTLEMENT_CYCLE_WEEKLY:
            return weekday == (sub_merchant.settlement_day_of_week or 0)
        if cycle == SETTLEMENT_CYCLE_BIWEEKLY:
            return (
                weekday == (sub_merchant.settlement_day_of_week or 0)
                and (on_date.day // 7) % 2 == 0
            )
        if cycle == SETTLEMENT_CYCLE_MONTHLY:
            return on_date.day == (sub_merchant.settlement_day_of_month or 1)

        logger.warning(f"Unknown settlement cycle {cycle} for {sub_merchant.merchant_code}, settling anyway")
        return True

    def get_settlement_period(self, sub_merchant: SubMerchant, settlement_date) -> Tuple[datetime, datetime]:
        """
        Start and end of the period a settlement on settlement_date covers

        The period ends at the end of settlement_date and spans the cycle
        length in days (monthly is a fixed 30 days).

        Returns:
            tuple: Aware (start, end) datetimes in the current time zone
        """
        cycle_days = SETTLEMENT_CYCLE_DAYS.get(sub_merchant.settlement_cycle, 1)
        tz = timezone.get_current_timezone()

        start = timezone.make_aware(
            datetime.combine(settlement_date - timedelta(days=cycle_days - 1), time.min), tz
        )
        end = timezone.make_aware(datetime.combine(settlement_date, time.max), tz)
        return start, end

    # ==========================================
    # CALCULATION
    # ==========================================

    def calculate_amounts(self, sub_merchant: SubMerchant, period_start, period_end) -> SettlementCalculation:
        """
        Aggregate the unsettled ledger rows of a period

        Args:
            sub_merchant: SubMerchant instance
            period_start: Aware datetime, inclusive
            period_end: Aware datetime, inclusive

        Returns:
            SettlementCalculation
        """
        release_cutoff = timezone.localtime(period_end).date()

        calculation = SettlementCalculation(
            transactions=Transaction.objects.settleable(sub_merchant, period_start, period_end),
            refunds=Refund.objects.settleable(sub_merchant, period_start, period_end),
            disputes=Dispute.objects.settleable(sub_merchant, period_start, period_end),
            releasable_reserves=Reserve.objects.releasable(sub_merchant, release_cutoff),
            reserve_percentage=sub_merchant.reserve_percentage,
        )

        logger.debug(
            f"Calculated {sub_merchant.merchant_code} {period_start:%Y-%m-%d}..{period_end:%Y-%m-%d}: "
            f"{calculation.transaction_count} transactions, {calculation.refund_count} refunds, "
            f"{calculation.dispute_count} disputes, net {calculation.net_amount}"
        )
        return calculation

    def should_auto_approve(self, sub_merchant: SubMerchant, net_amount) -> bool:
        """Small settlements of low-risk sub-merchants are approved without an operator"""
        if to_decimal(net_amount) > Decimal(str(get_payfac_setting('AUTO_APPROVE_THRESHOLD'))):
            return False
        if sub_merchant.risk_score is not None and \
                sub_merchant.risk_score > get_payfac_setting('AUTO_APPROVE_MAX_RISK_SCORE'):
            return False
        return True

    def calculate_settlement_for_merchant(self, sub_merchant: SubMerchant, settlement_date, today=None):
        """
        Calculate and persist the settlement of one sub-merchant for one date

        Everything runs in one database transaction holding a row lock on the
        sub-merchant, so two runs for the same sub-merchant serialize and a
        failure leaves no partial settlement behind.

        Args:
            sub_merchant: SubMerchant instance
            settlement_date: Business date being settled
            today: Date the run happens on (defaults to the day after
                settlement_date); drives reserve release dates and payout
                scheduling

        Returns:
            Settlement or None if there was nothing to settle or the net
            amount is below the sub-merchant's minimum payout

        Raises:
            ConcurrentSettlementError: If ledger rows were claimed by another run
        """
        today = today or settlement_date + timedelta(days=1)

        with db_transaction.atomic():
            sub_merchant = SubMerchant.objects.select_for_update().get(pk=sub_merchant.pk)
            period_start, period_end = self.get_settlement_period(sub_merchant, settlement_date)
            calculation = self.calculate_amounts(sub_merchant, period_start, period_end)

            if not calculation.has_activity:
                logger.debug(f"No activity for {sub_merchant.merchant_code} on {settlement_date}")
                return None

            minimum = to_decimal(sub_merchant.minimum_payout_amount)
            if calculation.net_amount < minimum:
                logger.info(
                    f"Skipping {sub_merchant.merchant_code}: net amount {calculation.net_amount} "
                    f"below minimum {minimum}"
                )
                return None

            settlement = Settlement.objects.create(
                sub_merchant=sub_merchant,
                settlement_date=settlement_date,
                period_start=period_start,
                period_end=period_end,
                status=SETTLEMENT_STATUS_CALCULATED,
                **calculation.to_settlement_fields()
            )

            SettlementItem.objects.bulk_create(self._build_items(settlement, calculation))
            self._claim_ledger_rows(settlement, calculation)
            self._process_reserves(sub_merchant, settlement, calculation, today)

            logger.info(
                f"Created settlement {settlement.reference} for {sub_merchant.merchant_code}: "
                f"net {settlement.net_amount}"
            )

            if self.should_auto_approve(sub_merchant, calculation.net_amount):
                self._auto_approve(settlement, today)

            self.notifications.notify_on_commit(
                NOTIFICATION_SETTLEMENT_CREATED,
                sub_merchant,
                self._notification_payload(settlement)
            )

        return settlement

    def _build_items(self, settlement, calculation) -> List[SettlementItem]:
        items = []

        for t in calculation.transactions:
            fee = to_decimal(t.processor_fee) + to_decimal(t.platform_fee)
            items.append(self._item(
                settlement, SETTLEMENT_ITEM_TRANSACTION, t, f"Transaction {t.reference}",
                gross=t.amount, fee=fee, net=to_decimal(t.amount) - fee
            ))

        for r in calculation.refunds:
            items.append(self._item(
                settlement, SETTLEMENT_ITEM_REFUND, r, f"Refund {r.reference}",
                gross=r.amount, fee=r.refund_fee, net=-(to_decimal(r.amount) + to_decimal(r.refund_fee))
            ))

        for d in calculation.disputes:
            items.append(self._item(
                settlement, SETTLEMENT_ITEM_DISPUTE, d, f"Dispute {d.reference} ({d.reason_code})",
                gross=d.amount, fee=d.dispute_fee, net=-(to_decimal(d.amount) + to_decimal(d.dispute_fee))
            ))

        if calculation.reserve_held > 0:
            items.append(SettlementItem(
                settlement=settlement,
                item_type=SETTLEMENT_ITEM_RESERVE_HELD,
                description=f"Rolling reserve {settlement.sub_merchant.reserve_percentage:.2%} of gross sales",
                gross_amount=to_money(calculation.reserve_held),
                fee_amount=to_money(0),
                net_amount=to_money(-calculation.reserve_held),
            ))

        for reserve in calculation.releasable_reserves:
            items.append(SettlementItem(
                settlement=settlement,
                item_type=SETTLEMENT_ITEM_RESERVE_RELEASED,
                ledger_id=str(reserve.pk),
                description=f"Reserve released (held until {reserve.release_date})",
                gross_amount=to_money(reserve.amount),
                fee_amount=to_money(0),
                net_amount=to_money(reserve.amount),
            ))

        return items

    @staticmethod
    def _item(settlement, item_type, row, description, gross, fee, net):
        return SettlementItem(
            settlement=settlement,
            item_type=item_type,
            ledger_id=str(row.pk),
            reference=row.reference,
            description=description,
            gross_amount=to_money(gross),
            fee_amount=to_money(fee),
            net_amount=to_money(net),
        )

    def _claim_ledger_rows(self, settlement, calculation):
        """Attach every aggregated row to the settlement, all or nothing"""
        for model, rows in (
            (Transaction, calculation.transactions),
            (Refund, calculation.refunds),
            (Dispute, calculation.disputes),
        ):
            if not rows:
                continue
            ids = [row.pk for row in rows]
            claimed = model.objects.claim(settlement, ids)
            if claimed != len(ids):
                raise ConcurrentSettlementError(
                    _("{claimed} of {total} {name} rows could be claimed").format(
                        claimed=claimed,
                        total=len(ids),
                        name=model._meta.verbose_name_plural
                    ),
                    settlement_id=settlement.reference
                )

    def _process_reserves(self, sub_merchant, settlement, calculation, today):
        """Hold this settlement's reserve and release the ones that are due"""
        if calculation.reserve_held > 0:
            Reserve.objects.create(
                sub_merchant=sub_merchant,
                settlement=settlement,
                amount=to_money(calculation.reserve_held),
                release_date=today + timedelta(days=sub_merchant.reserve_days),
            )

        if calculation.releasable_reserves:
            ids = [reserve.pk for reserve in calculation.releasable_reserves]
            released = Reserve.objects.get_queryset().mark_released(settlement, ids)
            if released != len(ids):
                raise ConcurrentSettlementError(
                    _("{released} of {total} reserves could be released").format(released=released, total=len(ids)),
                    settlement_id=settlement.reference
                )

    def _auto_approve(self, settlement, today):
        """
        Approve inside a savepoint

        A payout that cannot be created (for instance a sub-merchant without a
        usable destination) leaves the settlement calculated for an operator
        instead of losing the whole settlement.
        """
        try:
            with db_transaction.atomic():
                self.approve_settlement(settlement, approved_by=None, today=today)
        except PayfacError as e:
            settlement.refresh_from_db()
            logger.error(f"Auto-approval of settlement {settlement.reference} failed: {str(e)}", exc_info=True)
            self.notifications.alert(
                'Settlement auto-approval failed',
                {'reference': settlement.reference, 'error': str(e)},
                sub_merchant=settlement.sub_merchant
            )

    @staticmethod
    def _notification_payload(settlement):
        return {
            'reference': settlement.reference,
            'settlement_date': settlement.settlement_date.isoformat(),
            'net_amount': str(settlement.net_amount.amount),
            'currency': str(settlement.net_amount.currency),
            'status': settlement.status,
            'transaction_count': settlement.transaction_count,
        }

    # ==========================================
    # APPROVAL AND REJECTION
    # ==========================================

    @db_transaction.atomic
    def approve_settlement(self, settlement: Settlement, approved_by=None, today=None) -> Settlement:
        """
        Approve a calculated settlement and create its payout

        Args:
            settlement: Settlement to approve
            approved_by: User approving (None for automatic approval)
            today: Date used to schedule the payout (defaults to today)

        Returns:
            Settlement: Approved settlement linked to its payout

        Raises:
            InvalidStateTransition: If the settlement is not calculated
            InvalidPayoutDestination: If the sub-merchant's destination is unusable
        """
        locked = Settlement.objects.select_for_update().get(pk=settlement.pk)
        locked.mark_as_approved(approved_by)

        payout = self.payout_service.create_payout_for_settlement(locked, today=today)
        locked.payout = payout
        locked.save(update_fields=['payout', 'updated_at'])

        logger.info(
            f"Settlement {locked.reference} approved by {approved_by or 'system'}, payout {payout.reference}"
        )

        settlement.refresh_from_db()
        return settlement

    @db_transaction.atomic
    def reject_settlement(self, settlement: Settlement, rejected_by=None, reason: str = '') -> Settlement:
        """
        Put a settlement on hold and hand its transactions and refunds back

        Disputes and reserves stay attached to the rejected settlement.

        Args:
            settlement: Settlement to reject
            rejected_by: User rejecting the settlement
            reason: Why it was rejected (stored in adjustment notes)

        Raises:
            SettlementError: If the settlement's payout has already moved past pending
            InvalidStateTransition: If the settlement is not calculated or approved
        """
        locked = Settlement.objects.select_for_update().get(pk=settlement.pk)

        if locked.payout_id:
            payout = Payout.objects.select_for_update().get(pk=locked.payout_id)
            if payout.status != PAYOUT_STATUS_PENDING:
                raise SettlementError(
                    _("payout {reference} is already {status}").format(
                        reference=payout.reference,
                        status=payout.get_status_display()
                    ),
                    settlement_id=locked.reference
                )
            payout.cancel(reason=f"Settlement {locked.reference} rejected: {reason}")

        locked.mark_as_on_hold(rejected_by, reason)

        released_transactions = Transaction.objects.release(locked)
        released_refunds = Refund.objects.release(locked)

        logger.info(
            f"Settlement {locked.reference} rejected by {rejected_by}: {reason} "
            f"({released_transactions} transactions, {released_refunds} refunds released)"
        )

        settlement.refresh_from_db()
        return settlement
