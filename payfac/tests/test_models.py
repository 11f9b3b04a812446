"""
Test cases for the ledger, settlement and payout models
"""
from datetime import timedelta

from payfac.test import PayfacTestCase, egp, at, SETTLEMENT_DATE, RUN_DATE
from payfac.models import (
    SubMerchant, Transaction, Reserve, Settlement, SettlementItem,
    Payout, PayoutBatch, get_missing_destination_fields, derive_batch_status
)
from payfac.exceptions import InvalidStateTransition, SettlementError
from payfac.constants import (
    SUB_MERCHANT_STATUS_SUSPENDED,
    TRANSACTION_STATUS_AUTHORIZED,
    SETTLEMENT_STATUS_APPROVED,
    SETTLEMENT_STATUS_PAID,
    SETTLEMENT_STATUS_ON_HOLD,
    SETTLEMENT_ITEM_TRANSACTION,
    RESERVE_STATUS_RELEASED,
    PAYOUT_METHOD_BANK_TRANSFER,
    PAYOUT_METHOD_INSTANT_TRANSFER,
    PAYOUT_METHOD_WALLET,
    PAYOUT_STATUS_PENDING,
    PAYOUT_STATUS_APPROVED,
    PAYOUT_STATUS_PROCESSING,
    PAYOUT_STATUS_SENT,
    PAYOUT_STATUS_COMPLETED,
    PAYOUT_STATUS_FAILED,
    PAYOUT_STATUS_CANCELLED,
    PAYOUT_FAILURE_PROCESSING_ERROR,
    PAYOUT_FAILURE_REJECTED,
    BATCH_STATUS_COMPLETED,
    BATCH_STATUS_FAILED,
    BATCH_STATUS_PARTIALLY_COMPLETED,
)


class SubMerchantModelTests(PayfacTestCase):

    def test_active_manager_excludes_other_statuses(self):
        """Only active sub-merchants are returned by active()"""
        self.make_sub_merchant('SM-002', status=SUB_MERCHANT_STATUS_SUSPENDED)

        codes = list(SubMerchant.objects.active().values_list('merchant_code', flat=True))

        self.assertEqual(codes, ['SM-001'])

    def test_by_code(self):
        self.assertEqual(SubMerchant.objects.by_code('SM-001'), self.sub_merchant)

    def test_payout_destination(self):
        destination = self.sub_merchant.get_payout_destination()

        self.assertEqual(destination['instant_transfer_address'], '01000000001')
        self.assertEqual(destination['bank_account_number'], '100200300')


class LedgerQuerySetTests(PayfacTestCase):

    def test_settleable_filters_status_window_and_claims(self):
        """Only captured, unclaimed transactions inside the window settle"""
        inside = self.make_transaction(500)
        self.make_transaction(500, status=TRANSACTION_STATUS_AUTHORIZED)
        self.make_transaction(500, captured_at=at(SETTLEMENT_DATE - timedelta(days=2)))

        start, end = at(SETTLEMENT_DATE, 0), at(SETTLEMENT_DATE, 23, 59)
        rows = list(Transaction.objects.settleable(self.sub_merchant, start, end))

        self.assertEqual(rows, [inside])

    def test_claim_only_takes_unclaimed_rows(self):
        """A second claim on the same rows claims nothing"""
        first = self.make_transaction(500)
        second = self.make_transaction(700)
        settlement = Settlement.objects.create(
            sub_merchant=self.sub_merchant,
            settlement_date=SETTLEMENT_DATE,
            period_start=at(SETTLEMENT_DATE, 0),
            period_end=at(SETTLEMENT_DATE, 23)
        )

        self.assertEqual(Transaction.objects.claim(settlement, [first.pk, second.pk]), 2)
        self.assertEqual(Transaction.objects.claim(settlement, [first.pk, second.pk]), 0)

        self.assertEqual(Transaction.objects.release(settlement), 2)
        first.refresh_from_db()
        self.assertIsNone(first.settlement)
        self.assertIsNone(first.settled_at)


class ReserveModelTests(PayfacTestCase):

    def test_releasable_respects_release_date(self):
        due = self.make_reserve(100, RUN_DATE)
        self.make_reserve(100, RUN_DATE + timedelta(days=1))

        self.assertEqual(list(Reserve.objects.releasable(self.sub_merchant, RUN_DATE)), [due])

    def test_mark_released_skips_released_rows(self):
        reserve = self.make_reserve(100, RUN_DATE)

        self.assertEqual(Reserve.objects.get_queryset().mark_released(None, [reserve.pk]), 1)
        self.assertEqual(Reserve.objects.get_queryset().mark_released(None, [reserve.pk]), 0)
        reserve.refresh_from_db()
        self.assertEqual(reserve.status, RESERVE_STATUS_RELEASED)
        self.assertIsNotNone(reserve.released_at)


class SettlementModelTests(PayfacTestCase):

    def setUp(self):
        super().setUp()
        self.settlement = Settlement.objects.create(
            sub_merchant=self.sub_merchant,
            settlement_date=SETTLEMENT_DATE,
            period_start=at(SETTLEMENT_DATE, 0),
            period_end=at(SETTLEMENT_DATE, 23),
            net_amount=egp(900)
        )

    def test_reference_generated(self):
        self.assertTrue(self.settlement.reference.startswith('STL-20240314-'))

    def test_approve_then_paid(self):
        self.settlement.mark_as_approved(self.admin_user)
        self.settlement.mark_as_paid()

        self.settlement.refresh_from_db()
        self.assertEqual(self.settlement.status, SETTLEMENT_STATUS_PAID)
        self.assertEqual(self.settlement.approved_by, self.admin_user)
        self.assertIsNotNone(self.settlement.paid_at)

    def test_calculated_cannot_be_paid(self):
        """Paying skips approval and is refused"""
        with self.assertRaises(InvalidStateTransition):
            self.settlement.mark_as_paid()

    def test_paid_is_final(self):
        self.settlement.mark_as_approved()
        self.settlement.mark_as_paid()

        with self.assertRaises(InvalidStateTransition):
            self.settlement.mark_as_on_hold(reason='too late')

    def test_on_hold_stores_reason(self):
        self.settlement.mark_as_on_hold(self.admin_user, 'Risk review')

        self.assertEqual(self.settlement.status, SETTLEMENT_STATUS_ON_HOLD)
        self.assertEqual(self.settlement.adjustment_notes, 'Risk review')

    def test_items_are_immutable(self):
        """A saved settlement item cannot be updated"""
        item = SettlementItem.objects.create(
            settlement=self.settlement,
            item_type=SETTLEMENT_ITEM_TRANSACTION,
            reference='TX-1',
            gross_amount=egp(1000),
            fee_amount=egp(100),
            net_amount=egp(900)
        )
        item.net_amount = egp(1)

        with self.assertRaises(SettlementError):
            item.save()

    def test_statistics(self):
        self.settlement.mark_as_approved()

        stats = Settlement.objects.statistics(sub_merchant=self.sub_merchant)

        self.assertEqual(stats['total_count'], 1)
        self.assertEqual(stats['total_net_amount'], egp(900).amount)
        self.assertEqual(stats['approved_count'], 1)
        self.assertEqual(stats['calculated_count'], 0)
        self.assertEqual(Settlement.objects.approved().count(), 1)
        self.assertEqual(self.settlement.status, SETTLEMENT_STATUS_APPROVED)


class PayoutModelTests(PayfacTestCase):

    def test_destination_rules(self):
        """Each method needs its own destination fields"""
        self.assertEqual(
            get_missing_destination_fields(PAYOUT_METHOD_BANK_TRANSFER, {'bank_account_number': '1'}),
            ['bank_account_name']
        )
        self.assertEqual(get_missing_destination_fields(PAYOUT_METHOD_BANK_TRANSFER, {'iban': 'EG38'}), [])
        self.assertEqual(
            get_missing_destination_fields(PAYOUT_METHOD_INSTANT_TRANSFER, {}),
            ['instant_transfer_address']
        )
        self.assertEqual(
            get_missing_destination_fields(PAYOUT_METHOD_WALLET, {'wallet_number': '010'}),
            ['wallet_provider']
        )

    def test_happy_path_transitions(self):
        payout = self.make_payout(1000)
        self.assertEqual(payout.status, PAYOUT_STATUS_APPROVED)

        payout.mark_as_processing()
        payout.mark_as_sent(processor_reference='TRX-9', processor_status='pending')
        payout.mark_as_completed()

        payout.refresh_from_db()
        self.assertEqual(payout.status, PAYOUT_STATUS_COMPLETED)
        self.assertEqual(payout.processor_reference, 'TRX-9')
        self.assertIsNotNone(payout.initiated_at)
        self.assertIsNotNone(payout.completed_at)
        self.assertTrue(payout.is_final)

    def test_approved_cannot_complete_directly(self):
        payout = self.make_payout(1000)

        with self.assertRaises(InvalidStateTransition):
            payout.mark_as_completed()

    def test_cancel_only_from_pending(self):
        pending = self.make_payout(60000)
        self.assertEqual(pending.status, PAYOUT_STATUS_PENDING)

        pending.cancel('duplicate')
        self.assertEqual(pending.status, PAYOUT_STATUS_CANCELLED)
        self.assertIn('duplicate', pending.notes)

        approved = self.make_payout(1000)
        with self.assertRaises(InvalidStateTransition):
            approved.cancel()

    def test_failed_can_retry_until_bound(self):
        """A failed payout goes back to approved only while retries remain"""
        payout = self.make_payout(1000)

        for attempt in range(1, 4):
            payout.mark_as_processing()
            payout.mark_as_failed(PAYOUT_FAILURE_PROCESSING_ERROR, 'rail down')
            self.assertEqual(payout.retry_count, attempt)
            if attempt < 3:
                payout.approve()

        self.assertEqual(payout.status, PAYOUT_STATUS_FAILED)
        self.assertFalse(payout.can_retry)
        with self.assertRaises(InvalidStateTransition):
            payout.approve()

    def test_rejected_is_not_retryable(self):
        payout = self.make_payout(1000)
        payout.mark_as_processing()
        payout.mark_as_failed(PAYOUT_FAILURE_REJECTED, 'declined', count_retry=False)

        self.assertEqual(payout.retry_count, 0)
        self.assertFalse(payout.can_retry)
        self.assertFalse(Payout.objects.retryable().exists())

    def test_due_and_in_flight_querysets(self):
        due = self.make_payout(1000)
        self.make_payout(1000, scheduled_date=RUN_DATE + timedelta(days=1))
        in_flight = self.make_payout(1000)
        in_flight.mark_as_processing()

        self.assertEqual(list(Payout.objects.due(RUN_DATE)), [due])
        self.assertEqual(
            list(Payout.objects.stale_in_flight(in_flight.initiated_at + timedelta(seconds=1))),
            [in_flight]
        )
        self.assertEqual(in_flight.status, PAYOUT_STATUS_PROCESSING)

    def test_by_processor_reference_falls_back_to_reference(self):
        payout = self.make_payout(1000)
        payout.mark_as_processing()
        payout.mark_as_sent(processor_reference='TRX-77')

        self.assertEqual(Payout.objects.by_processor_reference('TRX-77'), payout)
        self.assertEqual(Payout.objects.by_processor_reference(payout.reference), payout)
        self.assertIsNone(Payout.objects.by_processor_reference('nope'))
        self.assertEqual(payout.status, PAYOUT_STATUS_SENT)


class PayoutBatchModelTests(PayfacTestCase):

    def test_derive_batch_status(self):
        self.assertEqual(derive_batch_status(3, 0), BATCH_STATUS_COMPLETED)
        self.assertEqual(derive_batch_status(0, 3), BATCH_STATUS_FAILED)
        self.assertEqual(derive_batch_status(2, 1), BATCH_STATUS_PARTIALLY_COMPLETED)

    def test_record_outcome(self):
        batch = PayoutBatch.objects.create(scheduled_date=RUN_DATE, payout_count=3)

        batch.record_outcome(2, 1, processor_response={'status': 'accepted'})

        batch.refresh_from_db()
        self.assertTrue(batch.reference.startswith('BAT-20240315-'))
        self.assertEqual(batch.status, BATCH_STATUS_PARTIALLY_COMPLETED)
        self.assertIsNotNone(batch.processed_at)
