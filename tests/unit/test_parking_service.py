# File: tests/unit/test_parking_service.py
"""
Unit tests for the ParkingService application service

This test suite covers:
1. Vehicle entry (validation, duplicates, allocation, compatibility)
2. Exit in three phases (lookup, payment summary, settlement)
3. Fines (overstay, unauthorized reserved, unpaid balance)
4. Fine policy switching
5. Reservations
6. Collaborators (persistence and event publisher)
7. Concurrent entries
"""

import unittest
import sys
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock

sys.path.append(str(Path(__file__).parent.parent.parent))

from levelpark.application.parking_service import (
    ParkingService, ParkingServiceFactory, ParkingServiceError,
    VehicleValidationError, SlotAllocationError, IncompatibleSpotError,
    PaymentProcessingError, ReservationError
)
from levelpark.domain.aggregates import AggregateFactory
from levelpark.domain.models import (
    FineType, SpotStatus, VehicleEnteredEvent, VehicleExitedEvent, FineIssuedEvent
)
from levelpark.domain.strategies import FinePolicyType


START = datetime(2024, 1, 15, 10, 0, 0)


class FakeClock:
    """Controllable clock for exact durations"""

    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def __call__(self) -> datetime:
        return self.now


# ============================================================================
# ENTRY
# ============================================================================

class TestVehicleEntry(unittest.TestCase):
    """Test the vehicle entry use case"""

    def setUp(self):
        """Set up test data"""
        self.clock = FakeClock(START)
        self.service = ParkingService(AggregateFactory.create_default_parking_lot(), clock=self.clock)

    def test_enter_vehicle_success(self):
        """Test a car entering a regular spot"""
        result = self.service.enter_vehicle("abc123", "car", spot_id="F1-R2-S1")

        self.assertEqual(result.ticket_number, "T-ABC123-20240115100000")
        self.assertEqual(result.vehicle.plate, "ABC123")
        self.assertEqual(result.vehicle.entry_time, START)
        self.assertEqual(result.spot.status, SpotStatus.OCCUPIED)
        self.assertIsNone(result.unauthorized_fine)
        self.assertIn("=== PARKING TICKET ===", result.ticket_display())
        self.assertNotIn("WARNING", result.ticket_display())

    def test_duplicate_plate_rejected(self):
        """Test that a parked plate cannot enter again under any case"""
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        with self.assertRaises(VehicleValidationError) as ctx:
            self.service.enter_vehicle(" abc123 ", "car", spot_id="F1-R2-S2")
        self.assertEqual(ctx.exception.field, "license_plate")
        self.assertTrue(self.service.parking_lot.find_spot_by_id("F1-R2-S2").is_available)

    def test_missing_inputs(self):
        """Test validation of plate, vehicle type and spot id"""
        with self.assertRaises(VehicleValidationError) as ctx:
            self.service.enter_vehicle("  ", "car", spot_id="F1-R2-S1")
        self.assertEqual(ctx.exception.field, "license_plate")

        with self.assertRaises(VehicleValidationError) as ctx:
            self.service.enter_vehicle("ABC123", None, spot_id="F1-R2-S1")
        self.assertEqual(ctx.exception.field, "vehicle_type")

        with self.assertRaises(VehicleValidationError) as ctx:
            self.service.enter_vehicle("ABC123", "bus", spot_id="F1-R2-S1")
        self.assertEqual(ctx.exception.field, "vehicle_type")

        with self.assertRaises(VehicleValidationError) as ctx:
            self.service.enter_vehicle("ABC123", "car")
        self.assertEqual(ctx.exception.field, "spot_id")

    def test_unknown_spot(self):
        """Test unknown and malformed spot ids"""
        for spot_id in ("F9-R1-S1", "XYZ"):
            with self.assertRaises(SlotAllocationError) as ctx:
                self.service.enter_vehicle("ABC123", "car", spot_id=spot_id)
            self.assertNotIsInstance(ctx.exception, IncompatibleSpotError)
            self.assertEqual(ctx.exception.spot_id, spot_id)

    def test_occupied_spot(self):
        """Test that an occupied spot is refused"""
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        with self.assertRaises(SlotAllocationError) as ctx:
            self.service.enter_vehicle("XYZ789", "car", spot_id="F1-R2-S1")
        self.assertIn("not available", str(ctx.exception))
        self.assertEqual(self.service.parking_lot.find_spot_by_id("F1-R2-S1").current_vehicle.plate,
                         "ABC123")

    def test_incompatible_spot(self):
        """Test that compatibility is enforced without state changes"""
        with self.assertRaises(IncompatibleSpotError) as ctx:
            self.service.enter_vehicle("MOTO1", "motorcycle", spot_id="F1-R2-S1")
        self.assertEqual(ctx.exception.spot_id, "F1-R2-S1")

        with self.assertRaises(IncompatibleSpotError):
            self.service.enter_vehicle("SUV001", "suv_truck", spot_id="F1-R1-S1")

        with self.assertRaises(IncompatibleSpotError):
            self.service.enter_vehicle("CAR001", "car", spot_id="F1-R3-S1")

        self.assertEqual(self.service.parking_lot.occupied_count, 0)

    def test_card_holder_parks_anywhere(self):
        """Test that a handicapped card overrides the category"""
        result = self.service.enter_vehicle("SUV001", "suv_truck", True, spot_id="F1-R1-S1")
        self.assertTrue(result.vehicle.is_handicapped)
        result = self.service.enter_vehicle("CAR001", "car", True, spot_id="F1-R3-S1")
        self.assertEqual(result.spot.spot_id, "F1-R3-S1")

    def test_reserved_spot_without_reservation_is_fined(self):
        """Test the unauthorized reserved fine on entry"""
        result = self.service.enter_vehicle("ABC123", "car", True, spot_id="F1-R3-S3")

        fine = result.unauthorized_fine
        self.assertIsNotNone(fine)
        self.assertEqual(fine.fine_type, FineType.UNAUTHORIZED_RESERVED)
        self.assertEqual(fine.amount, Decimal('50'))
        self.assertIn("*** WARNING ***", result.ticket_display())
        self.assertEqual(self.service.get_unpaid_fines("ABC123"), [fine])

    def test_reserved_spot_fines_can_be_disabled(self):
        """Test the entry-time fine switch"""
        self.service.config["issue_reserved_fines_on_entry"] = False
        result = self.service.enter_vehicle("ABC123", "handicapped", spot_id="F1-R3-S3")
        self.assertIsNone(result.unauthorized_fine)

    def test_find_available_spots(self):
        """Test availability shrinks as spots are taken"""
        self.assertEqual(len(self.service.find_available_spots("motorcycle")), 25)
        self.service.enter_vehicle("MOTO1", "motorcycle", spot_id="F1-R1-S1")
        self.assertEqual(len(self.service.find_available_spots("motorcycle")), 24)


# ============================================================================
# EXIT
# ============================================================================

class TestVehicleExit(unittest.TestCase):
    """Test lookup, payment summary and settlement"""

    def setUp(self):
        """Set up test data"""
        self.clock = FakeClock(START)
        self.service = ParkingService(AggregateFactory.create_default_parking_lot(), clock=self.clock)
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")

    def test_lookup_vehicle(self):
        """Test active session lookup"""
        lookup = self.service.lookup_vehicle("abc123")
        self.assertEqual(lookup.spot.spot_id, "F1-R2-S1")
        self.assertIsNone(self.service.lookup_vehicle("NOPE1"))

        active = self.service.get_active_vehicles()
        self.assertEqual([(r.vehicle.plate, r.spot.spot_id) for r in active], [("ABC123", "F1-R2-S1")])

    def test_payment_summary(self):
        """Test 90 minutes in a regular spot"""
        self.clock.advance(minutes=90)
        summary = self.service.generate_payment_summary(self.service.lookup_vehicle("ABC123"))

        self.assertEqual(summary.duration_hours, 2)
        self.assertEqual(summary.parking_fee, Decimal('10.00'))
        self.assertEqual(summary.total_fines, Decimal('0'))
        self.assertEqual(summary.total_due, Decimal('10.00'))
        self.assertIn("TOTAL DUE: RM 10.00", summary.display_text())

    def test_payment_summary_rounding(self):
        """Test that 61 minutes bills 2 hours and 0 minutes bills 1"""
        summary = self.service.generate_payment_summary("ABC123")
        self.assertEqual(summary.duration_hours, 1)
        self.assertEqual(summary.parking_fee, Decimal('5.00'))

        self.clock.advance(minutes=61)
        summary = self.service.generate_payment_summary("ABC123")
        self.assertEqual(summary.duration_hours, 2)

    def test_payment_summary_without_session(self):
        """Test summary for a missing session"""
        with self.assertRaises(VehicleValidationError):
            self.service.generate_payment_summary(None)

    def test_settle_paid_in_full(self):
        """Test a full payment vacates the spot and books revenue"""
        self.clock.advance(minutes=90)
        summary = self.service.generate_payment_summary("ABC123")
        result = self.service.settle(summary, Decimal('10'), "cash")

        self.assertTrue(result.payment_sufficient)
        self.assertEqual(result.remaining_balance, Decimal('0'))
        self.assertIsNone(result.unpaid_balance_fine)
        self.assertEqual(result.summary.vehicle.exit_time, START + timedelta(minutes=90))
        self.assertTrue(self.service.parking_lot.find_spot_by_id("F1-R2-S1").is_available)
        self.assertEqual(self.service.total_revenue, Decimal('10'))
        self.assertIn("PAID IN FULL", result.receipt.format_text())
        self.assertEqual(len(self.service.get_payments("ABC123")), 1)

    def test_settle_partial_payment(self):
        """Test a short payment records an unpaid balance fine"""
        self.clock.advance(minutes=90)
        result = self.service.process_exit("ABC123", 4)

        self.assertFalse(result.payment_sufficient)
        self.assertEqual(result.remaining_balance, Decimal('6'))
        self.assertEqual(result.unpaid_balance_fine.fine_type, FineType.UNPAID_BALANCE)
        self.assertEqual(result.unpaid_balance_fine.amount, Decimal('6'))
        self.assertTrue(self.service.parking_lot.find_spot_by_id("F1-R2-S1").is_available)
        self.assertEqual(self.service.total_revenue, Decimal('4'))
        self.assertEqual(self.service.total_unpaid_fines("ABC123"), Decimal('6'))

    def test_settle_twice(self):
        """Test that a settled session cannot be settled again"""
        summary = self.service.generate_payment_summary("ABC123")
        self.service.settle(summary, 5)
        with self.assertRaises(VehicleValidationError):
            self.service.settle(summary, 5)
        self.assertEqual(self.service.total_revenue, Decimal('5'))

    def test_invalid_payments(self):
        """Test negative amounts and unknown methods leave the vehicle parked"""
        summary = self.service.generate_payment_summary("ABC123")
        with self.assertRaises(PaymentProcessingError):
            self.service.settle(summary, -1)
        with self.assertRaises(PaymentProcessingError):
            self.service.settle(summary, 5, "bitcoin")
        self.assertFalse(self.service.parking_lot.find_spot_by_id("F1-R2-S1").is_available)
        self.assertEqual(self.service.total_revenue, Decimal('0'))

    def test_exit_settles_unpaid_fines(self):
        """Test that fines included in the summary are marked paid"""
        self.service.issue_fine("ABC123", "unpaid_balance", 6)
        fines = self.service.get_unpaid_fines("ABC123")

        result = self.service.process_exit("ABC123", 11, unpaid_fines=fines)
        self.assertEqual(result.summary.total_due, Decimal('11.00'))
        self.assertTrue(result.payment_sufficient)
        self.assertEqual(len(result.settled_fines), 1)
        self.assertEqual(self.service.get_unpaid_fines("ABC123"), [])

    def test_exit_collects_overstay_fine(self):
        """Test the overstay fine is recorded and settled in the same exit"""
        self.clock.advance(hours=26)
        result = self.service.process_exit("ABC123", 180, include_unpaid_fines=True)

        self.assertEqual(result.summary.parking_fee, Decimal('130.00'))
        self.assertEqual([f.fine_type for f in result.settled_fines], [FineType.OVERSTAY])
        self.assertEqual(result.summary.total_due, Decimal('180.00'))
        self.assertTrue(result.payment_sufficient)
        self.assertEqual(self.service.get_unpaid_fines("ABC123"), [])

    def test_rejected_exit_records_no_overstay_fine(self):
        """Test an invalid payment leaves the fine ledger untouched"""
        self.clock.advance(hours=26)
        with self.assertRaises(PaymentProcessingError):
            self.service.process_exit("ABC123", 180, "bitcoin", include_unpaid_fines=True)
        with self.assertRaises(PaymentProcessingError):
            self.service.process_exit("ABC123", -1, include_unpaid_fines=True)

        self.assertEqual(self.service.all_unpaid_fines(), [])
        self.assertFalse(self.service.parking_lot.find_spot_by_id("F1-R2-S1").is_available)

    def test_handicapped_rate(self):
        """Test card holders in a handicapped spot pay the handicapped rate"""
        self.service.enter_vehicle("SUV001", "suv_truck", True, spot_id="F1-R3-S1")
        self.clock.advance(hours=3)
        summary = self.service.generate_payment_summary("SUV001")
        self.assertEqual(summary.parking_fee, Decimal('6.00'))


# ============================================================================
# FINES AND POLICY
# ============================================================================

class TestFinesAndPolicy(unittest.TestCase):
    """Test overstay detection, explicit fines and policy switching"""

    def setUp(self):
        """Set up test data"""
        self.clock = FakeClock(START)
        self.service = ParkingService(AggregateFactory.create_default_parking_lot(), clock=self.clock)

    def test_overstay_issued_once(self):
        """Test an overstay fine is recorded once per unpaid period"""
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        self.clock.advance(hours=26)

        fines = self.service.get_unpaid_fines("ABC123")
        self.assertEqual(len(fines), 1)
        self.assertEqual(fines[0].fine_type, FineType.OVERSTAY)
        self.assertEqual(fines[0].amount, Decimal('50'))
        self.assertEqual(len(self.service.get_unpaid_fines("ABC123")), 1)

    def test_overstay_under_hourly_policy(self):
        """Test overstay evaluated on the hours beyond 24"""
        self.service.change_fine_policy("hourly")
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        self.clock.advance(hours=26)
        self.assertEqual(self.service.get_unpaid_fines("ABC123")[0].amount, Decimal('40'))

    def test_no_overstay_within_threshold(self):
        """Test that 24 hours exactly is not fined"""
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        self.clock.advance(hours=24)
        self.assertEqual(self.service.get_unpaid_fines("ABC123"), [])

    def test_change_fine_policy(self):
        """Test switching returns the previous policy"""
        previous = self.service.change_fine_policy("progressive")
        self.assertEqual(previous.policy_type, FinePolicyType.FIXED)
        self.assertEqual(self.service.fine_policy.policy_type, FinePolicyType.PROGRESSIVE)
        self.assertEqual(self.service.parking_lot.fine_context.effective_from, START)

        with self.assertRaises(ParkingServiceError):
            self.service.change_fine_policy("weekly")
        self.assertEqual(self.service.fine_policy.policy_type, FinePolicyType.PROGRESSIVE)

    def test_issue_fine_validation(self):
        """Test explicit fines reject unknown types and negative amounts"""
        fine = self.service.issue_fine("abc123", "OVERSTAY", 30)
        self.assertEqual(fine.license_plate, "ABC123")
        self.assertEqual(fine.issued_at, START)

        with self.assertRaises(ParkingServiceError):
            self.service.issue_fine("ABC123", "speeding", 10)
        with self.assertRaises(ParkingServiceError):
            self.service.issue_fine("ABC123", FineType.OVERSTAY, -10)

    def test_mark_fines_paid(self):
        """Test paying fines outside an exit"""
        fine = self.service.issue_fine("ABC123", FineType.OVERSTAY, 30)
        self.assertEqual(self.service.mark_fines_paid([fine]), [fine])
        self.assertEqual(self.service.all_unpaid_fines(), [])

    def test_status_includes_unpaid_fines(self):
        """Test the status report totals"""
        self.service.issue_fine("ABC123", FineType.OVERSTAY, 30)
        self.service.issue_fine("XYZ789", FineType.UNPAID_BALANCE, 6)
        status = self.service.get_parking_lot_status()
        self.assertEqual(status["unpaid_fines"], {"count": 2, "total_amount": 36.0})


# ============================================================================
# RESERVATIONS
# ============================================================================

class TestReservations(unittest.TestCase):
    """Test reservation management"""

    def setUp(self):
        """Set up test data"""
        self.clock = FakeClock(START)
        self.service = ParkingService(AggregateFactory.create_default_parking_lot(), clock=self.clock)

    def test_reservation_authorizes_entry(self):
        """Test that a valid reservation avoids the reserved fine"""
        self.service.create_reservation("ABC123", "F1-R3-S3", START, START + timedelta(hours=2))
        self.assertTrue(self.service.has_valid_reservation("abc123", "F1-R3-S3"))

        result = self.service.enter_vehicle("ABC123", "handicapped", spot_id="F1-R3-S3")
        self.assertIsNone(result.unauthorized_fine)

    def test_reservation_for_another_spot(self):
        """Test that a reservation only covers its own spot"""
        self.service.create_reservation("ABC123", "F1-R3-S4", START, START + timedelta(hours=2))
        result = self.service.enter_vehicle("ABC123", "handicapped", spot_id="F1-R3-S3")
        self.assertIsNotNone(result.unauthorized_fine)

    def test_invalid_reservations(self):
        """Test non-reserved spots, unknown spots and bad windows"""
        with self.assertRaises(ReservationError):
            self.service.create_reservation("ABC123", "F1-R2-S1", START, START + timedelta(hours=1))
        with self.assertRaises(ReservationError):
            self.service.create_reservation("ABC123", "F9-R3-S3", START, START + timedelta(hours=1))
        with self.assertRaises(ReservationError):
            self.service.create_reservation("ABC123", "F1-R3-S3", START, START - timedelta(hours=1))

    def test_overlapping_reservation(self):
        """Test that active bookings of a spot cannot overlap"""
        first = self.service.create_reservation("ABC123", "F1-R3-S3", START, START + timedelta(hours=2))
        with self.assertRaises(ReservationError):
            self.service.create_reservation("XYZ789", "F1-R3-S3",
                                            START + timedelta(hours=1), START + timedelta(hours=3))

        self.service.cancel_reservation(first.id)
        self.assertFalse(self.service.has_valid_reservation("ABC123", "F1-R3-S3"))
        second = self.service.create_reservation("XYZ789", "F1-R3-S3",
                                                 START + timedelta(hours=1), START + timedelta(hours=3))
        self.assertTrue(second.is_active)

    def test_cancel_unknown_reservation(self):
        """Test cancelling a reservation that does not exist"""
        with self.assertRaises(ReservationError):
            self.service.cancel_reservation("missing")


# ============================================================================
# COLLABORATORS
# ============================================================================

class TestCollaborators(unittest.TestCase):
    """Test persistence mirroring and event publishing"""

    def setUp(self):
        """Set up test data"""
        self.clock = FakeClock(START)
        self.persistence = Mock()
        self.persistence.find_valid_reservation.return_value = None
        self.publisher = Mock()
        self.service = ParkingService(
            AggregateFactory.create_default_parking_lot(),
            persistence=self.persistence,
            event_publisher=self.publisher,
            clock=self.clock
        )

    def published(self):
        return [c.args[0] for c in self.publisher.publish.call_args_list]

    def test_entry_is_mirrored_and_published(self):
        """Test entry calls the adapter and publishes an entry event"""
        result = self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        self.persistence.record_entry.assert_called_once_with(result.vehicle, result.spot)
        events = self.published()
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], VehicleEnteredEvent)

    def test_reserved_fine_is_saved_and_published(self):
        """Test fines reach the adapter and the publisher"""
        result = self.service.enter_vehicle("ABC123", "handicapped", spot_id="F1-R3-S3")
        self.persistence.save_fine.assert_called_once_with(result.unauthorized_fine)
        self.persistence.find_valid_reservation.assert_called_once()
        self.assertTrue(any(isinstance(e, FineIssuedEvent) for e in self.published()))

    def test_settlement_is_mirrored(self):
        """Test settlement calls every adapter operation"""
        self.service.enter_vehicle("ABC123", "car", spot_id="F1-R2-S1")
        self.clock.advance(hours=2)
        result = self.service.process_exit("ABC123", 10)

        self.persistence.record_exit.assert_called_once()
        self.persistence.update_revenue.assert_called_once_with(self.service.parking_lot)
        self.persistence.save_payment.assert_called_once_with(result.payment)
        self.persistence.mark_fines_paid.assert_called_once_with([])
        self.assertIsInstance(self.published()[-1], VehicleExitedEvent)

    def test_persisted_reservation_authorizes_entry(self):
        """Test that a reservation known only to the database counts"""
        self.persistence.find_valid_reservation.return_value = Mock()
        result = self.service.enter_vehicle("ABC123", "handicapped", spot_id="F1-R3-S3")
        self.assertIsNone(result.unauthorized_fine)


class TestConcurrency(unittest.TestCase):
    """Test serialized entries"""

    def test_concurrent_entries_into_one_spot(self):
        """Test that exactly one of many concurrent entries wins a spot"""
        service = ParkingServiceFactory.create_default_service()
        outcomes = []
        lock = threading.Lock()

        def enter(plate):
            try:
                service.enter_vehicle(plate, "car", spot_id="F2-R2-S3")
                result = "ok"
            except SlotAllocationError:
                result = "refused"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=enter, args=(f"CAR{i:03d}",)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(outcomes.count("ok"), 1)
        self.assertEqual(outcomes.count("refused"), 9)
        self.assertEqual(service.parking_lot.occupied_count, 1)

    def test_service_with_config(self):
        """Test the configured factory"""
        service = ParkingServiceFactory.create_service_with_config({"overstay_threshold_hours": 12})
        self.assertEqual(service.config["overstay_threshold_hours"], 12)
        self.assertEqual(service.config["minimum_billable_hours"], 1)


if __name__ == '__main__':
    unittest.main()
