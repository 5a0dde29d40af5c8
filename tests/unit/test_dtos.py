# File: tests/unit/test_dtos.py
"""
Unit tests for the request and result DTOs

This test suite covers:
1. Input validation and normalization
2. Views built from domain objects
3. Serialization helpers
"""

import unittest
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

from pydantic import ValidationError

sys.path.append(str(Path(__file__).parent.parent.parent))

from levelpark.application.dtos import (
    VehicleEntryRequestDTO, VehicleExitRequestDTO, AvailableSpotsQueryDTO,
    FinePolicyChangeRequestDTO, FineIssueRequestDTO, ReservationRequestDTO,
    SpotDTO, FineDTO, PaymentDTO, ReservationDTO
)
from levelpark.domain.models import (
    Fine, FineType, ParkingSpot, SpotType, Vehicle, VehicleType, Payment, PaymentMethod, Reservation
)


NOW = datetime(2024, 1, 15, 10, 0, 0)


class TestInputDTOs(unittest.TestCase):
    """Test request validation"""

    def test_entry_request_normalization(self):
        """Test plate, vehicle type and spot id normalization"""
        request = VehicleEntryRequestDTO(
            license_plate=" abc123 ", vehicle_type="CAR", spot_id=" F1-R2-S1 "
        )
        self.assertEqual(request.license_plate, "ABC123")
        self.assertEqual(request.vehicle_type, "car")
        self.assertEqual(request.spot_id, "F1-R2-S1")
        self.assertFalse(request.is_handicapped)

    def test_entry_request_rejections(self):
        """Test bad spot ids, vehicle types and plates"""
        with self.assertRaises(ValidationError):
            VehicleEntryRequestDTO(license_plate="ABC123", vehicle_type="car", spot_id="XYZ")
        with self.assertRaises(ValidationError):
            VehicleEntryRequestDTO(license_plate="ABC123", vehicle_type="bus", spot_id="F1-R1-S1")
        with self.assertRaises(ValidationError):
            VehicleEntryRequestDTO(license_plate="   ", vehicle_type="car", spot_id="F1-R1-S1")

    def test_exit_request(self):
        """Test defaults and amount validation"""
        request = VehicleExitRequestDTO(license_plate="abc123", amount_paid="10.50",
                                        payment_method="CARD")
        self.assertEqual(request.amount_paid, Decimal('10.50'))
        self.assertEqual(request.payment_method, "card")
        self.assertTrue(request.include_unpaid_fines)

        with self.assertRaises(ValidationError):
            VehicleExitRequestDTO(license_plate="ABC123", amount_paid=-1)

    def test_exit_request_default_method(self):
        """Test an omitted payment method defaults to the plain cash value"""
        request = VehicleExitRequestDTO(license_plate="ABC123", amount_paid=5)
        self.assertEqual(request.payment_method, "cash")
        self.assertIs(type(request.payment_method), str)
        self.assertEqual(request.to_dict(mode="json")["payment_method"], "cash")

    def test_policy_and_fine_requests(self):
        """Test policy upper-casing and fine validation"""
        self.assertEqual(FinePolicyChangeRequestDTO(policy="hourly").policy, "HOURLY")
        with self.assertRaises(ValidationError):
            FinePolicyChangeRequestDTO(policy="weekly")

        fine = FineIssueRequestDTO(license_plate="abc123", fine_type="overstay", amount=20)
        self.assertEqual(fine.fine_type, "overstay")
        with self.assertRaises(ValidationError):
            FineIssueRequestDTO(license_plate="ABC123", fine_type="overstay", amount=-5)

    def test_available_spots_query(self):
        """Test the availability query"""
        query = AvailableSpotsQueryDTO(vehicle_type="Motorcycle")
        self.assertEqual(query.vehicle_type, "motorcycle")

    def test_reservation_window(self):
        """Test that the end must follow the start"""
        request = ReservationRequestDTO(
            license_plate="abc123", spot_id="F1-R3-S3",
            start_time=NOW, end_time=NOW + timedelta(hours=2)
        )
        self.assertEqual(request.prepaid_amount, Decimal('0'))

        with self.assertRaises(ValidationError) as ctx:
            ReservationRequestDTO(license_plate="ABC123", spot_id="F1-R3-S3",
                                  start_time=NOW, end_time=NOW)
        self.assertIn("end_time must be after start_time", str(ctx.exception))

    def test_from_dict_and_json(self):
        """Test the construction helpers"""
        request = VehicleEntryRequestDTO.from_json(
            '{"license_plate": "abc123", "vehicle_type": "car", "spot_id": "F1-R2-S1"}'
        )
        self.assertEqual(request.license_plate, "ABC123")
        self.assertEqual(VehicleEntryRequestDTO.from_dict(request.to_dict()), request)


class TestOutputDTOs(unittest.TestCase):
    """Test views of domain objects"""

    def test_spot_view(self):
        """Test an occupied spot view"""
        spot = ParkingSpot("F1-R2-S1", SpotType.REGULAR)
        spot.occupy(Vehicle("ABC123", VehicleType.CAR, entry_time=NOW))
        view = SpotDTO.from_domain(spot)
        self.assertEqual(view.spot_type, "regular")
        self.assertEqual(view.status, "occupied")
        self.assertEqual(view.license_plate, "ABC123")

    def test_fine_view(self):
        """Test the fine view and exclude_none"""
        fine = Fine("ABC123", FineType.UNAUTHORIZED_RESERVED, Decimal('50'), issued_at=NOW)
        view = FineDTO.from_domain(fine)
        self.assertEqual(view.fine_type, "unauthorized_reserved")
        self.assertEqual(view.amount, 50.0)
        self.assertEqual(view.to_dict(mode="json")["issued_at"], "2024-01-15T10:00:00")

    def test_payment_view(self):
        """Test the payment view"""
        payment = Payment("ABC123", Decimal('10'), Decimal('0'), Decimal('4'), PaymentMethod.CARD, NOW)
        view = PaymentDTO.from_domain(payment)
        self.assertEqual(view.remaining_balance, 6.0)
        self.assertEqual(view.payment_method, "card")
        self.assertNotIn("spot_id", view.to_dict(exclude_none=True))

    def test_reservation_view(self):
        """Test the reservation view"""
        reservation = Reservation("ABC123", "F1-R3-S3", NOW, NOW + timedelta(hours=1), created_at=NOW)
        view = ReservationDTO.from_domain(reservation)
        self.assertTrue(view.is_active)
        self.assertEqual(view.spot_id, "F1-R3-S3")


if __name__ == '__main__':
    unittest.main()
