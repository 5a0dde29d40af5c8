# File: levelpark/domain/services.py
"""
Domain Services for the LevelPark facility rule engine

Stateless services that operate on entities and value objects:
1. CompatibilityMatrix - Queries over the vehicle/spot permission table
2. FeeCalculator - Rate selection and parking fee computation
3. FineManager - Violation predicates and the fine ledger
4. PaymentProcessor - Payment validation, records and receipts
"""

from dataclasses import dataclass
from typing import Optional, List, Iterable, Union, Protocol
from datetime import datetime
from decimal import Decimal
import logging

from .models import (
    Vehicle, ParkingSpot, Fine, Payment,
    VehicleType, SpotType, FineType, PaymentMethod,
    COMPATIBILITY_MATRIX, HANDICAPPED_RATE, MINIMUM_BILLABLE_HOURS,
    can_park, calculate_duration_hours, format_timestamp, to_decimal
)
from .strategies import FinePolicy, calculate_fine


OVERSTAY_THRESHOLD_HOURS = 24


# ============================================================================
# COMPATIBILITY
# ============================================================================

class CompatibilityMatrix:
    """
    Domain Service: Read-only queries over the compatibility table
    The decision itself is can_park(); the handicapped card always wins.
    """

    can_park = staticmethod(can_park)

    @staticmethod
    def allowed_spot_types(vehicle_type: VehicleType, is_handicapped: bool = False) -> List[SpotType]:
        """Spot types a vehicle may use, in declaration order"""
        return [
            spot_type for spot_type in SpotType
            if can_park(vehicle_type, is_handicapped, spot_type)
        ]

    @staticmethod
    def vehicle_types_for(spot_type: SpotType) -> List[VehicleType]:
        """Vehicle categories admitted to a spot type without a card"""
        return [
            vehicle_type for vehicle_type, spot_types in COMPATIBILITY_MATRIX.items()
            if spot_type in spot_types
        ]


# ============================================================================
# FEES
# ============================================================================

class FeeCalculator:
    """
    Domain Service: Calculates parking fees based on business rules
    Stateless service that operates on vehicles and spots
    """

    @staticmethod
    def effective_rate(vehicle: Vehicle, spot: ParkingSpot) -> Decimal:
        """
        Hourly rate charged to a vehicle in a spot
        Card holders in a Handicapped spot pay the handicapped rate.
        """
        if vehicle.is_handicapped and spot.spot_type == SpotType.HANDICAPPED:
            return HANDICAPPED_RATE
        return spot.hourly_rate

    @staticmethod
    def calculate_parking_fee(vehicle: Vehicle, spot: ParkingSpot, duration_hours: int) -> Decimal:
        """
        Fee = duration_hours * effective rate
        Raises: ValueError for a missing vehicle/spot or a negative duration
        """
        if vehicle is None or spot is None:
            raise ValueError("Vehicle and spot are required to calculate a fee")
        if duration_hours < 0:
            raise ValueError(f"Duration cannot be negative: {duration_hours}")

        return to_decimal(duration_hours) * FeeCalculator.effective_rate(vehicle, spot)

    @staticmethod
    def billable_hours(
        entry_time: Optional[datetime],
        exit_time: Optional[datetime],
        minimum: int = MINIMUM_BILLABLE_HOURS
    ) -> int:
        """Duration in hours with the minimum charge substituted for zero"""
        return max(minimum, calculate_duration_hours(entry_time, exit_time))

    @staticmethod
    def calculate_total_amount(
        parking_fee: Union[Decimal, float, int],
        total_fines: Union[Decimal, float, int]
    ) -> Decimal:
        """Total due = parking fee + fines, never negative"""
        total = to_decimal(parking_fee) + to_decimal(total_fines)
        return max(Decimal('0'), total)


# ============================================================================
# FINES
# ============================================================================

class FineLedger(Protocol):
    """Storage the fine manager records fines in"""

    def add(self, fine: Fine) -> Fine: ...

    def update(self, fine: Fine) -> Fine: ...

    def exists(self, id: str) -> bool: ...

    def find_unpaid_by_license_plate(self, license_plate: str) -> List[Fine]: ...

    def find_all_unpaid(self) -> List[Fine]: ...


class FineManager:
    """
    Domain Service: Violation predicates and the fine ledger

    Each predicate produces at most one Fine per call and returns None when
    there is no violation. Predicates never record anything; recording is
    done through the ledger methods.
    """

    def __init__(self, ledger: FineLedger, overstay_threshold_hours: int = OVERSTAY_THRESHOLD_HOURS):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.ledger = ledger
        self.overstay_threshold_hours = overstay_threshold_hours

    # ========================================================================
    # PREDICATES
    # ========================================================================

    @staticmethod
    def check_overstay(
        vehicle: Vehicle,
        policy: FinePolicy,
        at: datetime,
        threshold_hours: int = OVERSTAY_THRESHOLD_HOURS
    ) -> Optional[Fine]:
        """
        Overstay fine for a vehicle parked longer than the threshold
        The policy is evaluated on the hours beyond the threshold.
        """
        if vehicle is None or vehicle.entry_time is None:
            return None

        end = vehicle.exit_time or at
        hours = calculate_duration_hours(vehicle.entry_time, end)
        if hours <= threshold_hours:
            return None

        overstay_hours = hours - threshold_hours
        return Fine(
            license_plate=vehicle.license_plate,
            fine_type=FineType.OVERSTAY,
            amount=calculate_fine(policy, overstay_hours),
            issued_at=at
        )

    @staticmethod
    def check_unauthorized_reserved(
        vehicle: Vehicle,
        spot_type: SpotType,
        is_authorized: bool,
        policy: FinePolicy,
        at: datetime
    ) -> Optional[Fine]:
        """Fine for occupying a Reserved spot without authorization"""
        if vehicle is None or spot_type != SpotType.RESERVED or is_authorized:
            return None

        return Fine(
            license_plate=vehicle.license_plate,
            fine_type=FineType.UNAUTHORIZED_RESERVED,
            amount=calculate_fine(policy, 1),
            issued_at=at
        )

    @staticmethod
    def create_unpaid_balance_fine(
        license_plate: str,
        remaining_balance: Union[Decimal, float, int],
        at: datetime
    ) -> Optional[Fine]:
        """Fine carrying a settlement shortfall; None when nothing is owed"""
        remaining_balance = to_decimal(remaining_balance)
        if remaining_balance <= Decimal('0'):
            return None

        return Fine(
            license_plate=license_plate,
            fine_type=FineType.UNPAID_BALANCE,
            amount=remaining_balance,
            issued_at=at
        )

    # ========================================================================
    # LEDGER
    # ========================================================================

    def record(self, fine: Fine) -> Fine:
        """Store a new fine"""
        self.ledger.add(fine)
        self.logger.info(
            f"Fine issued: {fine.fine_type} {fine.amount:.2f} for {fine.license_plate}"
        )
        return fine

    def get_unpaid_fines(self, license_plate: str) -> List[Fine]:
        return self.ledger.find_unpaid_by_license_plate(license_plate)

    def has_unpaid_fine_of_type(self, license_plate: str, fine_type: FineType) -> bool:
        return any(f.fine_type == fine_type for f in self.get_unpaid_fines(license_plate))

    def mark_fines_paid(self, fines: Iterable[Fine]) -> List[Fine]:
        """Mark each fine paid; already-paid fines are left as they are"""
        settled = []
        for fine in fines or []:
            if fine.is_paid:
                continue
            fine.mark_paid()
            if self.ledger.exists(fine.id):
                self.ledger.update(fine)
            settled.append(fine)
        if settled:
            self.logger.debug(f"Marked {len(settled)} fine(s) as paid")
        return settled

    def total_unpaid(self, license_plate: str) -> Decimal:
        return FineManager.total_of(self.get_unpaid_fines(license_plate))

    @staticmethod
    def total_of(fines: Optional[Iterable[Fine]]) -> Decimal:
        """Sum of fine amounts; None is treated as no fines"""
        return sum((fine.amount for fine in fines or []), Decimal('0'))


# ============================================================================
# PAYMENTS
# ============================================================================

@dataclass(frozen=True)
class Receipt:
    """Value Object: Printable receipt for a settlement"""
    payment: Payment
    entry_time: Optional[datetime]
    exit_time: Optional[datetime]
    duration_hours: int

    def format_text(self) -> str:
        payment = self.payment
        lines = [
            "========================================",
            "            PAYMENT RECEIPT             ",
            "========================================",
            f"Receipt No   : {payment.payment_id}",
            f"License Plate: {payment.license_plate}",
        ]
        if payment.ticket_number:
            lines.append(f"Ticket       : {payment.ticket_number}")
        if payment.spot_id:
            lines.append(f"Spot         : {payment.spot_id}")
        lines.extend([
            f"Entry Time   : {format_timestamp(self.entry_time)}",
            f"Exit Time    : {format_timestamp(self.exit_time)}",
            f"Duration     : {self.duration_hours} hour(s)",
            "----------------------------------------",
            f"Parking Fee  : RM {payment.parking_fee:.2f}",
        ])
        if payment.fine_amount > Decimal('0'):
            lines.append(f"Fines        : RM {payment.fine_amount:.2f}")
        lines.extend([
            f"Total Amount : RM {payment.total_amount:.2f}",
            f"Amount Paid  : RM {payment.amount_paid:.2f}",
            f"Method       : {payment.payment_method}",
            "----------------------------------------",
        ])
        if payment.remaining_balance > Decimal('0'):
            lines.append(f"BALANCE DUE  : RM {payment.remaining_balance:.2f}")
            lines.append("(Recorded as an unpaid balance fine)")
        else:
            lines.append("Status : PAID IN FULL")
        lines.extend([
            f"Date         : {format_timestamp(payment.payment_date)}",
            "========================================",
        ])
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.format_text()


class PaymentProcessor:
    """Domain Service: Validates payments and builds payment records"""

    @staticmethod
    def validate_payment(
        amount_paid: Union[Decimal, float, int],
        total_due: Union[Decimal, float, int]
    ) -> bool:
        """
        Check whether a payment covers the total due
        Exact equality counts as sufficient.
        Raises: ValueError for negative amounts
        """
        amount_paid = to_decimal(amount_paid)
        total_due = to_decimal(total_due)
        if amount_paid < Decimal('0'):
            raise ValueError(f"Amount paid cannot be negative: {amount_paid}")
        if total_due < Decimal('0'):
            raise ValueError(f"Total due cannot be negative: {total_due}")
        return amount_paid >= total_due

    @staticmethod
    def calculate_remaining_balance(
        amount_paid: Union[Decimal, float, int],
        total_due: Union[Decimal, float, int]
    ) -> Decimal:
        """Shortfall, clamped at zero"""
        return max(Decimal('0'), to_decimal(total_due) - to_decimal(amount_paid))

    @staticmethod
    def is_valid_payment_method(method: Union[PaymentMethod, str, None]) -> bool:
        try:
            PaymentMethod.from_value(method)
        except ValueError:
            return False
        return True

    @staticmethod
    def create_payment(
        license_plate: str,
        parking_fee: Decimal,
        fine_amount: Decimal,
        amount_paid: Decimal,
        payment_method: PaymentMethod,
        payment_date: datetime,
        spot_id: Optional[str] = None,
        ticket_number: Optional[str] = None
    ) -> Payment:
        return Payment(
            license_plate=license_plate,
            parking_fee=parking_fee,
            fine_amount=fine_amount,
            amount_paid=amount_paid,
            payment_method=PaymentMethod.from_value(payment_method),
            payment_date=payment_date,
            spot_id=spot_id,
            ticket_number=ticket_number
        )

    @staticmethod
    def generate_receipt(
        payment: Payment,
        entry_time: Optional[datetime],
        exit_time: Optional[datetime],
        duration_hours: int
    ) -> Receipt:
        return Receipt(payment, entry_time, exit_time, duration_hours)
