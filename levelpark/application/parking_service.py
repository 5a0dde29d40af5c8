# File: levelpark/application/parking_service.py
"""
Parking Management Application Service

This module implements the application service layer of the LevelPark rule
engine. It orchestrates the domain model for the entry and exit use cases
and keeps the fine ledger, reservations and payment history.

Responsibilities:
1. Vehicle admission (validation, duplicate guard, compatibility, ticket)
2. Vehicle departure in three phases: lookup, summarize, settle
3. Fine ledger, fine policy switching and reservations
4. Best-effort mirroring to persistence and event publishing

Key Principles:
- Every rejection raises before any state changes
- All mutating use cases are serialized by a single re-entrant lock
- Persistence and event publishing are optional collaborators whose
  failures never reach the caller
- The clock is injectable so durations can be tested exactly
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Callable, Tuple, Union
from datetime import datetime
from decimal import Decimal
import logging
import threading

from ..domain.models import (
    Vehicle, ParkingSpot, Fine, Payment, Reservation, LicensePlate,
    VehicleType, SpotType, FineType, PaymentMethod,
    DomainEvent, FineIssuedEvent,
    can_park, generate_ticket_number, format_timestamp, to_decimal
)
from ..domain.aggregates import ParkingLot, AggregateFactory
from ..domain.strategies import FinePolicy, FinePolicyType
from ..domain.services import (
    FeeCalculator, FineManager, PaymentProcessor, Receipt,
    OVERSTAY_THRESHOLD_HOURS
)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ParkingServiceError(Exception):
    """Base exception for parking service errors"""
    pass


class VehicleValidationError(ParkingServiceError):
    """Exception for vehicle validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class SlotAllocationError(ParkingServiceError):
    """Exception for spot lookup and allocation errors"""

    def __init__(self, message: str, spot_id: Optional[str] = None):
        super().__init__(message)
        self.spot_id = spot_id


class IncompatibleSpotError(SlotAllocationError):
    """Exception when a vehicle may not use the requested spot type"""

    def __init__(self, message: str, spot_id: str, vehicle_type: VehicleType, spot_type: SpotType):
        super().__init__(message, spot_id)
        self.vehicle_type = vehicle_type
        self.spot_type = spot_type


class PaymentProcessingError(ParkingServiceError):
    """Exception for payment processing errors"""
    pass


class ReservationError(ParkingServiceError):
    """Exception for reservation errors"""
    pass


# ============================================================================
# RESULT OBJECTS
# ============================================================================

@dataclass
class EntryResult:
    """Outcome of a successful vehicle entry"""
    vehicle: Vehicle
    spot: ParkingSpot
    ticket_number: str
    unauthorized_fine: Optional[Fine] = None

    def ticket_display(self) -> str:
        """Printable parking ticket"""
        lines = [
            "=== PARKING TICKET ===",
            f"Ticket Number: {self.ticket_number}",
            f"License Plate: {self.vehicle.plate}",
            f"Vehicle Type: {self.vehicle.vehicle_type}",
            f"Card Holder: {'YES' if self.vehicle.is_handicapped else 'NO'}",
            f"Spot Location: {self.spot.spot_id}",
            f"Spot Type: {self.spot.spot_type}",
            f"Hourly Rate: RM {self.spot.hourly_rate:.2f}",
            f"Entry Time: {format_timestamp(self.vehicle.entry_time)}",
        ]
        if self.unauthorized_fine is not None:
            lines.extend([
                "",
                "*** WARNING ***",
                "UNAUTHORIZED RESERVED SPOT PARKING",
                f"Fine Issued: RM {self.unauthorized_fine.amount:.2f}",
                "This fine must be paid upon exit.",
            ])
        lines.append("======================")
        return "\n".join(lines)


@dataclass
class VehicleLookupResult:
    """An active vehicle and the spot it occupies"""
    vehicle: Vehicle
    spot: ParkingSpot


@dataclass
class PaymentSummary:
    """Amounts owed by a departing vehicle, computed before payment"""
    vehicle: Vehicle
    spot: ParkingSpot
    exit_time: datetime
    duration_hours: int
    parking_fee: Decimal
    unpaid_fines: List[Fine]
    total_fines: Decimal
    total_due: Decimal

    @property
    def license_plate(self) -> str:
        return self.vehicle.plate

    def display_text(self) -> str:
        lines = [
            "=== PAYMENT SUMMARY ===",
            f"License Plate: {self.vehicle.plate}",
            f"Spot: {self.spot.spot_id}",
            f"Entry Time: {format_timestamp(self.vehicle.entry_time)}",
            f"Exit Time: {format_timestamp(self.exit_time)}",
            "-----------------------",
            f"Hours Parked: {self.duration_hours}",
            f"Parking Fee: RM {self.parking_fee:.2f}",
            f"Unpaid Fines: RM {self.total_fines:.2f}",
        ]
        for fine in self.unpaid_fines:
            lines.append(f"  - {fine.fine_type}: RM {fine.amount:.2f}")
        lines.append(f"TOTAL DUE: RM {self.total_due:.2f}")
        return "\n".join(lines)


@dataclass
class ExitResult:
    """Outcome of a settlement"""
    summary: PaymentSummary
    payment: Payment
    receipt: Receipt
    payment_sufficient: bool
    remaining_balance: Decimal
    unpaid_balance_fine: Optional[Fine] = None
    settled_fines: List[Fine] = field(default_factory=list)


# ============================================================================
# MAIN PARKING SERVICE
# ============================================================================

class ParkingService:
    """
    Main application service for parking management

    This service orchestrates the use cases of the system:
    1. Vehicle entry
    2. Vehicle lookup, payment summary and settlement at exit
    3. Fine ledger and fine policy
    4. Reservation management
    5. Status monitoring

    The parking lot is owned by the service instance that receives it.
    """

    def __init__(
        self,
        parking_lot: ParkingLot,
        fine_repository=None,
        reservation_repository=None,
        payment_repository=None,
        persistence=None,
        event_publisher=None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the parking service

        Args:
            parking_lot: The lot aggregate this service operates on
            fine_repository: Fine ledger; in-memory if not provided
            reservation_repository: Reservation store; in-memory if not provided
            payment_repository: Payment history; in-memory if not provided
            persistence: Optional best-effort persistence adapter
            event_publisher: Optional domain event publisher
            clock: Callable returning the current time
        """
        self.logger = logging.getLogger(self.__class__.__name__)

        if fine_repository is None or reservation_repository is None or payment_repository is None:
            from ..infrastructure.repositories import RepositoryFactory
            fines, reservations, payments = RepositoryFactory.create_in_memory_repositories()
            if fine_repository is None:
                fine_repository = fines
            if reservation_repository is None:
                reservation_repository = reservations
            if payment_repository is None:
                payment_repository = payments

        self.parking_lot = parking_lot
        self.fine_repository = fine_repository
        self.reservation_repository = reservation_repository
        self.payment_repository = payment_repository
        self.persistence = persistence
        self.event_publisher = event_publisher
        self.clock = clock or datetime.now

        self.fine_manager = FineManager(self.fine_repository)
        self._lock = threading.RLock()
        self._pending_events: List[DomainEvent] = []

        # Service configuration
        self.config = {
            "overstay_threshold_hours": OVERSTAY_THRESHOLD_HOURS,
            "minimum_billable_hours": 1,
            "issue_reserved_fines_on_entry": True,
        }

        self.logger.info("ParkingService initialized")

    # ========================================================================
    # ENTRY
    # ========================================================================

    def enter_vehicle(
        self,
        license_plate: str,
        vehicle_type: Union[VehicleType, str, None],
        is_handicapped: bool = False,
        spot_id: Optional[str] = None
    ) -> EntryResult:
        """
        Admit a vehicle into a specific spot

        Use Case: Vehicle Entry
        1. Validate plate, vehicle type and spot id
        2. Reject a plate that is already parked anywhere in the lot
        3. Resolve the spot and check that it is available
        4. Check vehicle/spot compatibility
        5. Occupy the spot and issue the ticket

        A vehicle entering a Reserved spot without a valid reservation is
        admitted and fined.

        Returns: EntryResult
        Raises: VehicleValidationError, SlotAllocationError
        """
        with self._lock:
            plate = self._validate_plate(license_plate)
            vehicle_type = self._validate_vehicle_type(vehicle_type)
            if spot_id is None or not str(spot_id).strip():
                raise VehicleValidationError("Spot ID is required", field="spot_id")
            spot_id = str(spot_id).strip()

            active = self.parking_lot.find_active_vehicle(plate)
            if active is not None:
                raise VehicleValidationError(
                    f"Vehicle {plate} is already parked in spot {active[1].spot_id}",
                    field="license_plate"
                )

            spot = self.parking_lot.find_spot_by_id(spot_id)
            if spot is None:
                raise SlotAllocationError(f"Spot {spot_id} not found", spot_id=spot_id)
            if not spot.is_available:
                raise SlotAllocationError(f"Spot {spot_id} is not available", spot_id=spot_id)
            if not can_park(vehicle_type, is_handicapped, spot.spot_type):
                raise IncompatibleSpotError(
                    f"{vehicle_type} cannot park in {spot.spot_type} spot {spot_id}",
                    spot_id=spot_id,
                    vehicle_type=vehicle_type,
                    spot_type=spot.spot_type
                )

            now = self.clock()
            vehicle = Vehicle(plate, vehicle_type, is_handicapped, entry_time=now)
            ticket_number = generate_ticket_number(vehicle.license_plate, now)

            unauthorized_fine = None
            if spot.spot_type == SpotType.RESERVED and self.config["issue_reserved_fines_on_entry"]:
                authorized = self._has_valid_reservation(vehicle.plate, spot.spot_id, now)
                unauthorized_fine = FineManager.check_unauthorized_reserved(
                    vehicle, spot.spot_type, authorized, self.parking_lot.fine_policy, now
                )

            self.parking_lot.occupy_spot(spot, vehicle, ticket_number)
            if unauthorized_fine is not None:
                self._record_fine(unauthorized_fine)

            if self.persistence is not None:
                self.persistence.record_entry(vehicle, spot)
            self._flush_events()

            self.logger.info(
                f"Vehicle {vehicle.plate} entered spot {spot.spot_id} (Ticket: {ticket_number})"
            )
            return EntryResult(vehicle, spot, ticket_number, unauthorized_fine)

    def find_available_spots(
        self,
        vehicle_type: Union[VehicleType, str],
        is_handicapped: bool = False
    ) -> List[ParkingSpot]:
        """Spots a vehicle of this type could enter right now"""
        vehicle_type = self._validate_vehicle_type(vehicle_type)
        return self.parking_lot.find_available_spots(vehicle_type, is_handicapped)

    # ========================================================================
    # EXIT
    # ========================================================================

    def lookup_vehicle(self, license_plate: str) -> Optional[VehicleLookupResult]:
        """
        Find the active session for a plate
        Returns: VehicleLookupResult, or None if the plate is not parked
        Raises: VehicleValidationError for an empty plate
        """
        plate = self._validate_plate(license_plate)
        found = self.parking_lot.find_active_vehicle(plate)
        if found is None:
            self.logger.debug(f"No active vehicle found for {plate}")
            return None
        vehicle, spot = found
        return VehicleLookupResult(vehicle, spot)

    def generate_payment_summary(
        self,
        lookup: Union[VehicleLookupResult, str, None],
        unpaid_fines: Optional[List[Fine]] = None
    ) -> PaymentSummary:
        """
        Compute what a departing vehicle owes

        The duration is rounded up to whole hours with a minimum charge of
        one hour. A missing fine list is treated as no fines.

        Raises: VehicleValidationError when there is no active session
        """
        if isinstance(lookup, str):
            lookup = self.lookup_vehicle(lookup)
        if lookup is None:
            raise VehicleValidationError("No active parking session found", field="license_plate")

        vehicle, spot = lookup.vehicle, lookup.spot
        self._ensure_active(vehicle, spot)

        exit_time = self.clock()
        duration_hours = FeeCalculator.billable_hours(
            vehicle.entry_time, exit_time, minimum=self.config["minimum_billable_hours"]
        )
        parking_fee = FeeCalculator.calculate_parking_fee(vehicle, spot, duration_hours)
        fines = list(unpaid_fines or [])
        total_fines = FineManager.total_of(fines)
        total_due = FeeCalculator.calculate_total_amount(parking_fee, total_fines)

        self.logger.debug(
            f"Payment summary for {vehicle.plate}: {duration_hours}h, fee {parking_fee:.2f}, "
            f"fines {total_fines:.2f}, total {total_due:.2f}"
        )
        return PaymentSummary(
            vehicle=vehicle,
            spot=spot,
            exit_time=exit_time,
            duration_hours=duration_hours,
            parking_fee=parking_fee,
            unpaid_fines=fines,
            total_fines=total_fines,
            total_due=total_due
        )

    def settle(
        self,
        summary: PaymentSummary,
        amount_paid: Union[Decimal, float, int, str],
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH
    ) -> ExitResult:
        """
        Apply a payment and release the spot

        Use Case: Settlement
        1. Validate the payment and compute the remaining balance
        2. Mark every fine listed in the summary as paid
        3. Record a single unpaid-balance fine for any shortfall
        4. Vacate the spot, even on partial payment
        5. Add the amount paid to the lot revenue

        Raises: VehicleValidationError when the session already ended,
                PaymentProcessingError for invalid amounts or methods
        """
        with self._lock:
            if summary is None:
                raise VehicleValidationError("No active parking session found", field="license_plate")
            vehicle, spot = summary.vehicle, summary.spot
            self._ensure_active(vehicle, spot)

            amount_paid, payment_method = self._parse_payment(amount_paid, payment_method)
            try:
                sufficient = PaymentProcessor.validate_payment(amount_paid, summary.total_due)
            except (ValueError, ArithmeticError) as e:
                raise PaymentProcessingError(f"Invalid payment: {e}") from e

            remaining_balance = PaymentProcessor.calculate_remaining_balance(
                amount_paid, summary.total_due
            )
            ticket_number = generate_ticket_number(vehicle.license_plate, vehicle.entry_time)
            payment = PaymentProcessor.create_payment(
                license_plate=vehicle.plate,
                parking_fee=summary.parking_fee,
                fine_amount=summary.total_fines,
                amount_paid=amount_paid,
                payment_method=payment_method,
                payment_date=summary.exit_time,
                spot_id=spot.spot_id,
                ticket_number=ticket_number
            )

            vehicle.exit_time = summary.exit_time
            settled_fines = self.fine_manager.mark_fines_paid(summary.unpaid_fines)

            unpaid_balance_fine = None
            if not sufficient:
                unpaid_balance_fine = FineManager.create_unpaid_balance_fine(
                    vehicle.plate, remaining_balance, summary.exit_time
                )
                if unpaid_balance_fine is not None:
                    self._record_fine(unpaid_balance_fine)

            self.parking_lot.vacate_spot(
                spot,
                duration_hours=summary.duration_hours,
                amount_paid=amount_paid,
                remaining_balance=remaining_balance,
                at=summary.exit_time
            )
            self.parking_lot.add_revenue(amount_paid)
            self.payment_repository.add(payment)

            if self.persistence is not None:
                self.persistence.record_exit(vehicle, spot)
                self.persistence.update_revenue(self.parking_lot)
                self.persistence.save_payment(payment)
                self.persistence.mark_fines_paid(settled_fines)
            self._flush_events()

            receipt = PaymentProcessor.generate_receipt(
                payment, vehicle.entry_time, vehicle.exit_time, summary.duration_hours
            )

            if sufficient:
                self.logger.info(f"Vehicle {vehicle.plate} exited spot {spot.spot_id}, paid in full")
            else:
                self.logger.info(
                    f"Vehicle {vehicle.plate} exited spot {spot.spot_id} "
                    f"with balance {remaining_balance:.2f} outstanding"
                )

            return ExitResult(
                summary=summary,
                payment=payment,
                receipt=receipt,
                payment_sufficient=sufficient,
                remaining_balance=remaining_balance,
                unpaid_balance_fine=unpaid_balance_fine,
                settled_fines=list(summary.unpaid_fines)
            )

    def process_exit(
        self,
        license_plate: str,
        amount_paid: Union[Decimal, float, int, str],
        payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
        unpaid_fines: Optional[List[Fine]] = None,
        include_unpaid_fines: bool = False
    ) -> ExitResult:
        """
        Lookup, summarize and settle in one step

        With include_unpaid_fines the plate's outstanding fines, including a
        pending overstay fine, are collected under the same lock as the
        settlement. The payment is checked before any fine is recorded.
        """
        with self._lock:
            lookup = self.lookup_vehicle(license_plate)
            if lookup is None:
                raise VehicleValidationError("No active parking session found", field="license_plate")
            if include_unpaid_fines:
                self._parse_payment(amount_paid, payment_method)
                unpaid_fines = self.get_unpaid_fines(lookup.vehicle.plate)
            summary = self.generate_payment_summary(lookup, unpaid_fines)
            return self.settle(summary, amount_paid, payment_method)

    # ========================================================================
    # FINES
    # ========================================================================

    def get_unpaid_fines(self, license_plate: str) -> List[Fine]:
        """
        Unpaid fines for a plate
        An active vehicle past the overstay threshold is fined first, unless
        an unpaid overstay fine already exists for the plate.
        """
        with self._lock:
            plate = self._validate_plate(license_plate)
            found = self.parking_lot.find_active_vehicle(plate)
            if found is not None and not self.fine_manager.has_unpaid_fine_of_type(plate, FineType.OVERSTAY):
                overstay = FineManager.check_overstay(
                    found[0],
                    self.parking_lot.fine_policy,
                    self.clock(),
                    threshold_hours=self.config["overstay_threshold_hours"]
                )
                if overstay is not None:
                    self._record_fine(overstay)
                    self._flush_events()

            return self.fine_manager.get_unpaid_fines(plate)

    def issue_fine(
        self,
        license_plate: str,
        fine_type: Union[FineType, str],
        amount: Union[Decimal, float, int, str]
    ) -> Fine:
        """Record a fine explicitly"""
        with self._lock:
            plate = self._validate_plate(license_plate)
            try:
                if not isinstance(fine_type, FineType):
                    fine_type = FineType[str(fine_type).strip().upper()]
                fine = Fine(plate, fine_type, amount, issued_at=self.clock())
            except (KeyError, ValueError, ArithmeticError) as e:
                raise ParkingServiceError(f"Invalid fine: {e}") from e

            self._record_fine(fine)
            self._flush_events()
            return fine

    def mark_fines_paid(self, fines: List[Fine]) -> List[Fine]:
        with self._lock:
            settled = self.fine_manager.mark_fines_paid(fines)
            if self.persistence is not None:
                self.persistence.mark_fines_paid(settled)
            return settled

    def total_unpaid_fines(self, license_plate: str) -> Decimal:
        plate = self._validate_plate(license_plate)
        return self.fine_manager.total_unpaid(plate)

    def all_unpaid_fines(self) -> List[Fine]:
        return self.fine_repository.find_all_unpaid()

    def change_fine_policy(self, policy: Union[FinePolicy, FinePolicyType, str]) -> FinePolicy:
        """
        Switch the active fine policy
        The switch time is recorded as the new policy's effective-from time.
        Returns: the previous policy
        """
        with self._lock:
            if not isinstance(policy, FinePolicy):
                try:
                    policy = FinePolicy.from_name(policy)
                except ValueError as e:
                    raise ParkingServiceError(str(e)) from e

            previous = self.parking_lot.change_fine_policy(policy, self.clock())
            if self.persistence is not None:
                self.persistence.update_revenue(self.parking_lot)
            self._flush_events()
            return previous

    @property
    def fine_policy(self) -> FinePolicy:
        return self.parking_lot.fine_policy

    # ========================================================================
    # RESERVATIONS
    # ========================================================================

    def create_reservation(
        self,
        license_plate: str,
        spot_id: str,
        start_time: datetime,
        end_time: datetime,
        prepaid_amount: Union[Decimal, float, int] = Decimal('0')
    ) -> Reservation:
        """
        Book a Reserved spot for a plate
        Raises: ReservationError for unknown or non-reserved spots,
                bad time windows and overlapping bookings
        """
        with self._lock:
            spot = self.parking_lot.find_spot_by_id(spot_id)
            if spot is None:
                raise ReservationError(f"Spot {spot_id} not found")
            if spot.spot_type != SpotType.RESERVED:
                raise ReservationError(f"Spot {spot_id} is not a reserved spot")

            try:
                reservation = Reservation(
                    license_plate, spot_id, start_time, end_time,
                    prepaid_amount=prepaid_amount, created_at=self.clock()
                )
            except (ValueError, ArithmeticError) as e:
                raise ReservationError(str(e)) from e

            for existing in self.reservation_repository.find_by_spot(spot.spot_id):
                if (existing.is_active and existing.start_time < reservation.end_time
                        and reservation.start_time < existing.end_time):
                    raise ReservationError(
                        f"Spot {spot_id} is already reserved from "
                        f"{format_timestamp(existing.start_time)} to {format_timestamp(existing.end_time)}"
                    )

            self.reservation_repository.add(reservation)
            if self.persistence is not None:
                self.persistence.save_reservation(reservation)

            self.logger.info(
                f"Reservation {reservation.id} created for {reservation.license_plate} in spot {spot_id}"
            )
            return reservation

    def cancel_reservation(self, reservation_id: str) -> Reservation:
        with self._lock:
            reservation = self.reservation_repository.get(reservation_id)
            if reservation is None:
                raise ReservationError(f"Reservation {reservation_id} not found")

            reservation.cancel()
            self.reservation_repository.update(reservation)
            if self.persistence is not None:
                self.persistence.save_reservation(reservation)

            self.logger.info(f"Reservation {reservation_id} cancelled")
            return reservation

    def has_valid_reservation(
        self,
        license_plate: str,
        spot_id: str,
        at: Optional[datetime] = None
    ) -> bool:
        plate = self._validate_plate(license_plate)
        return self._has_valid_reservation(plate, spot_id, at or self.clock())

    # ========================================================================
    # QUERIES
    # ========================================================================

    def get_active_vehicles(self) -> List[VehicleLookupResult]:
        return [
            VehicleLookupResult(spot.current_vehicle, spot)
            for spot in self.parking_lot.occupied_spots()
        ]

    def get_payments(self, license_plate: Optional[str] = None) -> List[Payment]:
        if license_plate is None:
            return self.payment_repository.get_all()
        return self.payment_repository.find_by_license_plate(self._validate_plate(license_plate))

    @property
    def total_revenue(self) -> Decimal:
        return self.parking_lot.total_revenue

    def get_parking_lot_status(self) -> Dict[str, Any]:
        """Lot status report plus the outstanding fine totals"""
        status = self.parking_lot.get_status_report()
        unpaid = self.all_unpaid_fines()
        status["unpaid_fines"] = {
            "count": len(unpaid),
            "total_amount": float(FineManager.total_of(unpaid)),
        }
        return status

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _validate_plate(self, license_plate: Optional[str]) -> str:
        try:
            return LicensePlate(license_plate).value
        except ValueError as e:
            raise VehicleValidationError(str(e), field="license_plate") from e

    def _validate_vehicle_type(self, vehicle_type: Union[VehicleType, str, None]) -> VehicleType:
        if vehicle_type is None or (isinstance(vehicle_type, str) and not vehicle_type.strip()):
            raise VehicleValidationError("Vehicle type is required", field="vehicle_type")
        try:
            return VehicleType.from_value(vehicle_type)
        except ValueError as e:
            raise VehicleValidationError(str(e), field="vehicle_type") from e

    def _ensure_active(self, vehicle: Vehicle, spot: ParkingSpot) -> None:
        if not vehicle.is_active or spot.current_vehicle is not vehicle:
            raise VehicleValidationError(
                f"No active parking session for {vehicle.plate}", field="license_plate"
            )

    def _parse_payment(
        self,
        amount_paid: Union[Decimal, float, int, str],
        payment_method: Union[PaymentMethod, str]
    ) -> Tuple[Decimal, PaymentMethod]:
        try:
            amount = to_decimal(amount_paid)
            method = PaymentMethod.from_value(payment_method)
        except (ValueError, ArithmeticError) as e:
            raise PaymentProcessingError(f"Invalid payment: {e}") from e
        if amount < Decimal('0'):
            raise PaymentProcessingError(f"Invalid payment: Amount paid cannot be negative: {amount}")
        return amount, method

    def _has_valid_reservation(self, plate: str, spot_id: str, at: datetime) -> bool:
        if self.reservation_repository.find_valid_reservation(plate, spot_id, at) is not None:
            return True
        if self.persistence is not None:
            return self.persistence.find_valid_reservation(plate, spot_id, at) is not None
        return False

    def _record_fine(self, fine: Fine) -> None:
        self.fine_manager.record(fine)
        self._pending_events.append(FineIssuedEvent(fine))
        if self.persistence is not None:
            self.persistence.save_fine(fine)

    def _flush_events(self) -> None:
        """Publish the lot's pending events and the service's own"""
        events = self.parking_lot.clear_events() + self._pending_events
        self._pending_events = []
        if self.event_publisher is None:
            return
        for event in events:
            self.event_publisher.publish(event)


# ============================================================================
# SERVICE FACTORY
# ============================================================================

class ParkingServiceFactory:
    """Factory for creating parking service instances"""

    @staticmethod
    def create_default_service(lot_name: str = "Main Parking Lot") -> ParkingService:
        """Create a service over the default facility, memory only"""
        return ParkingService(AggregateFactory.create_default_parking_lot(lot_name))

    @staticmethod
    def create_service_with_config(
        config: Dict[str, Any],
        parking_lot: Optional[ParkingLot] = None
    ) -> ParkingService:
        """Create a parking service with custom configuration"""
        service = ParkingService(parking_lot or AggregateFactory.create_default_parking_lot())
        service.config.update(config)
        return service
