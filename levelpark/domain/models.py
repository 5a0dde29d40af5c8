# File: levelpark/domain/models.py
"""
Domain Models for the LevelPark facility rule engine
Following Domain-Driven Design (DDD) principles with rich domain models

This module contains:
1. Value Objects: LicensePlate and SpotId, immutable and validated
2. Enums: Vehicle, spot, status, fine and payment categories
3. Compatibility Rules: which vehicle may occupy which spot type
4. Entities: Vehicle, ParkingSpot, Fine, Reservation and the Payment record
5. Domain Events: Events raised by the parking lot aggregate
6. Utility Functions: Duration, billing-hours and ticket helpers

All models include validation and business logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Union
from datetime import datetime
from decimal import Decimal
import math
import re
import uuid
from enum import Enum


# ============================================================================
# CONSTANTS
# ============================================================================

SPOT_ID_PATTERN = re.compile(r'^F(\d+)-R(\d+)-S(\d+)$')
TICKET_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
DISPLAY_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

HANDICAPPED_RATE = Decimal('2.00')  # Card holders in handicapped spots
MINIMUM_BILLABLE_HOURS = 1


def to_decimal(value: Union[Decimal, float, int, str]) -> Decimal:
    """Convert a numeric value to Decimal without float artifacts"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# DOMAIN PRIMITIVES / VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)  # Value objects are immutable
class LicensePlate:
    """
    Value Object: Normalized license plate
    Trimmed and upper-cased so that " abc123 " and "ABC123" are the same vehicle
    """
    value: str

    def __post_init__(self):
        """Validate and normalize license plate after initialization"""
        if self.value is None or not str(self.value).strip():
            raise ValueError("License plate cannot be empty")

        object.__setattr__(self, 'value', str(self.value).strip().upper())

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SpotId:
    """
    Value Object: Composite spot key F{floor}-R{row}-S{index}
    All components are positive, 1-based integers
    """
    floor: int
    row: int
    index: int

    def __post_init__(self):
        """Validate spot coordinates"""
        for name, number in (("floor", self.floor), ("row", self.row), ("index", self.index)):
            if not isinstance(number, int) or number < 1:
                raise ValueError(f"Spot {name} must be a positive integer, got: {number}")

    @classmethod
    def parse(cls, value: str) -> 'SpotId':
        """
        Parse a spot identifier string
        Raises: ValueError if the string does not match F<n>-R<n>-S<n>
        """
        match = SPOT_ID_PATTERN.match(value or "")
        if not match:
            raise ValueError(f"Invalid spot ID format: {value!r} (expected F<floor>-R<row>-S<index>)")
        return cls(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    @staticmethod
    def is_valid(value: str) -> bool:
        """Check whether a string is a well-formed spot identifier"""
        if not isinstance(value, str):
            return False
        return SPOT_ID_PATTERN.match(value) is not None

    def __str__(self) -> str:
        return f"F{self.floor}-R{self.row}-S{self.index}"


# ============================================================================
# ENUMS FOR DOMAIN TYPES
# ============================================================================

class VehicleType(Enum):
    """
    Enumeration of vehicle categories
    The HANDICAPPED category is permitted in every spot type
    """
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    SUV_TRUCK = "suv_truck"
    HANDICAPPED = "handicapped"

    @classmethod
    def from_value(cls, value: Union['VehicleType', str]) -> 'VehicleType':
        """Resolve a vehicle type from an enum, its value or its name"""
        if isinstance(value, cls):
            return value
        text = str(getattr(value, "value", value)).strip()
        for member in cls:
            if text.lower() == member.value or text.upper() == member.name:
                return member
        raise ValueError(f"Invalid vehicle type: {value}")

    def __str__(self) -> str:
        """Human-readable string representation"""
        names = {
            VehicleType.MOTORCYCLE: "Motorcycle",
            VehicleType.CAR: "Car",
            VehicleType.SUV_TRUCK: "SUV/Truck",
            VehicleType.HANDICAPPED: "Handicapped",
        }
        return names.get(self, self.value.replace('_', ' ').title())


class SpotType(Enum):
    """
    Enumeration of parking spot types
    Each type carries a fixed hourly rate
    """
    COMPACT = "compact"
    REGULAR = "regular"
    HANDICAPPED = "handicapped"
    RESERVED = "reserved"

    @property
    def hourly_rate(self) -> Decimal:
        """Get hourly rate for this spot type"""
        rates = {
            SpotType.COMPACT: Decimal('2.00'),
            SpotType.REGULAR: Decimal('5.00'),
            SpotType.HANDICAPPED: Decimal('2.00'),
            SpotType.RESERVED: Decimal('10.00'),
        }
        return rates[self]

    @classmethod
    def from_value(cls, value: Union['SpotType', str]) -> 'SpotType':
        """Resolve a spot type from an enum, its value or its name"""
        if isinstance(value, cls):
            return value
        text = str(getattr(value, "value", value)).strip()
        for member in cls:
            if text.lower() == member.value or text.upper() == member.name:
                return member
        raise ValueError(f"Invalid spot type: {value}")

    def __str__(self) -> str:
        return self.value.title()


class SpotStatus(Enum):
    """Binary occupancy state of a spot"""
    AVAILABLE = "available"
    OCCUPIED = "occupied"


class FineType(Enum):
    """Kinds of fines that can be recorded against a plate"""
    OVERSTAY = "overstay"
    UNAUTHORIZED_RESERVED = "unauthorized_reserved"
    UNPAID_BALANCE = "unpaid_balance"

    def __str__(self) -> str:
        return self.name


class PaymentMethod(Enum):
    """Accepted payment methods"""
    CASH = "cash"
    CARD = "card"

    @classmethod
    def from_value(cls, value: Union['PaymentMethod', str]) -> 'PaymentMethod':
        """Resolve a payment method from an enum, its value or its name"""
        if isinstance(value, cls):
            return value
        text = str(getattr(value, "value", value)).strip() if value is not None else ""
        for member in cls:
            if text.lower() == member.value or text.upper() == member.name:
                return member
        raise ValueError(f"Invalid payment method: {value}")

    def __str__(self) -> str:
        return self.name


# ============================================================================
# COMPATIBILITY RULES
# ============================================================================

# Spot types each category may use when no handicapped card is presented
COMPATIBILITY_MATRIX: Dict[VehicleType, frozenset] = {
    VehicleType.MOTORCYCLE: frozenset({SpotType.COMPACT}),
    VehicleType.CAR: frozenset({SpotType.COMPACT, SpotType.REGULAR}),
    VehicleType.SUV_TRUCK: frozenset({SpotType.REGULAR}),
    VehicleType.HANDICAPPED: frozenset(SpotType),
}


def can_park(vehicle_type: VehicleType, is_handicapped: bool, spot_type: SpotType) -> bool:
    """
    Decide whether a vehicle may occupy a spot type

    A handicapped card holder may park anywhere, regardless of category.
    Otherwise the category's row of the matrix decides; anything not listed
    is denied.
    """
    if is_handicapped:
        return True
    return spot_type in COMPATIBILITY_MATRIX.get(vehicle_type, frozenset())


# ============================================================================
# DOMAIN ENTITIES
# ============================================================================

class Entity:
    """
    Base class for all domain entities
    Provides common functionality for entities with identity
    """

    def __init__(self, id: Optional[str] = None):
        self._id = id or str(uuid.uuid4())

    @property
    def id(self) -> str:
        """Get entity ID"""
        return self._id

    def __eq__(self, other: object) -> bool:
        """Entities are equal if they have the same ID and type"""
        if not isinstance(other, Entity):
            return False
        return self.id == other.id and type(self) == type(other)

    def __hash__(self) -> int:
        """Hash based on ID and type"""
        return hash((self.id, type(self).__name__))

    def __repr__(self) -> str:
        """Representation for debugging"""
        return f"{type(self).__name__}(id={self.id})"


class Vehicle(Entity):
    """
    Entity: A vehicle for the duration of one parking session
    A later entry with the same plate creates a new Vehicle instance
    """

    def __init__(
        self,
        license_plate: Union[LicensePlate, str],
        vehicle_type: VehicleType,
        is_handicapped: bool = False,
        entry_time: Optional[datetime] = None,
        exit_time: Optional[datetime] = None,
        assigned_spot_id: Optional[str] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        if not isinstance(license_plate, LicensePlate):
            license_plate = LicensePlate(license_plate)
        if not isinstance(vehicle_type, VehicleType):
            raise ValueError(f"Vehicle type must be a VehicleType, got: {vehicle_type!r}")

        self.license_plate = license_plate
        self.vehicle_type = vehicle_type
        self.is_handicapped = bool(is_handicapped)
        self.entry_time = entry_time
        self.exit_time = exit_time
        self.assigned_spot_id = assigned_spot_id

    @property
    def plate(self) -> str:
        """Get the normalized plate string"""
        return self.license_plate.value

    @property
    def is_active(self) -> bool:
        """A vehicle is active while its session has no exit time"""
        return self.entry_time is not None and self.exit_time is None

    def can_park_in(self, spot_type: SpotType) -> bool:
        """Check if vehicle can park in given spot type"""
        return can_park(self.vehicle_type, self.is_handicapped, spot_type)

    def calculate_parking_duration(self) -> int:
        """
        Get the session length in whole hours (ceiling)
        Returns 0 when entry or exit time is missing
        """
        return calculate_duration_hours(self.entry_time, self.exit_time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "license_plate": self.plate,
            "vehicle_type": self.vehicle_type.value,
            "is_handicapped": self.is_handicapped,
            "entry_time": self.entry_time.isoformat() if self.entry_time else None,
            "exit_time": self.exit_time.isoformat() if self.exit_time else None,
            "assigned_spot_id": self.assigned_spot_id,
        }

    def __str__(self) -> str:
        card = " (card holder)" if self.is_handicapped else ""
        return f"{self.vehicle_type} [{self.plate}]{card}"


class ParkingSpot(Entity):
    """
    Entity: Individual parking space identified by its F-R-S key
    Status is derived from the occupant so the two can never disagree
    """

    def __init__(self, spot_id: str, spot_type: SpotType):
        self.location = SpotId.parse(spot_id)
        super().__init__(str(self.location))
        if not isinstance(spot_type, SpotType):
            raise ValueError(f"Spot type must be a SpotType, got: {spot_type!r}")
        self.spot_type = spot_type
        self.current_vehicle: Optional[Vehicle] = None

    @property
    def spot_id(self) -> str:
        """Get the composite spot identifier"""
        return self.id

    @property
    def status(self) -> SpotStatus:
        """Occupied if and only if a vehicle is attached"""
        if self.current_vehicle is None:
            return SpotStatus.AVAILABLE
        return SpotStatus.OCCUPIED

    @property
    def is_available(self) -> bool:
        """Check whether the spot can accept a vehicle"""
        return self.current_vehicle is None

    @property
    def hourly_rate(self) -> Decimal:
        """Get hourly rate for this spot"""
        return self.spot_type.hourly_rate

    @property
    def floor_number(self) -> int:
        return self.location.floor

    @property
    def row_number(self) -> int:
        return self.location.row

    def occupy(self, vehicle: Vehicle) -> bool:
        """
        Occupy the spot with a vehicle
        Returns: True if the spot was taken, False if it was already occupied
        (the original occupant is left in place)
        """
        if not self.is_available:
            return False
        self.current_vehicle = vehicle
        vehicle.assigned_spot_id = self.spot_id
        return True

    def assign_vehicle(self, vehicle: Vehicle) -> None:
        """Attach a vehicle without the availability check (used when reloading state)"""
        self.current_vehicle = vehicle
        vehicle.assigned_spot_id = self.spot_id

    def vacate(self) -> Optional[Vehicle]:
        """
        Vacate the spot
        Returns: the vehicle that was parked, None if the spot was empty
        """
        vehicle = self.current_vehicle
        self.current_vehicle = None
        return vehicle

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "spot_id": self.spot_id,
            "floor": self.location.floor,
            "row": self.location.row,
            "index": self.location.index,
            "spot_type": self.spot_type.value,
            "status": self.status.value,
            "hourly_rate": float(self.hourly_rate),
            "license_plate": self.current_vehicle.plate if self.current_vehicle else None,
        }

    def __str__(self) -> str:
        return f"{self.spot_id} ({self.spot_type}) - {self.status.value}"


class Fine(Entity):
    """
    Entity: A fine recorded against a license plate
    Fines outlive sessions; paid is a terminal flag
    """

    def __init__(
        self,
        license_plate: Union[LicensePlate, str],
        fine_type: FineType,
        amount: Union[Decimal, float, int, str],
        issued_at: Optional[datetime] = None,
        is_paid: bool = False,
        id: Optional[str] = None
    ):
        super().__init__(id)
        if not isinstance(license_plate, LicensePlate):
            license_plate = LicensePlate(license_plate)
        self.license_plate = license_plate.value
        self.fine_type = fine_type
        self.amount = to_decimal(amount)
        self.issued_at = issued_at or datetime.now()
        self.is_paid = is_paid

        if self.amount < Decimal('0'):
            raise ValueError(f"Fine amount cannot be negative: {self.amount}")

    def mark_paid(self) -> None:
        """Mark the fine as settled"""
        self.is_paid = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "license_plate": self.license_plate,
            "fine_type": self.fine_type.value,
            "amount": float(self.amount),
            "issued_at": self.issued_at.isoformat(),
            "is_paid": self.is_paid,
        }

    def __str__(self) -> str:
        state = "paid" if self.is_paid else "unpaid"
        return f"{self.fine_type} fine of {self.amount:.2f} for {self.license_plate} ({state})"


class Reservation(Entity):
    """
    Entity: Advance booking of a reserved spot for a plate
    Valid only while active and inside its time window
    """

    def __init__(
        self,
        license_plate: Union[LicensePlate, str],
        spot_id: str,
        start_time: datetime,
        end_time: datetime,
        prepaid_amount: Union[Decimal, float, int, str] = Decimal('0'),
        is_active: bool = True,
        created_at: Optional[datetime] = None,
        id: Optional[str] = None
    ):
        super().__init__(id)
        if not isinstance(license_plate, LicensePlate):
            license_plate = LicensePlate(license_plate)
        self.license_plate = license_plate.value
        self.spot_id = str(SpotId.parse(spot_id))
        self.start_time = start_time
        self.end_time = end_time
        self.prepaid_amount = to_decimal(prepaid_amount)
        self.is_active = is_active
        self.created_at = created_at or datetime.now()
        self._validate()

    def _validate(self) -> None:
        """Validate reservation window"""
        if self.start_time is None or self.end_time is None:
            raise ValueError("Reservation start and end time are required")
        if self.end_time <= self.start_time:
            raise ValueError("Reservation end time must be after start time")
        if self.prepaid_amount < Decimal('0'):
            raise ValueError("Prepaid amount cannot be negative")

    def is_valid_at(self, moment: datetime) -> bool:
        """Check if the reservation covers the given moment"""
        return self.is_active and self.start_time <= moment <= self.end_time

    def cancel(self) -> None:
        self.is_active = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "id": self.id,
            "license_plate": self.license_plate,
            "spot_id": self.spot_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "prepaid_amount": float(self.prepaid_amount),
        }


@dataclass(frozen=True)
class Payment:
    """
    Value Object: Immutable record of a single exit transaction
    Remaining balance is never negative
    """
    license_plate: str
    parking_fee: Decimal
    fine_amount: Decimal
    amount_paid: Decimal
    payment_method: PaymentMethod
    payment_date: datetime
    spot_id: Optional[str] = None
    ticket_number: Optional[str] = None
    payment_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        """Validate payment amounts"""
        for name in ("parking_fee", "fine_amount", "amount_paid"):
            value = to_decimal(getattr(self, name))
            if value < Decimal('0'):
                raise ValueError(f"Payment {name} cannot be negative: {value}")
            object.__setattr__(self, name, value)

    @property
    def total_amount(self) -> Decimal:
        """Parking fee plus fines"""
        return self.parking_fee + self.fine_amount

    @property
    def remaining_balance(self) -> Decimal:
        """Shortfall after this payment, clamped at zero"""
        return max(Decimal('0'), self.total_amount - self.amount_paid)

    @property
    def is_sufficient(self) -> bool:
        return self.amount_paid >= self.total_amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "payment_id": self.payment_id,
            "license_plate": self.license_plate,
            "parking_fee": float(self.parking_fee),
            "fine_amount": float(self.fine_amount),
            "total_amount": float(self.total_amount),
            "amount_paid": float(self.amount_paid),
            "remaining_balance": float(self.remaining_balance),
            "payment_method": self.payment_method.value,
            "payment_date": self.payment_date.isoformat(),
            "spot_id": self.spot_id,
            "ticket_number": self.ticket_number,
        }


# ============================================================================
# DOMAIN EVENTS (for event-driven architecture)
# ============================================================================

class DomainEvent(ABC):
    """
    Base class for all domain events
    Events represent something that happened in the domain
    """

    event_type = "domain.event"

    def __init__(self, timestamp: Optional[datetime] = None):
        self.event_id = str(uuid.uuid4())
        self.timestamp = timestamp or datetime.now()
        self.version = "1.0"

    @abstractmethod
    def data(self) -> Dict[str, Any]:
        """Event payload"""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization"""
        return {
            "event_type": self.event_type,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "version": self.version,
            "data": self.data(),
        }

    def __str__(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp}"


class VehicleEnteredEvent(DomainEvent):
    """Event raised when a vehicle occupies a spot"""

    event_type = "vehicle.entered"

    def __init__(self, lot_id: str, spot_id: str, license_plate: str,
                 vehicle_type: VehicleType, ticket_number: str,
                 timestamp: Optional[datetime] = None):
        super().__init__(timestamp)
        self.lot_id = lot_id
        self.spot_id = spot_id
        self.license_plate = license_plate
        self.vehicle_type = vehicle_type
        self.ticket_number = ticket_number

    def data(self) -> Dict[str, Any]:
        return {
            "lot_id": self.lot_id,
            "spot_id": self.spot_id,
            "license_plate": self.license_plate,
            "vehicle_type": self.vehicle_type.value,
            "ticket_number": self.ticket_number,
        }


class VehicleExitedEvent(DomainEvent):
    """Event raised when a spot is vacated at settlement"""

    event_type = "vehicle.exited"

    def __init__(self, lot_id: str, spot_id: str, license_plate: str,
                 duration_hours: int, amount_paid: Decimal,
                 remaining_balance: Decimal, timestamp: Optional[datetime] = None):
        super().__init__(timestamp)
        self.lot_id = lot_id
        self.spot_id = spot_id
        self.license_plate = license_plate
        self.duration_hours = duration_hours
        self.amount_paid = amount_paid
        self.remaining_balance = remaining_balance

    def data(self) -> Dict[str, Any]:
        return {
            "lot_id": self.lot_id,
            "spot_id": self.spot_id,
            "license_plate": self.license_plate,
            "duration_hours": self.duration_hours,
            "amount_paid": float(self.amount_paid),
            "remaining_balance": float(self.remaining_balance),
        }


class FineIssuedEvent(DomainEvent):
    """Event raised when a fine is recorded"""

    event_type = "fine.issued"

    def __init__(self, fine: Fine, timestamp: Optional[datetime] = None):
        super().__init__(timestamp or fine.issued_at)
        self.fine = fine

    def data(self) -> Dict[str, Any]:
        return self.fine.to_dict()


class FinePolicyChangedEvent(DomainEvent):
    """Event raised when the active fine policy is switched"""

    event_type = "fine_policy.changed"

    def __init__(self, lot_id: str, previous_policy: str, new_policy: str,
                 effective_from: datetime):
        super().__init__(effective_from)
        self.lot_id = lot_id
        self.previous_policy = previous_policy
        self.new_policy = new_policy
        self.effective_from = effective_from

    def data(self) -> Dict[str, Any]:
        return {
            "lot_id": self.lot_id,
            "previous_policy": self.previous_policy,
            "new_policy": self.new_policy,
            "effective_from": self.effective_from.isoformat(),
        }


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def calculate_duration_hours(entry_time: Optional[datetime], exit_time: Optional[datetime]) -> int:
    """
    Whole hours between entry and exit, rounded up
    Elapsed time is counted in whole minutes first, so 61 minutes is 2 hours.
    Returns 0 if either timestamp is missing or exit precedes entry.
    """
    if entry_time is None or exit_time is None:
        return 0

    minutes = int((exit_time - entry_time).total_seconds() // 60)
    if minutes <= 0:
        return 0
    return math.ceil(minutes / 60.0)


def billable_hours(
    entry_time: Optional[datetime],
    exit_time: Optional[datetime],
    minimum: int = MINIMUM_BILLABLE_HOURS
) -> int:
    """Duration with the minimum charge applied (never zero)"""
    return max(minimum, calculate_duration_hours(entry_time, exit_time))


def generate_ticket_number(license_plate: Union[LicensePlate, str], entry_time: datetime) -> str:
    """Build the ticket string T-{PLATE}-{yyyyMMddHHmmss}"""
    if not isinstance(license_plate, LicensePlate):
        license_plate = LicensePlate(license_plate)
    return f"T-{license_plate.value}-{entry_time.strftime(TICKET_TIMESTAMP_FORMAT)}"


def format_timestamp(moment: Optional[datetime]) -> str:
    """Format a timestamp for receipts and reports"""
    if moment is None:
        return "N/A"
    return moment.strftime(DISPLAY_DATE_FORMAT)
