# File: levelpark/domain/aggregates.py
"""
Aggregate Roots for the LevelPark facility rule engine
Following Domain-Driven Design (DDD) Aggregate Pattern

Aggregates:
1. ParkingLot - Root aggregate owning floors, spots, revenue and fine policy
2. Floor - Rows of spots addressed by 1-based row and spot numbers

Key Concepts:
- The lot is passed explicitly to whoever needs it; there is no global instance
- Spots are reached through the lot, never stored elsewhere
- Spot identifiers are generated from their physical position and stay unique
- Domain events are raised for entries, exits and policy switches
"""

from dataclasses import dataclass
from typing import List, Optional, Dict, Tuple, Any, Sequence, Union
from datetime import datetime
from decimal import Decimal
import logging

from .models import (
    Entity, ParkingSpot, Vehicle, LicensePlate,
    VehicleType, SpotType, SpotId,
    DomainEvent, VehicleEnteredEvent, VehicleExitedEvent, FinePolicyChangedEvent,
    can_park, to_decimal
)
from .strategies import FinePolicy, FineCalculationContext


# ============================================================================
# BASE AGGREGATE ROOT
# ============================================================================

class AggregateRoot(Entity):
    """
    Base class for all aggregate roots
    Provides domain event collection and versioning
    """

    def __init__(self, id: Optional[str] = None):
        super().__init__(id)
        self._version: int = 1
        self._changes: List[DomainEvent] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def version(self) -> int:
        """Get current aggregate version"""
        return self._version

    def _increment_version(self) -> None:
        """Increment version after state change"""
        self._version += 1

    def _add_domain_event(self, event: DomainEvent) -> None:
        """Add a domain event to the list of changes"""
        self._changes.append(event)
        self._logger.debug(f"Added domain event: {event.__class__.__name__}")

    def clear_events(self) -> List[DomainEvent]:
        """Clear and return all domain events"""
        events = self._changes.copy()
        self._changes.clear()
        return events

    @property
    def has_changes(self) -> bool:
        """Check if aggregate has pending domain events"""
        return len(self._changes) > 0

    def _validate_invariants(self) -> None:
        """Validate aggregate invariants - to be overridden by subclasses"""
        pass


# ============================================================================
# FLOOR
# ============================================================================

@dataclass(frozen=True)
class RowConfiguration:
    """Value Object: Declared spot count and spot types of one row"""
    spot_count: int
    spot_types: Tuple[SpotType, ...]

    def __post_init__(self):
        object.__setattr__(self, 'spot_types', tuple(self.spot_types))
        if self.spot_count < 1:
            raise ValueError("A row must contain at least one spot")

    @classmethod
    def of(cls, *spot_types: SpotType) -> 'RowConfiguration':
        """Row whose count is taken from the type list"""
        return cls(len(spot_types), spot_types)

    @classmethod
    def uniform(cls, spot_type: SpotType, count: int) -> 'RowConfiguration':
        return cls(count, (spot_type,) * count)


class Floor:
    """
    A level of the facility
    Rows are 1-based; row N is rows[N - 1]
    """

    def __init__(self, floor_number: int):
        if not isinstance(floor_number, int) or floor_number < 1:
            raise ValueError(f"Floor number must be a positive integer, got: {floor_number}")
        self.floor_number = floor_number
        self.rows: List[List[ParkingSpot]] = []

    def create_row(
        self,
        row_number: int,
        spot_count: int,
        spot_types: Sequence[SpotType]
    ) -> List[ParkingSpot]:
        """
        Generate one spot per entry of spot_types, in order
        Spot ids are F{floor}-R{row}-S{1..n}.
        Raises: ValueError if spot_count does not match the type list
        """
        spot_types = list(spot_types)
        if spot_count != len(spot_types):
            raise ValueError("Number of spot types must match number of spots in row")
        if not isinstance(row_number, int) or row_number < 1:
            raise ValueError(f"Row number must be a positive integer, got: {row_number}")
        if row_number <= len(self.rows) and self.rows[row_number - 1]:
            raise ValueError(f"Row {row_number} already exists on floor {self.floor_number}")

        row = [
            ParkingSpot(str(SpotId(self.floor_number, row_number, index)), spot_type)
            for index, spot_type in enumerate(spot_types, start=1)
        ]

        while len(self.rows) < row_number:
            self.rows.append([])
        self.rows[row_number - 1] = row
        return row

    def get_row(self, row_number: int) -> List[ParkingSpot]:
        if row_number < 1 or row_number > len(self.rows):
            return []
        return list(self.rows[row_number - 1])

    @property
    def spots(self) -> List[ParkingSpot]:
        """All spots in row, then spot order"""
        return [spot for row in self.rows for spot in row]

    @property
    def total_spots(self) -> int:
        return sum(len(row) for row in self.rows)

    @property
    def available_count(self) -> int:
        return sum(1 for spot in self.spots if spot.is_available)

    @property
    def occupied_count(self) -> int:
        return self.total_spots - self.available_count

    def find_spot_by_id(self, spot_id: str) -> Optional[ParkingSpot]:
        for spot in self.spots:
            if spot.spot_id == spot_id:
                return spot
        return None

    def __repr__(self) -> str:
        return f"Floor(number={self.floor_number}, spots={self.total_spots})"


# ============================================================================
# PARKING LOT AGGREGATE
# ============================================================================

class ParkingLot(AggregateRoot):
    """
    Aggregate Root: The facility with its floors, revenue and fine policy
    Enforces spot id uniqueness and format after every structural change
    """

    def __init__(
        self,
        name: str,
        fine_context: Optional[FineCalculationContext] = None,
        total_revenue: Union[Decimal, float, int] = Decimal('0.00'),
        id: Optional[str] = None
    ):
        super().__init__(id)
        if not name or not name.strip():
            raise ValueError("Parking lot name cannot be empty")

        self.name = name.strip()
        self.fine_context = fine_context or FineCalculationContext()
        self._floors: List[Floor] = []
        self._total_revenue = to_decimal(total_revenue)
        self.creation_date: datetime = datetime.now()

        if self._total_revenue < Decimal('0'):
            raise ValueError("Total revenue cannot be negative")

        self._logger.info(f"Created ParkingLot: {self.name} (ID: {self.id})")

    # ========================================================================
    # STRUCTURE
    # ========================================================================

    @property
    def floors(self) -> List[Floor]:
        """Floors in insertion order"""
        return list(self._floors)

    def create_floor(
        self,
        floor_number: int,
        row_configurations: Sequence[RowConfiguration] = ()
    ) -> Floor:
        """
        Create a floor and its rows
        Rows are numbered 1..n in the order given.
        Raises: ValueError on a duplicate floor number or a bad row configuration
        """
        if self.get_floor(floor_number) is not None:
            raise ValueError(f"Floor {floor_number} already exists in {self.name}")

        floor = Floor(floor_number)
        for row_number, config in enumerate(row_configurations, start=1):
            floor.create_row(row_number, config.spot_count, config.spot_types)

        self.add_floor(floor)
        return floor

    def add_floor(self, floor: Floor) -> None:
        """Attach an already built floor (used when reloading a stored lot)"""
        if self.get_floor(floor.floor_number) is not None:
            raise ValueError(f"Floor {floor.floor_number} already exists in {self.name}")

        self._floors.append(floor)
        self._validate_invariants()
        self._increment_version()
        self._logger.debug(f"Added floor {floor.floor_number} with {floor.total_spots} spots")

    def get_floor(self, floor_number: int) -> Optional[Floor]:
        for floor in self._floors:
            if floor.floor_number == floor_number:
                return floor
        return None

    def _validate_invariants(self) -> None:
        """Validate aggregate invariants"""
        if not self.validate_spot_id_format():
            raise ValueError("Spot identifiers must match F<floor>-R<row>-S<index>")
        if not self.validate_unique_spot_ids():
            raise ValueError("Duplicate spot identifiers detected")

    def validate_unique_spot_ids(self) -> bool:
        """Check that no two spots share an identifier"""
        ids = [spot.spot_id for spot in self.all_spots()]
        return len(ids) == len(set(ids))

    def validate_spot_id_format(self) -> bool:
        """Check that every spot identifier is well-formed"""
        return all(SpotId.is_valid(spot.spot_id) for spot in self.all_spots())

    # ========================================================================
    # QUERIES
    # ========================================================================

    def all_spots(self) -> List[ParkingSpot]:
        """All spots in floor, row, spot order"""
        return [spot for floor in self._floors for spot in floor.spots]

    def find_spot_by_id(self, spot_id: str) -> Optional[ParkingSpot]:
        """Linear lookup across all floors; None when absent"""
        if not spot_id:
            return None
        for floor in self._floors:
            spot = floor.find_spot_by_id(spot_id)
            if spot is not None:
                return spot
        return None

    def find_available_spots(
        self,
        vehicle_type: VehicleType,
        is_handicapped: bool = False
    ) -> List[ParkingSpot]:
        """
        Available spots a vehicle of this type and card status may use
        Returns exactly the spots that are free and compatible.
        """
        return [
            spot for spot in self.all_spots()
            if spot.is_available and can_park(vehicle_type, is_handicapped, spot.spot_type)
        ]

    def find_available_spots_for_vehicle(self, vehicle: Vehicle) -> List[ParkingSpot]:
        return self.find_available_spots(vehicle.vehicle_type, vehicle.is_handicapped)

    def find_active_vehicle(
        self,
        license_plate: Union[LicensePlate, str]
    ) -> Optional[Tuple[Vehicle, ParkingSpot]]:
        """
        Find the vehicle currently parked under a plate
        Returns: (vehicle, spot) or None
        """
        if not isinstance(license_plate, LicensePlate):
            license_plate = LicensePlate(license_plate)

        for spot in self.all_spots():
            vehicle = spot.current_vehicle
            if vehicle is not None and vehicle.license_plate == license_plate:
                return vehicle, spot
        return None

    def is_vehicle_parked(self, license_plate: Union[LicensePlate, str]) -> bool:
        return self.find_active_vehicle(license_plate) is not None

    def occupied_spots(self) -> List[ParkingSpot]:
        return [spot for spot in self.all_spots() if not spot.is_available]

    @property
    def total_spots(self) -> int:
        return sum(floor.total_spots for floor in self._floors)

    @property
    def occupied_count(self) -> int:
        return len(self.occupied_spots())

    @property
    def available_count(self) -> int:
        return self.total_spots - self.occupied_count

    @property
    def occupancy_rate(self) -> float:
        """Occupied share of all spots, as a percentage"""
        if self.total_spots == 0:
            return 0.0
        return self.occupied_count * 100.0 / self.total_spots

    # ========================================================================
    # OCCUPANCY TRANSITIONS
    # ========================================================================

    def occupy_spot(self, spot: ParkingSpot, vehicle: Vehicle, ticket_number: str) -> bool:
        """
        Put a vehicle in one of this lot's spots
        Returns: False without changing anything if the spot is occupied
        """
        if self.find_spot_by_id(spot.spot_id) is not spot:
            raise ValueError(f"Spot {spot.spot_id} does not belong to {self.name}")

        if not spot.occupy(vehicle):
            return False

        self._increment_version()
        self._add_domain_event(VehicleEnteredEvent(
            lot_id=self.id,
            spot_id=spot.spot_id,
            license_plate=vehicle.plate,
            vehicle_type=vehicle.vehicle_type,
            ticket_number=ticket_number,
            timestamp=vehicle.entry_time
        ))
        return True

    def vacate_spot(
        self,
        spot: ParkingSpot,
        duration_hours: int = 0,
        amount_paid: Decimal = Decimal('0'),
        remaining_balance: Decimal = Decimal('0'),
        at: Optional[datetime] = None
    ) -> Optional[Vehicle]:
        """
        Release a spot
        Returns: the vehicle that occupied it, None if it was already free
        """
        vehicle = spot.vacate()
        if vehicle is None:
            self._logger.warning(f"Spot {spot.spot_id} is not occupied")
            return None

        self._increment_version()
        self._add_domain_event(VehicleExitedEvent(
            lot_id=self.id,
            spot_id=spot.spot_id,
            license_plate=vehicle.plate,
            duration_hours=duration_hours,
            amount_paid=amount_paid,
            remaining_balance=remaining_balance,
            timestamp=at
        ))
        return vehicle

    # ========================================================================
    # REVENUE AND FINE POLICY
    # ========================================================================

    @property
    def total_revenue(self) -> Decimal:
        return self._total_revenue

    def add_revenue(self, amount: Union[Decimal, float, int]) -> None:
        """Accumulate collected money; revenue never decreases"""
        amount = to_decimal(amount)
        if amount < Decimal('0'):
            raise ValueError(f"Revenue amount cannot be negative: {amount}")
        self._total_revenue += amount
        self._increment_version()

    def reset_revenue(self) -> None:
        """Zero the revenue counter (test and maintenance use only)"""
        self._total_revenue = Decimal('0.00')
        self._increment_version()

    @property
    def fine_policy(self) -> FinePolicy:
        return self.fine_context.policy

    def change_fine_policy(self, policy: FinePolicy, at: Optional[datetime] = None) -> FinePolicy:
        """
        Switch the active fine policy
        Returns: the previous policy
        """
        at = at or datetime.now()
        previous = self.fine_context.set_policy(policy, at)

        self._increment_version()
        self._add_domain_event(FinePolicyChangedEvent(
            lot_id=self.id,
            previous_policy=previous.get_strategy_name(),
            new_policy=policy.get_strategy_name(),
            effective_from=at
        ))
        return previous

    # ========================================================================
    # REPORTING
    # ========================================================================

    def get_status_report(self) -> Dict[str, Any]:
        """Snapshot of occupancy, revenue and policy"""
        by_type: Dict[str, Dict[str, int]] = {}
        for spot_type in SpotType:
            spots = [spot for spot in self.all_spots() if spot.spot_type == spot_type]
            available = sum(1 for spot in spots if spot.is_available)
            by_type[spot_type.value] = {
                "total": len(spots),
                "available": available,
                "occupied": len(spots) - available,
            }

        return {
            "lot_id": self.id,
            "name": self.name,
            "total_spots": self.total_spots,
            "available_spots": self.available_count,
            "occupied_spots": self.occupied_count,
            "occupancy_rate": round(self.occupancy_rate, 2),
            "total_revenue": float(self._total_revenue),
            "fine_policy": self.fine_context.current_policy_name,
            "fine_policy_effective_from": self.fine_context.effective_from.isoformat(),
            "floors": [
                {
                    "floor": floor.floor_number,
                    "total_spots": floor.total_spots,
                    "available": floor.available_count,
                    "occupied": floor.occupied_count,
                }
                for floor in self._floors
            ],
            "spot_types": by_type,
        }

    def __str__(self) -> str:
        return (
            f"{self.name}: {self.available_count}/{self.total_spots} available "
            f"across {len(self._floors)} floors"
        )


# ============================================================================
# AGGREGATE FACTORY
# ============================================================================

class AggregateFactory:
    """Factory for creating aggregates with proper initialization"""

    DEFAULT_FLOOR_COUNT = 5
    DEFAULT_ROWS = (
        RowConfiguration.uniform(SpotType.COMPACT, 5),
        RowConfiguration.uniform(SpotType.REGULAR, 5),
        RowConfiguration.of(
            SpotType.HANDICAPPED, SpotType.HANDICAPPED,
            SpotType.RESERVED, SpotType.RESERVED,
            SpotType.REGULAR
        ),
    )

    @staticmethod
    def create_parking_lot(
        name: str,
        floor_layouts: Sequence[Sequence[RowConfiguration]],
        fine_policy: Optional[FinePolicy] = None
    ) -> ParkingLot:
        """Create a lot with floors 1..n, one layout per floor"""
        lot = ParkingLot(name=name, fine_context=FineCalculationContext(fine_policy))
        for floor_number, rows in enumerate(floor_layouts, start=1):
            lot.create_floor(floor_number, rows)
        return lot

    @staticmethod
    def create_default_parking_lot(
        name: str = "Main Parking Lot",
        fine_policy: Optional[FinePolicy] = None
    ) -> ParkingLot:
        """
        Default facility: 5 floors, each with 3 rows of 5 spots
        Row 1 Compact, row 2 Regular, row 3 Handicapped x2, Reserved x2, Regular
        """
        layouts = [AggregateFactory.DEFAULT_ROWS] * AggregateFactory.DEFAULT_FLOOR_COUNT
        return AggregateFactory.create_parking_lot(name, layouts, fine_policy)
