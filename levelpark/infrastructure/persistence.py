# File: levelpark/infrastructure/persistence.py
"""
Best-effort persistence for the LevelPark rule engine

The rule engine keeps working when the database is missing or failing. All
database access from the application layer goes through PersistenceAdapter,
which runs each call in its own unit of work, logs database failures (and
records missing from the database) as warnings and returns a neutral value
instead of raising.

Neutral values:
- None for lookups of single objects
- False for writes
- [] for lookups of collections
"""

from typing import Optional, List, Callable, Any, Iterable
from datetime import datetime
import logging

from sqlalchemy.exc import SQLAlchemyError

from ..domain.models import Vehicle, ParkingSpot, Fine, Payment, Reservation
from ..domain.aggregates import ParkingLot
from .repositories import RepositoryFactory, UnitOfWork


class PersistenceAdapter:
    """
    Single entry point for mirroring rule engine state to a database

    Created disabled; initialize() connects and creates the tables. When
    initialization fails the adapter stays disabled and every call is a
    no-op returning its neutral value (memory-only mode).
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        uow_factory: Optional[Callable[[], UnitOfWork]] = None
    ):
        self.database_url = database_url
        self._uow_factory = uow_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def enabled(self) -> bool:
        return self._uow_factory is not None

    def initialize(self) -> bool:
        """
        Connect to the database and create missing tables
        Returns: True when persistence is available
        """
        if self.enabled:
            return True
        if not self.database_url:
            self._logger.warning("No database URL configured, running in memory-only mode")
            return False

        try:
            uow_factory = RepositoryFactory.create_sqlalchemy_uow_factory(self.database_url)
        except (SQLAlchemyError, ImportError) as e:
            self._logger.warning(f"Database unavailable, running in memory-only mode: {e}")
            return False

        self._uow_factory = uow_factory
        self._logger.info(f"Persistence initialized ({self.database_url})")
        return True

    def disable(self) -> None:
        self._uow_factory = None

    def _run(self, action: str, operation: Callable[[UnitOfWork], Any], default: Any = None) -> Any:
        """Run one operation in its own unit of work, swallowing database errors"""
        if not self.enabled:
            return default
        try:
            with self._uow_factory() as uow:
                result = operation(uow)
            self._logger.debug(f"Persisted: {action}")
            return result
        except (SQLAlchemyError, ValueError) as e:
            self._logger.warning(f"Failed to {action}, continuing in memory: {e}")
            return default

    # ========================================================================
    # PARKING LOT
    # ========================================================================

    def load_lot(self) -> Optional[ParkingLot]:
        """The stored lot with active vehicles re-attached, or None"""
        return self._run("load parking lot", lambda uow: uow.parking_lots.find_first())

    def save_lot(self, lot: ParkingLot) -> bool:
        def operation(uow):
            uow.parking_lots.save_structure(lot)
            return True
        return self._run(f"save parking lot {lot.name}", operation, False)

    def update_revenue(self, lot: ParkingLot) -> bool:
        """Store the lot's revenue counter and active fine policy"""
        def operation(uow):
            uow.parking_lots.update_state(lot)
            return True
        return self._run("update lot revenue", operation, False)

    # ========================================================================
    # VEHICLES
    # ========================================================================

    def record_entry(self, vehicle: Vehicle, spot: ParkingSpot) -> bool:
        def operation(uow):
            uow.vehicles.add(vehicle)
            uow.parking_spots.update_status(spot)
            return True
        return self._run(f"record entry of {vehicle.plate}", operation, False)

    def record_exit(self, vehicle: Vehicle, spot: ParkingSpot) -> bool:
        def operation(uow):
            uow.vehicles.record_exit(vehicle)
            uow.parking_spots.update_status(spot)
            return True
        return self._run(f"record exit of {vehicle.plate}", operation, False)

    # ========================================================================
    # FINES, PAYMENTS AND RESERVATIONS
    # ========================================================================

    def save_fine(self, fine: Fine) -> bool:
        def operation(uow):
            uow.fines.save(fine)
            return True
        return self._run(f"save fine {fine.id}", operation, False)

    def mark_fines_paid(self, fines: Iterable[Fine]) -> bool:
        fine_ids = [fine.id for fine in fines or []]
        if not fine_ids:
            return True

        def operation(uow):
            uow.fines.mark_paid(fine_ids)
            return True
        return self._run(f"mark {len(fine_ids)} fine(s) paid", operation, False)

    def find_unpaid_fines(self, license_plate: Optional[str] = None) -> List[Fine]:
        """Unpaid fines for one plate, or all unpaid fines"""
        if license_plate is None:
            return self._run("load unpaid fines", lambda uow: uow.fines.find_all_unpaid(), [])
        return self._run(
            f"load unpaid fines for {license_plate}",
            lambda uow: uow.fines.find_unpaid_by_license_plate(license_plate),
            []
        )

    def save_payment(self, payment: Payment) -> bool:
        def operation(uow):
            uow.payments.add(payment)
            return True
        return self._run(f"save payment {payment.payment_id}", operation, False)

    def save_reservation(self, reservation: Reservation) -> bool:
        def operation(uow):
            uow.reservations.save(reservation)
            return True
        return self._run(f"save reservation {reservation.id}", operation, False)

    def find_valid_reservation(
        self,
        license_plate: str,
        spot_id: str,
        at: datetime
    ) -> Optional[Reservation]:
        return self._run(
            "look up reservation",
            lambda uow: uow.reservations.find_valid_reservation(license_plate, spot_id, at)
        )
