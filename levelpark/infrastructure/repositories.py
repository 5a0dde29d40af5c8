# File: levelpark/infrastructure/repositories.py
"""
Repository Pattern Implementation for the LevelPark rule engine

This module implements the Repository Pattern for data persistence.
Repositories provide a collection-like interface for accessing domain objects
while abstracting the underlying data storage implementation.

Key Benefits:
- Decouples domain layer from data layer
- Provides a consistent interface for data access
- Enables easy swapping of storage implementations
- Supports unit testing with in-memory repositories

Repository Types:
1. Aggregate Repository - ParkingLot with its floors, spots and parked vehicles
2. Entity Repositories - ParkingSpot, Vehicle, Fine, Reservation
3. Record Repository - Payment

Storage Implementations:
- InMemory*Repository - Used by the rule engine itself and in tests
- SQLAlchemy repositories - For relational databases
"""

from abc import ABC, abstractmethod
from typing import (
    Type, TypeVar, Generic, Optional, List, Dict, Any, Callable, Tuple
)
from datetime import datetime
from decimal import Decimal
import logging
from uuid import uuid4

from sqlalchemy import (
    create_engine, Column, Integer, String, Boolean,
    DateTime, ForeignKey, DECIMAL, UniqueConstraint, func
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.pool import StaticPool

from ..domain.models import (
    Vehicle, ParkingSpot, Fine, Payment, Reservation,
    VehicleType, SpotType, FineType, PaymentMethod
)
from ..domain.aggregates import ParkingLot, Floor
from ..domain.strategies import FinePolicy, FineCalculationContext

# Type variables for generic repositories
T = TypeVar('T')  # Entity type
ID = TypeVar('ID')  # ID type


# ============================================================================
# REPOSITORY INTERFACES
# ============================================================================

class Repository(ABC, Generic[T, ID]):
    """Base repository interface"""

    @abstractmethod
    def add(self, entity: T) -> T:
        """Add an entity to the repository"""
        pass

    @abstractmethod
    def get(self, id: ID) -> Optional[T]:
        """Get an entity by ID"""
        pass

    @abstractmethod
    def get_all(self, skip: int = 0, limit: int = 100) -> List[T]:
        """Get all entities with pagination"""
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        """Update an entity"""
        pass

    @abstractmethod
    def delete(self, id: ID) -> bool:
        """Delete an entity by ID"""
        pass

    @abstractmethod
    def exists(self, id: ID) -> bool:
        """Check if an entity exists"""
        pass

    @abstractmethod
    def count(self) -> int:
        """Count all entities"""
        pass


# ============================================================================
# UNIT OF WORK PATTERN
# ============================================================================

class UnitOfWork(ABC):
    """Unit of Work pattern for transaction management"""

    @abstractmethod
    def __enter__(self):
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self):
        """Commit the transaction"""
        pass

    @abstractmethod
    def rollback(self):
        """Rollback the transaction"""
        pass

    @property
    @abstractmethod
    def parking_lots(self) -> 'ParkingLotRepository':
        pass

    @property
    @abstractmethod
    def parking_spots(self) -> 'ParkingSpotRepository':
        pass

    @property
    @abstractmethod
    def vehicles(self) -> 'VehicleRepository':
        pass

    @property
    @abstractmethod
    def fines(self) -> 'FineRepository':
        pass

    @property
    @abstractmethod
    def payments(self) -> 'PaymentRepository':
        pass

    @property
    @abstractmethod
    def reservations(self) -> 'ReservationRepository':
        pass


# ============================================================================
# SQLALCHEMY ORM MODELS
# ============================================================================

Base = declarative_base()


class ParkingLotModel(Base):
    """SQLAlchemy model for ParkingLot"""
    __tablename__ = 'parking_lots'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(100), nullable=False)
    total_revenue = Column(DECIMAL(12, 2), nullable=False, default=Decimal('0.00'))
    fine_policy = Column(String(20), nullable=False, default='FIXED')
    policy_effective_from = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class ParkingSpotModel(Base):
    """SQLAlchemy model for ParkingSpot"""
    __tablename__ = 'parking_spots'

    id = Column(String(20), primary_key=True)  # F{floor}-R{row}-S{index}
    parking_lot_id = Column(String(36), ForeignKey('parking_lots.id'), index=True)
    floor_number = Column(Integer, nullable=False)
    row_number = Column(Integer, nullable=False)
    spot_index = Column(Integer, nullable=False)
    spot_type = Column(String(20), nullable=False)

    # Occupancy
    status = Column(String(20), nullable=False, default='available')
    occupied_by = Column(String(20))  # License plate

    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        UniqueConstraint('floor_number', 'row_number', 'spot_index', name='uq_spot_position'),
    )


class VehicleModel(Base):
    """SQLAlchemy model for a vehicle parking session"""
    __tablename__ = 'vehicles'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    license_plate = Column(String(20), nullable=False, index=True)
    vehicle_type = Column(String(20), nullable=False)
    is_handicapped = Column(Boolean, default=False)
    entry_time = Column(DateTime)
    exit_time = Column(DateTime)
    spot_id = Column(String(20), ForeignKey('parking_spots.id'), index=True)


class FineModel(Base):
    """SQLAlchemy model for Fine"""
    __tablename__ = 'fines'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    license_plate = Column(String(20), nullable=False, index=True)
    fine_type = Column(String(30), nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)
    issued_at = Column(DateTime, nullable=False, default=datetime.now)
    is_paid = Column(Boolean, nullable=False, default=False)


class PaymentModel(Base):
    """SQLAlchemy model for Payment"""
    __tablename__ = 'payments'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    license_plate = Column(String(20), nullable=False, index=True)
    parking_fee = Column(DECIMAL(10, 2), nullable=False)
    fine_amount = Column(DECIMAL(10, 2), nullable=False)
    total_amount = Column(DECIMAL(10, 2), nullable=False)
    amount_paid = Column(DECIMAL(10, 2), nullable=False)
    remaining_balance = Column(DECIMAL(10, 2), nullable=False)
    payment_method = Column(String(10), nullable=False)
    payment_date = Column(DateTime, nullable=False)
    spot_id = Column(String(20))
    ticket_number = Column(String(50))


class ReservationModel(Base):
    """SQLAlchemy model for Reservation"""
    __tablename__ = 'reservations'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    license_plate = Column(String(20), nullable=False, index=True)
    spot_id = Column(String(20), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)
    prepaid_amount = Column(DECIMAL(10, 2), nullable=False, default=Decimal('0.00'))


# ============================================================================
# DOMAIN <-> ORM MAPPERS
# ============================================================================

class Mapper:
    """Maps between domain models and ORM models"""

    @staticmethod
    def parking_spot_to_orm(spot: ParkingSpot, parking_lot_id: Optional[str] = None) -> ParkingSpotModel:
        """Map ParkingSpot domain model to ORM model"""
        return ParkingSpotModel(
            id=spot.spot_id,
            parking_lot_id=parking_lot_id,
            floor_number=spot.location.floor,
            row_number=spot.location.row,
            spot_index=spot.location.index,
            spot_type=spot.spot_type.value,
            status=spot.status.value,
            occupied_by=spot.current_vehicle.plate if spot.current_vehicle else None
        )

    @staticmethod
    def parking_spot_to_domain(model: ParkingSpotModel) -> ParkingSpot:
        """Map ORM model to ParkingSpot (without its occupant)"""
        return ParkingSpot(model.id, SpotType(model.spot_type))

    @staticmethod
    def vehicle_to_orm(vehicle: Vehicle) -> VehicleModel:
        return VehicleModel(
            id=vehicle.id,
            license_plate=vehicle.plate,
            vehicle_type=vehicle.vehicle_type.value,
            is_handicapped=vehicle.is_handicapped,
            entry_time=vehicle.entry_time,
            exit_time=vehicle.exit_time,
            spot_id=vehicle.assigned_spot_id
        )

    @staticmethod
    def vehicle_to_domain(model: VehicleModel) -> Vehicle:
        return Vehicle(
            id=model.id,
            license_plate=model.license_plate,
            vehicle_type=VehicleType(model.vehicle_type),
            is_handicapped=bool(model.is_handicapped),
            entry_time=model.entry_time,
            exit_time=model.exit_time,
            assigned_spot_id=model.spot_id
        )

    @staticmethod
    def fine_to_orm(fine: Fine) -> FineModel:
        return FineModel(
            id=fine.id,
            license_plate=fine.license_plate,
            fine_type=fine.fine_type.value,
            amount=fine.amount,
            issued_at=fine.issued_at,
            is_paid=fine.is_paid
        )

    @staticmethod
    def fine_to_domain(model: FineModel) -> Fine:
        return Fine(
            id=model.id,
            license_plate=model.license_plate,
            fine_type=FineType(model.fine_type),
            amount=model.amount,
            issued_at=model.issued_at,
            is_paid=bool(model.is_paid)
        )

    @staticmethod
    def payment_to_orm(payment: Payment) -> PaymentModel:
        return PaymentModel(
            id=payment.payment_id,
            license_plate=payment.license_plate,
            parking_fee=payment.parking_fee,
            fine_amount=payment.fine_amount,
            total_amount=payment.total_amount,
            amount_paid=payment.amount_paid,
            remaining_balance=payment.remaining_balance,
            payment_method=payment.payment_method.value,
            payment_date=payment.payment_date,
            spot_id=payment.spot_id,
            ticket_number=payment.ticket_number
        )

    @staticmethod
    def payment_to_domain(model: PaymentModel) -> Payment:
        return Payment(
            payment_id=model.id,
            license_plate=model.license_plate,
            parking_fee=model.parking_fee,
            fine_amount=model.fine_amount,
            amount_paid=model.amount_paid,
            payment_method=PaymentMethod(model.payment_method),
            payment_date=model.payment_date,
            spot_id=model.spot_id,
            ticket_number=model.ticket_number
        )

    @staticmethod
    def reservation_to_orm(reservation: Reservation) -> ReservationModel:
        return ReservationModel(
            id=reservation.id,
            license_plate=reservation.license_plate,
            spot_id=reservation.spot_id,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            is_active=reservation.is_active,
            created_at=reservation.created_at,
            prepaid_amount=reservation.prepaid_amount
        )

    @staticmethod
    def reservation_to_domain(model: ReservationModel) -> Reservation:
        return Reservation(
            id=model.id,
            license_plate=model.license_plate,
            spot_id=model.spot_id,
            start_time=model.start_time,
            end_time=model.end_time,
            prepaid_amount=model.prepaid_amount,
            is_active=bool(model.is_active),
            created_at=model.created_at
        )

    @staticmethod
    def parking_lot_to_orm(lot: ParkingLot) -> ParkingLotModel:
        """Map the lot's own columns; floors and spots are stored as spots"""
        return ParkingLotModel(
            id=lot.id,
            name=lot.name,
            total_revenue=lot.total_revenue,
            fine_policy=lot.fine_context.current_policy_name,
            policy_effective_from=lot.fine_context.effective_from
        )

    @staticmethod
    def parking_lot_to_domain(
        model: ParkingLotModel,
        spot_models: List[ParkingSpotModel],
        active_vehicles: List[Vehicle]
    ) -> ParkingLot:
        """
        Rebuild a lot from its stored spots
        Floors and rows are recreated in number order and active vehicles
        are re-attached to the spots they occupy.
        """
        context = FineCalculationContext(
            FinePolicy.from_name(model.fine_policy or 'FIXED'),
            model.policy_effective_from
        )
        lot = ParkingLot(
            name=model.name,
            fine_context=context,
            total_revenue=model.total_revenue or Decimal('0.00'),
            id=model.id
        )

        layout: Dict[int, Dict[int, List[ParkingSpotModel]]] = {}
        for spot_model in spot_models:
            layout.setdefault(spot_model.floor_number, {}).setdefault(
                spot_model.row_number, []
            ).append(spot_model)

        for floor_number in sorted(layout):
            floor = Floor(floor_number)
            for row_number in sorted(layout[floor_number]):
                row = sorted(layout[floor_number][row_number], key=lambda s: s.spot_index)
                floor.create_row(row_number, len(row), [SpotType(s.spot_type) for s in row])
            lot.add_floor(floor)

        for vehicle in active_vehicles:
            spot = lot.find_spot_by_id(vehicle.assigned_spot_id)
            if spot is not None and spot.is_available:
                spot.assign_vehicle(vehicle)

        lot.clear_events()
        return lot


# ============================================================================
# IN-MEMORY REPOSITORIES
# ============================================================================

class InMemoryRepository(Repository[T, str]):
    """In-memory repository keyed by entity id"""

    id_attribute = 'id'

    def __init__(self):
        self._storage: Dict[str, T] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def _id_of(self, entity: T) -> str:
        return getattr(entity, self.id_attribute)

    def add(self, entity: T) -> T:
        entity_id = self._id_of(entity)
        self._storage[entity_id] = entity
        self._logger.debug(f"Added entity {entity_id}")
        return entity

    def get(self, id: str) -> Optional[T]:
        return self._storage.get(id)

    def get_all(self, skip: int = 0, limit: Optional[int] = None) -> List[T]:
        items = list(self._storage.values())
        if limit is None:
            return items[skip:]
        return items[skip:skip + limit]

    def update(self, entity: T) -> T:
        entity_id = self._id_of(entity)
        if entity_id not in self._storage:
            raise KeyError(f"Entity {entity_id} not found")

        self._storage[entity_id] = entity
        self._logger.debug(f"Updated entity {entity_id}")
        return entity

    def delete(self, id: str) -> bool:
        if id in self._storage:
            del self._storage[id]
            self._logger.debug(f"Deleted entity {id}")
            return True
        return False

    def exists(self, id: str) -> bool:
        return id in self._storage

    def count(self) -> int:
        return len(self._storage)

    def clear(self):
        """Clear all data (for testing)"""
        self._storage.clear()


class InMemoryFineRepository(InMemoryRepository[Fine]):
    """Fine ledger kept in memory"""

    def find_by_license_plate(self, license_plate: str) -> List[Fine]:
        return [f for f in self._storage.values() if f.license_plate == license_plate]

    def find_unpaid_by_license_plate(self, license_plate: str) -> List[Fine]:
        return [f for f in self.find_by_license_plate(license_plate) if not f.is_paid]

    def find_all_unpaid(self) -> List[Fine]:
        return [f for f in self._storage.values() if not f.is_paid]


class InMemoryReservationRepository(InMemoryRepository[Reservation]):
    """Reservations kept in memory"""

    def find_by_license_plate(self, license_plate: str) -> List[Reservation]:
        return [r for r in self._storage.values() if r.license_plate == license_plate]

    def find_by_spot(self, spot_id: str) -> List[Reservation]:
        return [r for r in self._storage.values() if r.spot_id == spot_id]

    def find_valid_reservation(
        self,
        license_plate: str,
        spot_id: str,
        at: datetime
    ) -> Optional[Reservation]:
        for reservation in self.find_by_license_plate(license_plate):
            if reservation.spot_id == spot_id and reservation.is_valid_at(at):
                return reservation
        return None


class InMemoryPaymentRepository(InMemoryRepository[Payment]):
    """Payment history kept in memory"""

    id_attribute = 'payment_id'

    def find_by_license_plate(self, license_plate: str) -> List[Payment]:
        return [p for p in self._storage.values() if p.license_plate == license_plate]


# ============================================================================
# SQLALCHEMY REPOSITORIES
# ============================================================================

class SQLAlchemyRepository(Repository[T, str], ABC):
    """Base SQLAlchemy repository"""

    id_attribute = 'id'

    def __init__(self, session: Session):
        self.session = session
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def model_class(self) -> Type[Base]:
        """Return SQLAlchemy model class"""
        pass

    @abstractmethod
    def to_domain(self, model: Base) -> T:
        """Convert ORM model to domain model"""
        pass

    @abstractmethod
    def to_orm(self, entity: T) -> Base:
        """Convert domain model to ORM model"""
        pass

    def _id_of(self, entity: T) -> str:
        return getattr(entity, self.id_attribute)

    def add(self, entity: T) -> T:
        try:
            model = self.to_orm(entity)
            self.session.add(model)
            self.session.flush()
            self._logger.debug(f"Added entity: {model.id}")
            return entity
        except IntegrityError as e:
            self.session.rollback()
            self._logger.error(f"Integrity error adding entity: {e}")
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error adding entity: {e}")
            raise

    def get(self, id: str) -> Optional[T]:
        try:
            model = self.session.get(self.model_class, str(id))
            if model:
                return self.to_domain(model)
            return None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting entity {id}: {e}")
            raise

    def get_all(self, skip: int = 0, limit: Optional[int] = None) -> List[T]:
        try:
            query = self.session.query(self.model_class).offset(skip)
            if limit is not None:
                query = query.limit(limit)
            return [self.to_domain(model) for model in query.all()]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error getting all entities: {e}")
            raise

    def update(self, entity: T) -> T:
        try:
            entity_id = self._id_of(entity)
            model = self.session.get(self.model_class, str(entity_id))
            if not model:
                raise ValueError(f"Entity {entity_id} not found")

            updated_model = self.to_orm(entity)

            # Copy mapped columns; None is written too so cleared fields stay cleared
            for column in self.model_class.__table__.columns:
                if column.name in ('id', 'parking_lot_id', 'created_at', 'updated_at'):
                    continue
                setattr(model, column.name, getattr(updated_model, column.name, None))

            self.session.flush()
            self._logger.debug(f"Updated entity: {entity_id}")
            return entity
        except IntegrityError as e:
            self.session.rollback()
            self._logger.error(f"Integrity error updating entity: {e}")
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error updating entity: {e}")
            raise

    def save(self, entity: T) -> T:
        """Insert or update"""
        if self.exists(self._id_of(entity)):
            return self.update(entity)
        return self.add(entity)

    def delete(self, id: str) -> bool:
        try:
            model = self.session.get(self.model_class, str(id))
            if model:
                self.session.delete(model)
                self.session.flush()
                self._logger.debug(f"Deleted entity: {id}")
                return True
            return False
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error deleting entity {id}: {e}")
            raise

    def exists(self, id: str) -> bool:
        try:
            count = self.session.query(self.model_class).filter(
                self.model_class.id == str(id)
            ).count()
            return count > 0
        except SQLAlchemyError as e:
            self._logger.error(f"Database error checking existence of {id}: {e}")
            raise

    def count(self) -> int:
        try:
            return self.session.query(self.model_class).count()
        except SQLAlchemyError as e:
            self._logger.error(f"Database error counting entities: {e}")
            raise


class ParkingSpotRepository(SQLAlchemyRepository[ParkingSpot]):
    """Repository for parking spots"""

    @property
    def model_class(self) -> Type[Base]:
        return ParkingSpotModel

    def to_domain(self, model: ParkingSpotModel) -> ParkingSpot:
        return Mapper.parking_spot_to_domain(model)

    def to_orm(self, entity: ParkingSpot) -> ParkingSpotModel:
        return Mapper.parking_spot_to_orm(entity)

    def find_available(self) -> List[ParkingSpot]:
        """Spots recorded as available, in position order"""
        try:
            models = self.session.query(ParkingSpotModel).filter(
                ParkingSpotModel.status == 'available'
            ).order_by(
                ParkingSpotModel.floor_number,
                ParkingSpotModel.row_number,
                ParkingSpotModel.spot_index
            ).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding available spots: {e}")
            raise

    def update_status(self, spot: ParkingSpot) -> None:
        """Store the spot's current status and occupant plate"""
        try:
            model = self.session.get(ParkingSpotModel, spot.spot_id)
            if model is None:
                raise ValueError(f"Spot {spot.spot_id} not found")
            model.status = spot.status.value
            model.occupied_by = spot.current_vehicle.plate if spot.current_vehicle else None
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error updating spot {spot.spot_id}: {e}")
            raise


class VehicleRepository(SQLAlchemyRepository[Vehicle]):
    """Repository for vehicle sessions"""

    @property
    def model_class(self) -> Type[Base]:
        return VehicleModel

    def to_domain(self, model: VehicleModel) -> Vehicle:
        return Mapper.vehicle_to_domain(model)

    def to_orm(self, entity: Vehicle) -> VehicleModel:
        return Mapper.vehicle_to_orm(entity)

    def find_active(self, spot_ids: Optional[List[str]] = None) -> List[Vehicle]:
        """Vehicles with no exit time that are assigned to a spot, optionally one of spot_ids"""
        try:
            query = self.session.query(VehicleModel).filter(
                VehicleModel.exit_time.is_(None),
                VehicleModel.spot_id.isnot(None)
            )
            if spot_ids is not None:
                query = query.filter(VehicleModel.spot_id.in_(spot_ids))
            models = query.all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding active vehicles: {e}")
            raise

    def record_exit(self, vehicle: Vehicle) -> None:
        try:
            model = self.session.get(VehicleModel, vehicle.id)
            if model is None:
                raise ValueError(f"Vehicle session {vehicle.id} not found")
            model.exit_time = vehicle.exit_time
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error recording exit for {vehicle.plate}: {e}")
            raise


class ParkingLotRepository(SQLAlchemyRepository[ParkingLot]):
    """Repository for the parking lot aggregate"""

    @property
    def model_class(self) -> Type[Base]:
        return ParkingLotModel

    def to_domain(self, model: ParkingLotModel) -> ParkingLot:
        spot_models = self.session.query(ParkingSpotModel).filter(
            ParkingSpotModel.parking_lot_id == model.id
        ).all()
        spot_ids = [s.id for s in spot_models]
        active = VehicleRepository(self.session).find_active(spot_ids) if spot_ids else []
        return Mapper.parking_lot_to_domain(model, spot_models, active)

    def to_orm(self, entity: ParkingLot) -> ParkingLotModel:
        return Mapper.parking_lot_to_orm(entity)

    def save_structure(self, lot: ParkingLot) -> ParkingLot:
        """Store the lot row and every spot it owns"""
        try:
            self.save(lot)
            for spot in lot.all_spots():
                model = self.session.get(ParkingSpotModel, spot.spot_id)
                if model is None:
                    self.session.add(Mapper.parking_spot_to_orm(spot, lot.id))
                else:
                    model.parking_lot_id = lot.id
                    model.spot_type = spot.spot_type.value
                    model.status = spot.status.value
                    model.occupied_by = spot.current_vehicle.plate if spot.current_vehicle else None
            self.session.flush()
            self._logger.debug(f"Saved structure of {lot.name} ({lot.total_spots} spots)")
            return lot
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error saving lot structure: {e}")
            raise

    def find_first(self) -> Optional[ParkingLot]:
        """The stored lot, oldest first"""
        try:
            model = self.session.query(ParkingLotModel).order_by(
                ParkingLotModel.created_at
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error loading parking lot: {e}")
            raise

    def update_state(self, lot: ParkingLot) -> None:
        """Store revenue and fine policy"""
        try:
            model = self.session.get(ParkingLotModel, lot.id)
            if model is None:
                raise ValueError(f"Parking lot {lot.id} not found")
            model.total_revenue = lot.total_revenue
            model.fine_policy = lot.fine_context.current_policy_name
            model.policy_effective_from = lot.fine_context.effective_from
            self.session.flush()
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error updating lot state: {e}")
            raise


class FineRepository(SQLAlchemyRepository[Fine]):
    """Repository for fines"""

    @property
    def model_class(self) -> Type[Base]:
        return FineModel

    def to_domain(self, model: FineModel) -> Fine:
        return Mapper.fine_to_domain(model)

    def to_orm(self, entity: Fine) -> FineModel:
        return Mapper.fine_to_orm(entity)

    def find_by_license_plate(self, license_plate: str) -> List[Fine]:
        try:
            models = self.session.query(FineModel).filter(
                FineModel.license_plate == license_plate
            ).order_by(FineModel.issued_at).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding fines for {license_plate}: {e}")
            raise

    def find_unpaid_by_license_plate(self, license_plate: str) -> List[Fine]:
        try:
            models = self.session.query(FineModel).filter(
                FineModel.license_plate == license_plate,
                FineModel.is_paid.is_(False)
            ).order_by(FineModel.issued_at).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding unpaid fines for {license_plate}: {e}")
            raise

    def find_all_unpaid(self) -> List[Fine]:
        try:
            models = self.session.query(FineModel).filter(
                FineModel.is_paid.is_(False)
            ).order_by(FineModel.issued_at).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding unpaid fines: {e}")
            raise

    def mark_paid(self, fine_ids: List[str]) -> int:
        """Returns: number of fines updated"""
        if not fine_ids:
            return 0
        try:
            updated = self.session.query(FineModel).filter(
                FineModel.id.in_(fine_ids)
            ).update({FineModel.is_paid: True}, synchronize_session=False)
            self.session.flush()
            return updated
        except SQLAlchemyError as e:
            self.session.rollback()
            self._logger.error(f"Database error marking fines paid: {e}")
            raise


class PaymentRepository(SQLAlchemyRepository[Payment]):
    """Repository for payments"""

    id_attribute = 'payment_id'

    @property
    def model_class(self) -> Type[Base]:
        return PaymentModel

    def to_domain(self, model: PaymentModel) -> Payment:
        return Mapper.payment_to_domain(model)

    def to_orm(self, entity: Payment) -> PaymentModel:
        return Mapper.payment_to_orm(entity)

    def find_by_license_plate(self, license_plate: str) -> List[Payment]:
        try:
            models = self.session.query(PaymentModel).filter(
                PaymentModel.license_plate == license_plate
            ).order_by(PaymentModel.payment_date).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding payments for {license_plate}: {e}")
            raise

    def total_revenue(self) -> Decimal:
        """Sum of all amounts paid"""
        try:
            total = self.session.query(func.sum(PaymentModel.amount_paid)).scalar()
            return Decimal(str(total)) if total is not None else Decimal('0.00')
        except SQLAlchemyError as e:
            self._logger.error(f"Database error summing payments: {e}")
            raise


class ReservationRepository(SQLAlchemyRepository[Reservation]):
    """Repository for reservations"""

    @property
    def model_class(self) -> Type[Base]:
        return ReservationModel

    def to_domain(self, model: ReservationModel) -> Reservation:
        return Mapper.reservation_to_domain(model)

    def to_orm(self, entity: Reservation) -> ReservationModel:
        return Mapper.reservation_to_orm(entity)

    def find_valid_reservation(
        self,
        license_plate: str,
        spot_id: str,
        at: datetime
    ) -> Optional[Reservation]:
        try:
            model = self.session.query(ReservationModel).filter(
                ReservationModel.license_plate == license_plate,
                ReservationModel.spot_id == spot_id,
                ReservationModel.is_active.is_(True),
                ReservationModel.start_time <= at,
                ReservationModel.end_time >= at
            ).first()
            return self.to_domain(model) if model else None
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding reservation: {e}")
            raise

    def find_by_license_plate(self, license_plate: str) -> List[Reservation]:
        try:
            models = self.session.query(ReservationModel).filter(
                ReservationModel.license_plate == license_plate
            ).order_by(ReservationModel.start_time).all()
            return [self.to_domain(model) for model in models]
        except SQLAlchemyError as e:
            self._logger.error(f"Database error finding reservations for {license_plate}: {e}")
            raise


# ============================================================================
# SQLALCHEMY UNIT OF WORK
# ============================================================================

class SQLAlchemyUnitOfWork(UnitOfWork):
    """Unit of Work implementation with SQLAlchemy"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self._logger = logging.getLogger(self.__class__.__name__)

    def __enter__(self):
        self.session = self.session_factory()

        # Initialize repositories
        self._parking_lots = ParkingLotRepository(self.session)
        self._parking_spots = ParkingSpotRepository(self.session)
        self._vehicles = VehicleRepository(self.session)
        self._fines = FineRepository(self.session)
        self._payments = PaymentRepository(self.session)
        self._reservations = ReservationRepository(self.session)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                self._logger.error(f"Exception in unit of work: {exc_val}")
                self.rollback()
            else:
                self.commit()
        finally:
            self.session.close()

    def commit(self):
        """Commit the transaction"""
        try:
            self.session.commit()
            self._logger.debug("Transaction committed")
        except SQLAlchemyError as e:
            self._logger.error(f"Error committing transaction: {e}")
            self.session.rollback()
            raise

    def rollback(self):
        """Rollback the transaction"""
        self.session.rollback()
        self._logger.debug("Transaction rolled back")

    @property
    def parking_lots(self) -> ParkingLotRepository:
        return self._parking_lots

    @property
    def parking_spots(self) -> ParkingSpotRepository:
        return self._parking_spots

    @property
    def vehicles(self) -> VehicleRepository:
        return self._vehicles

    @property
    def fines(self) -> FineRepository:
        return self._fines

    @property
    def payments(self) -> PaymentRepository:
        return self._payments

    @property
    def reservations(self) -> ReservationRepository:
        return self._reservations


# ============================================================================
# REPOSITORY FACTORY
# ============================================================================

class RepositoryFactory:
    """Factory for creating repositories"""

    @staticmethod
    def create_in_memory_repositories() -> Tuple[
        InMemoryFineRepository, InMemoryReservationRepository, InMemoryPaymentRepository
    ]:
        """Fine, reservation and payment stores for the rule engine"""
        return InMemoryFineRepository(), InMemoryReservationRepository(), InMemoryPaymentRepository()

    @staticmethod
    def create_session_factory(database_url: str) -> Callable[[], Session]:
        """Create the engine, the tables and a session factory"""
        engine_options: Dict[str, Any] = {"echo": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps the in-memory database alive
            engine_options.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False}
            )

        engine = create_engine(database_url, **engine_options)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        # Create tables if they don't exist
        Base.metadata.create_all(bind=engine)

        return SessionLocal

    @staticmethod
    def create_sqlalchemy_uow_factory(database_url: str) -> Callable[[], SQLAlchemyUnitOfWork]:
        """Create the database once and return a factory of units of work on it"""
        session_factory = RepositoryFactory.create_session_factory(database_url)
        return lambda: SQLAlchemyUnitOfWork(session_factory)
