# File: levelpark/application/commands.py
"""
Command Pattern Implementation for the LevelPark rule engine

Parking operations are encapsulated as command objects. Each command wraps a
validated request DTO and executes against a ParkingService.

Key Benefits:
- Decouple operation invocation from execution
- Uniform dict-in / dict-out surface for scripts and integrations
- Provide an audit trail of executed commands

Command Types:
1. Parking Commands - Vehicle entry and exit
2. Fine Commands - Policy changes and explicit fines
3. Reservation Commands - Booking and cancellation
4. Query Commands - Lot status and available spots
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Type
from dataclasses import dataclass, field
from datetime import datetime
import logging
import uuid

from pydantic import ValidationError

from .parking_service import ParkingService, ParkingServiceError
from .dtos import (
    VehicleEntryRequestDTO, VehicleExitRequestDTO, AvailableSpotsQueryDTO,
    FinePolicyChangeRequestDTO, FineIssueRequestDTO, ReservationRequestDTO,
    EntryResultDTO, ExitResultDTO, SpotDTO, FineDTO, ReservationDTO
)


# ============================================================================
# COMMAND INTERFACES AND BASE CLASSES
# ============================================================================

class Command(ABC):
    """
    Abstract base class for all commands

    A command represents an intent to change or query the system state.
    Commands are named in the imperative (e.g., EnterVehicleCommand).
    """

    command_type: str = ""

    def __init__(self, command_id: Optional[str] = None, executed_by: Optional[str] = None):
        self.command_id = command_id or str(uuid.uuid4())
        self.executed_at: Optional[datetime] = None
        self.executed_by = executed_by or "system"
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def execute(self, service: ParkingService) -> Dict[str, Any]:
        """
        Execute the command using the provided service

        Returns: JSON-ready result data
        Raises: ParkingServiceError when the operation is rejected
        """
        pass

    def get_description(self) -> str:
        """Get human-readable command description"""
        return self.__class__.__name__.replace("Command", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "command_type": self.command_type,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "executed_by": self.executed_by
        }


@dataclass
class CommandResult:
    """Outcome of one handled command"""
    success: bool
    command_id: str
    command_type: str
    executed_at: datetime
    data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "command_id": self.command_id,
            "command_type": self.command_type,
            "executed_at": self.executed_at.isoformat(),
            "data": self.data,
            "error_message": self.error_message,
            "metadata": self.metadata
        }


# ============================================================================
# PARKING COMMANDS
# ============================================================================

class EnterVehicleCommand(Command):
    """
    Command: Admit a vehicle into a chosen spot

    Business Operation: Vehicle Entry
    """

    command_type = "enter_vehicle"

    def __init__(self, request: VehicleEntryRequestDTO, **kwargs):
        super().__init__(**kwargs)
        self.request = request

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        self.logger.info(f"Executing EnterVehicleCommand for {self.request.license_plate}")
        result = service.enter_vehicle(
            self.request.license_plate,
            self.request.vehicle_type,
            is_handicapped=self.request.is_handicapped,
            spot_id=self.request.spot_id
        )
        return EntryResultDTO.from_result(result).to_dict(mode="json")

    def get_description(self) -> str:
        return f"Enter Vehicle {self.request.license_plate} into {self.request.spot_id}"


class ExitVehicleCommand(Command):
    """
    Command: Settle and release a parked vehicle

    Business Operation: Payment summary, settlement and spot release.
    Unpaid fines for the plate are settled in the same payment unless the
    request opts out.
    """

    command_type = "exit_vehicle"

    def __init__(self, request: VehicleExitRequestDTO, **kwargs):
        super().__init__(**kwargs)
        self.request = request

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        self.logger.info(f"Executing ExitVehicleCommand for {self.request.license_plate}")
        result = service.process_exit(
            self.request.license_plate,
            self.request.amount_paid,
            payment_method=self.request.payment_method,
            include_unpaid_fines=self.request.include_unpaid_fines
        )
        return ExitResultDTO.from_result(result).to_dict(mode="json")

    def get_description(self) -> str:
        return f"Exit Vehicle {self.request.license_plate}"


# ============================================================================
# FINE COMMANDS
# ============================================================================

class ChangeFinePolicyCommand(Command):
    """Command: Switch the active fine policy"""

    command_type = "change_fine_policy"

    def __init__(self, request: FinePolicyChangeRequestDTO, **kwargs):
        super().__init__(**kwargs)
        self.request = request

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        previous = service.change_fine_policy(self.request.policy)
        return {
            "previous_policy": previous.get_strategy_name(),
            "current_policy": service.fine_policy.get_strategy_name()
        }


class IssueFineCommand(Command):
    """Command: Record a fine explicitly"""

    command_type = "issue_fine"

    def __init__(self, request: FineIssueRequestDTO, **kwargs):
        super().__init__(**kwargs)
        self.request = request

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        fine = service.issue_fine(
            self.request.license_plate, self.request.fine_type, self.request.amount
        )
        return FineDTO.from_domain(fine).to_dict(mode="json")


# ============================================================================
# RESERVATION COMMANDS
# ============================================================================

class CreateReservationCommand(Command):
    """Command: Book a reserved spot"""

    command_type = "create_reservation"

    def __init__(self, request: ReservationRequestDTO, **kwargs):
        super().__init__(**kwargs)
        self.request = request

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        reservation = service.create_reservation(
            self.request.license_plate,
            self.request.spot_id,
            self.request.start_time,
            self.request.end_time,
            prepaid_amount=self.request.prepaid_amount
        )
        return ReservationDTO.from_domain(reservation).to_dict(mode="json")


class CancelReservationCommand(Command):
    """Command: Cancel a reservation by id"""

    command_type = "cancel_reservation"

    def __init__(self, reservation_id: str, **kwargs):
        super().__init__(**kwargs)
        self.reservation_id = reservation_id

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        reservation = service.cancel_reservation(self.reservation_id)
        return ReservationDTO.from_domain(reservation).to_dict(mode="json")


# ============================================================================
# QUERY COMMANDS
# ============================================================================

class GetLotStatusCommand(Command):
    """Command: Lot status report"""

    command_type = "get_status"

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        return service.get_parking_lot_status()


class FindAvailableSpotsCommand(Command):
    """Command: Spots a vehicle could enter right now"""

    command_type = "find_available_spots"

    def __init__(self, request: AvailableSpotsQueryDTO, **kwargs):
        super().__init__(**kwargs)
        self.request = request

    def execute(self, service: ParkingService) -> Dict[str, Any]:
        spots = service.find_available_spots(
            self.request.vehicle_type, is_handicapped=self.request.is_handicapped
        )
        return {
            "count": len(spots),
            "spots": [SpotDTO.from_domain(spot).to_dict(mode="json") for spot in spots]
        }


# ============================================================================
# COMMAND FACTORY
# ============================================================================

class CommandFactory:
    """Factory for creating commands from dictionary data"""

    _REQUEST_COMMANDS: Dict[str, tuple] = {
        "enter_vehicle": (EnterVehicleCommand, VehicleEntryRequestDTO),
        "exit_vehicle": (ExitVehicleCommand, VehicleExitRequestDTO),
        "change_fine_policy": (ChangeFinePolicyCommand, FinePolicyChangeRequestDTO),
        "issue_fine": (IssueFineCommand, FineIssueRequestDTO),
        "create_reservation": (CreateReservationCommand, ReservationRequestDTO),
        "find_available_spots": (FindAvailableSpotsCommand, AvailableSpotsQueryDTO),
    }

    @classmethod
    def command_types(cls) -> List[str]:
        return sorted(list(cls._REQUEST_COMMANDS) + ["cancel_reservation", "get_status"])

    @classmethod
    def create_command(cls, command_type: str, data: Optional[Dict[str, Any]] = None) -> Optional[Command]:
        """
        Create a command instance from type and data

        Returns: Command instance or None if type not recognized
        Raises: pydantic.ValidationError for malformed request data
        """
        data = dict(data or {})
        executed_by = data.pop("executed_by", None)

        if command_type in cls._REQUEST_COMMANDS:
            command_class, request_class = cls._REQUEST_COMMANDS[command_type]
            return command_class(request_class(**data), executed_by=executed_by)
        if command_type == "cancel_reservation":
            reservation_id = data.get("reservation_id")
            if not reservation_id:
                raise ParkingServiceError("reservation_id is required")
            return CancelReservationCommand(str(reservation_id), executed_by=executed_by)
        if command_type == "get_status":
            return GetLotStatusCommand(executed_by=executed_by)
        return None


# ============================================================================
# COMMAND HANDLER
# ============================================================================

class ParkingCommandHandler:
    """
    Dispatches dict commands to the parking service

    A message has the shape {"type": <command type>, "data": {...}}. The
    reply is {"success": True, "data": {...}} or
    {"success": False, "error": "..."}; rejected operations never raise.
    """

    def __init__(self, service: ParkingService, max_history_size: int = 1000):
        self.service = service
        self.max_history_size = max_history_size
        self.history: List[CommandResult] = []
        self.logger = logging.getLogger(self.__class__.__name__)

    def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        message = message or {}
        command_type = message.get("type")
        try:
            command = CommandFactory.create_command(command_type, message.get("data"))
        except ValidationError as e:
            return self._failure(command_type, f"Invalid request: {self._format_errors(e)}")
        except ParkingServiceError as e:
            return self._failure(command_type, str(e))

        if command is None:
            return self._failure(command_type, f"Unknown command type: {command_type}")

        return self.process(command)

    def process(self, command: Command) -> Dict[str, Any]:
        """Execute a command and record its outcome"""
        self.logger.info(f"Processing command: {command.get_description()}")
        try:
            data = command.execute(self.service)
        except ParkingServiceError as e:
            self.logger.info(f"Command {command.command_type} rejected: {e}")
            self._remember(command, False, error_message=str(e))
            return {"success": False, "error": str(e)}
        except Exception as e:
            self.logger.error(f"Error processing command {command.command_type}: {e}", exc_info=True)
            self._remember(command, False, error_message=str(e))
            return {"success": False, "error": f"Internal error: {e}"}

        command.executed_at = self.service.clock()
        self._remember(command, True, data=data)
        return {"success": True, "data": data}

    def get_history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        history = self.history[-limit:] if limit else list(self.history)
        return [result.to_dict() for result in history]

    def _remember(self, command: Command, success: bool, data=None, error_message=None) -> None:
        self.history.append(CommandResult(
            success=success,
            command_id=command.command_id,
            command_type=command.command_type,
            executed_at=command.executed_at or self.service.clock(),
            data=data,
            error_message=error_message,
            metadata={"executed_by": command.executed_by}
        ))
        if len(self.history) > self.max_history_size:
            self.history = self.history[-self.max_history_size:]

    def _failure(self, command_type: Optional[str], error: str) -> Dict[str, Any]:
        self.logger.info(f"Command {command_type} rejected: {error}")
        return {"success": False, "error": error}

    @staticmethod
    def _format_errors(error: ValidationError) -> str:
        parts = []
        for item in error.errors():
            location = ".".join(str(p) for p in item.get("loc", ())) or "request"
            parts.append(f"{location}: {item.get('msg')}")
        return "; ".join(parts)
