# File: tests/unit/test_commands.py
"""
Unit tests for the command layer

This test suite covers:
1. CommandFactory construction and validation
2. ParkingCommandHandler dispatch and replies
3. Command history
"""

import unittest
import sys
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import Mock

from pydantic import ValidationError

sys.path.append(str(Path(__file__).parent.parent.parent))

from levelpark.application.commands import (
    CommandFactory, ParkingCommandHandler,
    EnterVehicleCommand, CancelReservationCommand, GetLotStatusCommand
)
from levelpark.application.parking_service import ParkingService, ParkingServiceError
from levelpark.domain.aggregates import AggregateFactory


START = datetime(2024, 1, 15, 10, 0, 0)


class FakeClock:
    """Controllable clock for exact durations"""

    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def __call__(self) -> datetime:
        return self.now


class TestCommandFactory(unittest.TestCase):
    """Test command construction"""

    def test_create_entry_command(self):
        """Test a request-backed command"""
        command = CommandFactory.create_command("enter_vehicle", {
            "license_plate": "abc123", "vehicle_type": "car",
            "spot_id": "F1-R2-S1", "executed_by": "gate-1"
        })
        self.assertIsInstance(command, EnterVehicleCommand)
        self.assertEqual(command.request.license_plate, "ABC123")
        self.assertEqual(command.executed_by, "gate-1")
        self.assertEqual(command.get_description(), "Enter Vehicle ABC123 into F1-R2-S1")

    def test_create_commands_without_request(self):
        """Test status and cancellation commands"""
        self.assertIsInstance(CommandFactory.create_command("get_status"), GetLotStatusCommand)
        cancel = CommandFactory.create_command("cancel_reservation", {"reservation_id": "r-1"})
        self.assertIsInstance(cancel, CancelReservationCommand)
        self.assertEqual(cancel.reservation_id, "r-1")

        with self.assertRaises(ParkingServiceError):
            CommandFactory.create_command("cancel_reservation", {})

    def test_unknown_and_invalid(self):
        """Test unknown types and malformed data"""
        self.assertIsNone(CommandFactory.create_command("launch_rocket", {}))
        with self.assertRaises(ValidationError):
            CommandFactory.create_command("enter_vehicle", {"license_plate": "ABC123"})

    def test_command_types(self):
        """Test the advertised command types"""
        types = CommandFactory.command_types()
        self.assertIn("exit_vehicle", types)
        self.assertIn("get_status", types)
        self.assertEqual(len(types), 8)


class TestCommandHandler(unittest.TestCase):
    """Test dispatch through the handler"""

    def setUp(self):
        """Set up test data"""
        self.clock = FakeClock(START)
        self.service = ParkingService(AggregateFactory.create_default_parking_lot(), clock=self.clock)
        self.handler = ParkingCommandHandler(self.service)

    def enter(self, plate="ABC123", spot_id="F1-R2-S1", vehicle_type="car", **extra):
        data = {"license_plate": plate, "vehicle_type": vehicle_type, "spot_id": spot_id}
        data.update(extra)
        return self.handler.handle({"type": "enter_vehicle", "data": data})

    def test_enter_vehicle(self):
        """Test a successful entry reply"""
        reply = self.enter()
        self.assertTrue(reply["success"])
        self.assertEqual(reply["data"]["ticket_number"], "T-ABC123-20240115100000")
        self.assertEqual(reply["data"]["spot_type"], "regular")
        self.assertEqual(reply["data"]["entry_time"], "2024-01-15T10:00:00")
        self.assertIsNone(reply["data"]["unauthorized_fine"])

    def test_enter_reserved_spot_reply_includes_fine(self):
        """Test the fine is reported in the entry reply"""
        reply = self.enter(spot_id="F1-R3-S3", vehicle_type="handicapped")
        self.assertTrue(reply["success"])
        self.assertEqual(reply["data"]["unauthorized_fine"]["amount"], 50.0)
        self.assertIn("*** WARNING ***", reply["data"]["ticket_text"])

    def test_rejections_become_replies(self):
        """Test that rejected operations never raise"""
        self.enter()
        reply = self.enter(spot_id="F1-R2-S2")
        self.assertFalse(reply["success"])
        self.assertIn("already parked", reply["error"])

        reply = self.enter(plate="MOTO1", vehicle_type="motorcycle", spot_id="F1-R2-S3")
        self.assertFalse(reply["success"])
        self.assertIn("cannot park", reply["error"])

    def test_invalid_request(self):
        """Test validation failures"""
        reply = self.enter(spot_id="XYZ")
        self.assertFalse(reply["success"])
        self.assertTrue(reply["error"].startswith("Invalid request: spot_id"))

    def test_unknown_command(self):
        """Test an unknown command type"""
        reply = self.handler.handle({"type": "launch_rocket", "data": {}})
        self.assertEqual(reply, {"success": False, "error": "Unknown command type: launch_rocket"})
        self.assertFalse(self.handler.handle(None)["success"])

    def test_exit_vehicle(self):
        """Test settlement through a command"""
        self.enter()
        self.clock.advance(minutes=90)
        reply = self.handler.handle({"type": "exit_vehicle", "data": {
            "license_plate": "abc123", "amount_paid": 4, "payment_method": "card"
        }})

        self.assertTrue(reply["success"])
        data = reply["data"]
        self.assertEqual(data["duration_hours"], 2)
        self.assertFalse(data["payment_sufficient"])
        self.assertEqual(data["remaining_balance"], 6.0)
        self.assertEqual(data["unpaid_balance_fine"]["fine_type"], "unpaid_balance")
        self.assertEqual(data["payment"]["payment_method"], "card")
        self.assertIn("BALANCE DUE", data["receipt_text"])

    def test_exit_includes_unpaid_fines(self):
        """Test earlier fines are settled with the exit payment"""
        self.enter(spot_id="F1-R3-S3", vehicle_type="handicapped")
        self.clock.advance(minutes=30)
        reply = self.handler.handle({"type": "exit_vehicle", "data": {
            "license_plate": "ABC123", "amount_paid": 60
        }})
        self.assertTrue(reply["success"])
        self.assertEqual(reply["data"]["payment"]["total_amount"], 60.0)
        self.assertEqual(len(reply["data"]["settled_fines"]), 1)
        self.assertTrue(reply["data"]["payment_sufficient"])

    def test_exit_defaults_to_cash(self):
        """Test an exit without a payment method is paid in cash"""
        self.enter()
        self.clock.advance(minutes=30)
        reply = self.handler.handle({"type": "exit_vehicle", "data": {
            "license_plate": "ABC123", "amount_paid": 10
        }})
        self.assertTrue(reply["success"], reply.get("error"))
        self.assertEqual(reply["data"]["payment"]["payment_method"], "cash")
        self.assertEqual(reply["data"]["remaining_balance"], 0.0)
        self.assertTrue(self.service.parking_lot.find_spot_by_id("F1-R2-S1").is_available)

    def test_exit_unknown_vehicle(self):
        """Test exit of a plate that is not parked"""
        reply = self.handler.handle({"type": "exit_vehicle", "data": {
            "license_plate": "NOPE1", "amount_paid": 10
        }})
        self.assertFalse(reply["success"])
        self.assertIn("No active parking session", reply["error"])

    def test_policy_and_fines(self):
        """Test policy change and explicit fine commands"""
        reply = self.handler.handle({"type": "change_fine_policy", "data": {"policy": "hourly"}})
        self.assertEqual(reply["data"], {"previous_policy": "FIXED", "current_policy": "HOURLY"})

        reply = self.handler.handle({"type": "issue_fine", "data": {
            "license_plate": "xyz789", "fine_type": "overstay", "amount": 20
        }})
        self.assertTrue(reply["success"])
        self.assertEqual(reply["data"]["license_plate"], "XYZ789")

    def test_reservations(self):
        """Test reservation create and cancel commands"""
        reply = self.handler.handle({"type": "create_reservation", "data": {
            "license_plate": "ABC123", "spot_id": "F1-R3-S3",
            "start_time": "2024-01-15T09:00:00", "end_time": "2024-01-15T12:00:00"
        }})
        self.assertTrue(reply["success"])
        reservation_id = reply["data"]["id"]

        self.assertIsNone(self.enter(spot_id="F1-R3-S3", vehicle_type="handicapped")["data"]["unauthorized_fine"])

        reply = self.handler.handle({"type": "cancel_reservation", "data": {"reservation_id": reservation_id}})
        self.assertFalse(reply["data"]["is_active"])

        reply = self.handler.handle({"type": "cancel_reservation", "data": {}})
        self.assertEqual(reply["error"], "reservation_id is required")

    def test_queries(self):
        """Test status and availability commands"""
        self.enter()
        status = self.handler.handle({"type": "get_status"})["data"]
        self.assertEqual(status["occupied_spots"], 1)

        spots = self.handler.handle({"type": "find_available_spots", "data": {"vehicle_type": "suv_truck"}})
        self.assertEqual(spots["data"]["count"], 29)
        self.assertEqual(spots["data"]["spots"][0]["spot_id"], "F1-R2-S2")

    def test_history(self):
        """Test that processed commands are remembered"""
        self.enter()
        self.enter()
        history = self.handler.get_history()
        self.assertEqual(len(history), 2)
        self.assertTrue(history[0]["success"])
        self.assertFalse(history[1]["success"])
        self.assertEqual(len(self.handler.get_history(limit=1)), 1)

    def test_history_is_bounded(self):
        """Test the history size limit"""
        handler = ParkingCommandHandler(self.service, max_history_size=2)
        for _ in range(3):
            handler.handle({"type": "get_status"})
        self.assertEqual(len(handler.history), 2)

    def test_unexpected_errors_are_contained(self):
        """Test an unexpected exception becomes an internal error reply"""
        service = Mock()
        service.clock.return_value = START
        service.get_parking_lot_status.side_effect = RuntimeError("boom")
        reply = ParkingCommandHandler(service).handle({"type": "get_status"})
        self.assertEqual(reply, {"success": False, "error": "Internal error: boom"})


if __name__ == '__main__':
    unittest.main()
