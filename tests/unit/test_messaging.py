# File: tests/unit/test_messaging.py
"""
Unit tests for event messaging

This test suite covers:
1. Wrapping domain events as messages
2. The in-process event bus
3. In-memory and Redis message queues
4. The event publisher and its factory
"""

import unittest
import sys
import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

sys.path.append(str(Path(__file__).parent.parent.parent))

from levelpark.infrastructure.messaging import (
    EventBus, EventHandler, EventMessage, EventPublisher, EventType, InMemoryMessageQueue,
    Message, MessageBrokerFactory, MessageType, RedisMessageQueue
)
from levelpark.domain.models import (
    VehicleEnteredEvent, VehicleExitedEvent, FineIssuedEvent, Fine, FineType, VehicleType
)


NOW = datetime(2024, 1, 15, 10, 0, 0)


def entered_event():
    return VehicleEnteredEvent("lot-1", "F1-R2-S1", "ABC123", VehicleType.CAR,
                               "T-ABC123-20240115100000", NOW)


class RecordingHandler(EventHandler):
    """Collects handled events"""

    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)


class FailingHandler(EventHandler):
    def handle(self, event):
        raise RuntimeError("handler failed")


class TestEventMessage(unittest.TestCase):
    """Test message conversion"""

    def test_from_domain_event(self):
        """Test a lot event keeps its id, type and payload"""
        event = entered_event()
        message = EventMessage.from_domain_event(event)

        self.assertEqual(message.message_id, event.event_id)
        self.assertEqual(message.message_type, MessageType.DOMAIN_EVENT)
        self.assertEqual(message.event_type, EventType.VEHICLE_ENTERED)
        self.assertEqual(message.aggregate_id, "lot-1")
        self.assertEqual(message.aggregate_type, "ParkingLot")
        self.assertEqual(message.data["spot_id"], "F1-R2-S1")
        self.assertEqual(message.timestamp, NOW)

    def test_fine_event_has_no_aggregate(self):
        """Test events without a lot id"""
        fine = Fine("XYZ789", FineType.OVERSTAY, Decimal('50'), issued_at=NOW)
        message = EventMessage.from_domain_event(FineIssuedEvent(fine))
        self.assertEqual(message.event_type, EventType.FINE_ISSUED)
        self.assertIsNone(message.aggregate_type)
        self.assertEqual(message.data["license_plate"], "XYZ789")

    def test_json_round_trip(self):
        """Test JSON conversion keeps the event type"""
        message = EventMessage.from_domain_event(entered_event())
        payload = json.loads(message.to_json())
        self.assertEqual(payload["event_type"], "vehicle.entered")
        self.assertEqual(payload["message_type"], "domain_event")

        restored = EventMessage.from_json(message.to_json())
        self.assertEqual(restored.event_type, EventType.VEHICLE_ENTERED)
        self.assertEqual(restored.timestamp, NOW)


class TestEventBus(unittest.TestCase):
    """Test the in-process bus"""

    def setUp(self):
        """Set up test data"""
        self.bus = EventBus()
        self.handler = RecordingHandler()
        self.message = EventMessage.from_domain_event(entered_event())

    def test_publish_to_subscribers(self):
        """Test only matching subscribers receive an event"""
        other = RecordingHandler()
        self.bus.subscribe(EventType.VEHICLE_ENTERED, self.handler)
        self.bus.subscribe(EventType.VEHICLE_ENTERED, self.handler)
        self.bus.subscribe(EventType.VEHICLE_EXITED, other)

        self.assertEqual(self.bus.publish(self.message), 1)
        self.assertEqual(self.handler.events, [self.message])
        self.assertEqual(other.events, [])

    def test_failing_handler_does_not_stop_others(self):
        """Test handler errors are contained"""
        self.bus.subscribe(EventType.VEHICLE_ENTERED, FailingHandler())
        self.bus.subscribe(EventType.VEHICLE_ENTERED, self.handler)
        with self.assertLogs('EventBus', level='ERROR'):
            self.assertEqual(self.bus.publish(self.message), 1)
        self.assertEqual(len(self.handler.events), 1)

    def test_unsubscribe(self):
        """Test unsubscribe and clear"""
        self.bus.subscribe(EventType.VEHICLE_ENTERED, self.handler)
        self.bus.unsubscribe(EventType.VEHICLE_ENTERED, self.handler)
        self.assertEqual(self.bus.publish(self.message), 0)

        self.bus.subscribe(EventType.VEHICLE_ENTERED, self.handler)
        self.bus.clear_subscribers()
        self.assertEqual(self.bus.publish(self.message), 0)


class TestInMemoryMessageQueue(unittest.TestCase):
    """Test the in-memory queue"""

    def test_publish_and_subscribe(self):
        """Test topic delivery and message history"""
        queue = InMemoryMessageQueue()
        received = []
        subscription = queue.subscribe("levelpark.events", received.append)
        queue.subscribe("other", lambda m: self.fail("wrong topic"))

        message = Message(source="test")
        self.assertTrue(queue.publish("levelpark.events", message))
        self.assertEqual(received, [message])
        self.assertEqual(queue.get_messages("levelpark.events"), [message])

        self.assertTrue(queue.unsubscribe(subscription))
        self.assertFalse(queue.unsubscribe(subscription))
        queue.clear()
        self.assertEqual(queue.get_messages("levelpark.events"), [])


class TestRedisMessageQueue(unittest.TestCase):
    """Test the Redis queue with a mocked client"""

    def setUp(self):
        """Set up test data"""
        patcher = patch('levelpark.infrastructure.messaging.redis.Redis.from_url')
        self.mock_from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = Mock()
        self.mock_from_url.return_value = self.client
        self.queue = RedisMessageQueue("redis://cache:6379/0")
        self.message = EventMessage.from_domain_event(entered_event())

    def test_publish(self):
        """Test the message is published as JSON"""
        self.client.publish.return_value = 2
        self.assertTrue(self.queue.publish("levelpark.events", self.message))

        self.mock_from_url.assert_called_once_with("redis://cache:6379/0")
        topic, body = self.client.publish.call_args[0]
        self.assertEqual(topic, "levelpark.events")
        self.assertEqual(json.loads(body)["message_id"], self.message.message_id)

    def test_publish_without_receivers(self):
        """Test a publish nobody listened to"""
        self.client.publish.return_value = 0
        self.assertFalse(self.queue.publish("levelpark.events", self.message))

    def test_publish_failure(self):
        """Test Redis errors are logged and reported as False"""
        self.client.publish.side_effect = RedisConnectionError("connection refused")
        with self.assertLogs('RedisMessageQueue', level='WARNING'):
            self.assertFalse(self.queue.publish("levelpark.events", self.message))

    def test_incoming_message_dispatch(self):
        """Test incoming messages reach the topic's callbacks"""
        received = []
        self.queue._subscriptions["sub-1"] = "levelpark.events"
        self.queue._callbacks["sub-1"] = received.append

        self.queue._handle_message({
            "type": "message",
            "channel": b"levelpark.events",
            "data": self.message.to_json().encode("utf-8"),
        })
        self.assertEqual(len(received), 1)
        self.assertIsInstance(received[0], EventMessage)
        self.assertEqual(received[0].message_id, self.message.message_id)

        with self.assertLogs('RedisMessageQueue', level='ERROR'):
            self.queue._handle_message({"type": "message", "channel": "levelpark.events", "data": "not json"})
        self.assertEqual(len(received), 1)

    def test_unsubscribe_unknown(self):
        """Test unsubscribing an unknown id"""
        self.assertFalse(self.queue.unsubscribe("missing"))


class TestEventPublisher(unittest.TestCase):
    """Test publishing domain events"""

    def test_publish_to_bus_and_queue(self):
        """Test both destinations receive the event"""
        bus = EventBus()
        handler = RecordingHandler()
        bus.subscribe(EventType.VEHICLE_EXITED, handler)
        queue = InMemoryMessageQueue()
        publisher = EventPublisher(bus, queue, channel="lot.events")

        event = VehicleExitedEvent("lot-1", "F1-R2-S1", "ABC123", 2,
                                   Decimal('10'), Decimal('0'), NOW)
        message = publisher.publish(event)

        self.assertEqual(message.event_type, EventType.VEHICLE_EXITED)
        self.assertEqual(handler.events, [message])
        self.assertEqual(queue.get_messages("lot.events"), [message])

    def test_publish_without_queue(self):
        """Test the bus-only publisher"""
        publisher = MessageBrokerFactory.create_event_publisher()
        self.assertIsNone(publisher.message_queue)
        self.assertEqual(publisher.channel, "levelpark.events")
        publisher.publish(entered_event())
        publisher.close()

    @patch('levelpark.infrastructure.messaging.redis.Redis.from_url')
    def test_factory_with_redis(self, mock_from_url):
        """Test the factory wires a Redis queue"""
        publisher = MessageBrokerFactory.create_event_publisher("redis://cache:6379/0", "lot.events")
        self.assertIsInstance(publisher.message_queue, RedisMessageQueue)
        self.assertEqual(publisher.channel, "lot.events")
        mock_from_url.assert_called_once_with("redis://cache:6379/0")


if __name__ == '__main__':
    unittest.main()
