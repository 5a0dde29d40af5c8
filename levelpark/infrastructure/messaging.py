# File: levelpark/infrastructure/messaging.py
"""
Messaging Infrastructure for the LevelPark rule engine

Domain events collected on the parking lot aggregate are turned into
messages and fanned out to:
1. An in-process EventBus (publish/subscribe within the same process)
2. An optional message queue channel (Redis Pub/Sub in production,
   in-memory for tests)

Publishing is best-effort: a broker failure is logged and never reaches
the rule engine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any, Callable
from datetime import datetime
from enum import Enum
from uuid import uuid4
import json
import logging
import threading
import time

import redis
from redis.exceptions import RedisError

from ..domain.models import DomainEvent


# ============================================================================
# MESSAGE TYPES AND ENUMS
# ============================================================================

class MessageType(str, Enum):
    """Types of messages in the system"""
    DOMAIN_EVENT = "domain_event"
    NOTIFICATION = "notification"


class EventType(str, Enum):
    """Domain event types"""
    VEHICLE_ENTERED = "vehicle.entered"
    VEHICLE_EXITED = "vehicle.exited"
    FINE_ISSUED = "fine.issued"
    FINE_POLICY_CHANGED = "fine_policy.changed"


# ============================================================================
# MESSAGE BASE CLASSES
# ============================================================================

@dataclass
class Message:
    """Base message class"""
    message_id: str = field(default_factory=lambda: str(uuid4()))
    message_type: MessageType = MessageType.NOTIFICATION
    timestamp: datetime = field(default_factory=datetime.now)
    correlation_id: Optional[str] = None
    source: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert message to dictionary"""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['message_type'] = self.message_type.value
        return data

    def to_json(self) -> str:
        """Convert message to JSON string"""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Message':
        """Create message from dictionary"""
        data = dict(data)
        data['timestamp'] = datetime.fromisoformat(data['timestamp'])
        data['message_type'] = MessageType(data['message_type'])
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'Message':
        """Create message from JSON string"""
        return cls.from_dict(json.loads(json_str))


@dataclass
class EventMessage(Message):
    """Domain event message"""
    event_type: EventType = EventType.VEHICLE_ENTERED
    aggregate_id: Optional[str] = None
    aggregate_type: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    version: str = "1.0"

    def __post_init__(self):
        self.message_type = MessageType.DOMAIN_EVENT
        self.event_type = EventType(self.event_type)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['event_type'] = self.event_type.value
        return data

    @classmethod
    def from_domain_event(cls, event: DomainEvent, source: str = "levelpark") -> 'EventMessage':
        """Wrap a domain event raised by the rule engine"""
        payload = event.to_dict()
        data = payload["data"]
        return cls(
            message_id=payload["event_id"],
            timestamp=event.timestamp,
            source=source,
            event_type=EventType(payload["event_type"]),
            aggregate_id=data.get("lot_id"),
            aggregate_type="ParkingLot" if data.get("lot_id") else None,
            data=data,
            version=payload["version"]
        )


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, event: EventMessage) -> None:
        """Handle a domain event"""
        pass

    def can_handle(self, event: EventMessage) -> bool:
        """Check if this handler can handle the event"""
        return True


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    Implements publish/subscribe pattern within the same process.
    A failing handler is logged and does not stop the others.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Subscribe to events of a specific type"""
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type.value}")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        """Unsubscribe handler from events"""
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type.value}")

    def publish(self, event: EventMessage) -> int:
        """
        Publish an event to all subscribers
        Returns: number of handlers that handled the event
        """
        self._logger.debug(f"Publishing event: {event.event_type.value} (ID: {event.message_id})")

        handled = 0
        for handler in list(self._subscribers.get(event.event_type, [])):
            if not handler.can_handle(event):
                continue
            try:
                handler.handle(event)
                handled += 1
            except Exception as e:
                self._logger.error(
                    f"Error handling event {event.event_type.value} "
                    f"with {handler.__class__.__name__}: {e}"
                )
        return handled

    def clear_subscribers(self) -> None:
        """Clear all subscribers (for testing)"""
        self._subscribers.clear()


# ============================================================================
# MESSAGE QUEUE ABSTRACTIONS
# ============================================================================

class MessageQueue(ABC):
    """Abstract base class for message queues"""

    @abstractmethod
    def publish(self, topic: str, message: Message) -> bool:
        """Publish a message to a topic"""
        pass

    @abstractmethod
    def subscribe(self, topic: str, callback: Callable[[Message], None]) -> str:
        """Subscribe to messages from a topic"""
        pass

    @abstractmethod
    def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe from a topic"""
        pass

    def close(self) -> None:
        """Release connections"""
        pass


# ============================================================================
# REDIS MESSAGE QUEUE
# ============================================================================

class RedisMessageQueue(MessageQueue):
    """Redis-based message queue using Pub/Sub"""

    def __init__(self, redis_url: str = "redis://localhost:6379", **kwargs):
        self.redis_url = redis_url
        self._logger = logging.getLogger(self.__class__.__name__)

        # Redis connection
        self.redis_client = redis.Redis.from_url(redis_url, **kwargs)
        self.pubsub = self.redis_client.pubsub()

        # Subscription tracking
        self._subscriptions: Dict[str, str] = {}  # subscription_id -> topic
        self._callbacks: Dict[str, Callable[[Message], None]] = {}
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def publish(self, topic: str, message: Message) -> bool:
        """Publish a message to a Redis channel"""
        try:
            receivers = self.redis_client.publish(topic, message.to_json())
            self._logger.debug(f"Published message to {topic}: {message.message_id}")
            return receivers > 0
        except RedisError as e:
            self._logger.warning(f"Error publishing to Redis: {e}")
            return False

    def subscribe(self, topic: str, callback: Callable[[Message], None]) -> str:
        """Subscribe to a Redis channel"""
        subscription_id = str(uuid4())

        self._subscriptions[subscription_id] = topic
        self._callbacks[subscription_id] = callback
        self.pubsub.subscribe(topic)

        if not self._running:
            self._start_listener()

        self._logger.debug(f"Subscribed to {topic} with ID {subscription_id}")
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Unsubscribe from a Redis channel"""
        if subscription_id not in self._subscriptions:
            return False

        topic = self._subscriptions.pop(subscription_id)
        del self._callbacks[subscription_id]

        # Unsubscribe from Redis if no more subscribers for this topic
        if topic not in self._subscriptions.values():
            self.pubsub.unsubscribe(topic)
            self._logger.debug(f"Unsubscribed from {topic}")

        return True

    def _start_listener(self):
        """Start the Redis message listener in a separate thread"""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._listen, daemon=True)
        self._thread.start()
        self._logger.info("Started Redis message listener")

    def _listen(self):
        """Listen for Redis messages"""
        while self._running:
            try:
                message = self.pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message and message['type'] == 'message':
                    self._handle_message(message)
            except RedisError as e:
                self._logger.error(f"Error in Redis listener: {e}")
                time.sleep(1)  # Avoid tight loop on error

    def _handle_message(self, redis_message: Dict[str, Any]):
        """Dispatch an incoming Redis message to the topic's callbacks"""
        topic = redis_message['channel']
        data = redis_message['data']
        if isinstance(topic, bytes):
            topic = topic.decode('utf-8')
        if isinstance(data, bytes):
            data = data.decode('utf-8')

        try:
            payload = json.loads(data)
            if payload.get('message_type') == MessageType.DOMAIN_EVENT.value:
                message = EventMessage.from_dict(payload)
            else:
                message = Message.from_dict(payload)
        except (ValueError, KeyError, TypeError) as e:
            self._logger.error(f"Discarding malformed message on {topic}: {e}")
            return

        for subscription_id, callback_topic in list(self._subscriptions.items()):
            if callback_topic != topic:
                continue
            try:
                self._callbacks[subscription_id](message)
            except Exception as e:
                self._logger.error(f"Error in callback for subscription {subscription_id}: {e}")

    def close(self):
        """Close Redis connections"""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5.0)

        self.pubsub.close()
        self.redis_client.close()
        self._logger.info("Redis message queue closed")


# ============================================================================
# IN-MEMORY MESSAGE QUEUE (For Testing)
# ============================================================================

class InMemoryMessageQueue(MessageQueue):
    """In-memory message queue for testing"""

    def __init__(self):
        self._messages: Dict[str, List[Message]] = {}
        self._subscriptions: Dict[str, tuple] = {}  # subscription_id -> (topic, callback)
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, topic: str, message: Message) -> bool:
        """Publish message to in-memory topic"""
        self._messages.setdefault(topic, []).append(message)

        for subscription_id, (callback_topic, callback) in list(self._subscriptions.items()):
            if callback_topic != topic:
                continue
            try:
                callback(message)
            except Exception as e:
                self._logger.error(f"Error in callback for topic {topic}: {e}")

        self._logger.debug(f"Published to {topic}: {message.message_id}")
        return True

    def subscribe(self, topic: str, callback: Callable[[Message], None]) -> str:
        subscription_id = str(uuid4())
        self._subscriptions[subscription_id] = (topic, callback)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    def get_messages(self, topic: str) -> List[Message]:
        """Get all messages for a topic (for testing)"""
        return list(self._messages.get(topic, []))

    def clear(self):
        """Clear all messages and subscriptions (for testing)"""
        self._messages.clear()
        self._subscriptions.clear()


# ============================================================================
# EVENT PUBLISHER
# ============================================================================

class EventPublisher:
    """
    Publishes rule engine domain events
    Every event goes to the in-process bus, then to the queue channel if one
    is configured.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        message_queue: Optional[MessageQueue] = None,
        channel: str = "levelpark.events"
    ):
        self.event_bus = event_bus or EventBus()
        self.message_queue = message_queue
        self.channel = channel
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, event: DomainEvent) -> EventMessage:
        message = EventMessage.from_domain_event(event)
        self.event_bus.publish(message)
        if self.message_queue is not None:
            self.message_queue.publish(self.channel, message)
        self._logger.debug(f"Published {message.event_type.value} ({message.message_id})")
        return message

    def close(self) -> None:
        if self.message_queue is not None:
            self.message_queue.close()


class MessageBrokerFactory:
    """Factory for creating event publishers"""

    @staticmethod
    def create_event_publisher(
        redis_url: Optional[str] = None,
        channel: str = "levelpark.events"
    ) -> EventPublisher:
        """In-process publisher, with a Redis channel when a URL is given"""
        queue = RedisMessageQueue(redis_url) if redis_url else None
        return EventPublisher(EventBus(), queue, channel)
