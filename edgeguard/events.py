"""
Governance Event Bus

In-process publish/subscribe channel for governance events. Decisions,
alerts and config reloads are published here so that dashboards, recorders
and the execution layer can react without sitting on the hot path.

Without a running dispatcher thread events are delivered inline, which keeps
tests deterministic. After start() delivery happens on a background thread.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Callable
from collections import defaultdict, deque
import threading
import logging
import uuid

from .clock import Clock, SystemClock

LOG = logging.getLogger(__name__)


class EventType(Enum):
    """Governance event types"""
    DECISION_MADE = "decision_made"
    ROUTE_BLOCKED = "route_blocked"
    ALERT_RAISED = "alert_raised"
    CONFIG_RELOADED = "config_reloaded"
    HEALTH_EVALUATED = "health_evaluated"


@dataclass
class Event:
    """Governance event. An unset timestamp is stamped from the bus clock on publish."""
    event_type: EventType
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: Optional[datetime] = None
    symbol: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class GovernanceEventBus:
    """Thread-safe event bus with optional background dispatch"""

    def __init__(self, buffer_size: int = 10000, clock: Optional[Clock] = None):
        self.buffer_size = buffer_size
        self.clock = clock or SystemClock()
        self._buffer: deque = deque(maxlen=buffer_size)
        self._subscribers: Dict[EventType, List[dict]] = defaultdict(list)
        self._running = False
        self._dispatcher_thread: Optional[threading.Thread] = None
        self._wakeup = threading.Event()
        self._lock = threading.RLock()
        self._events_published = 0
        self._events_dispatched = 0
        self._events_dropped = 0
        self._callback_failures = 0

    def start(self):
        """Start background dispatcher"""
        if self._running:
            return
        self._running = True
        self._dispatcher_thread = threading.Thread(
            target=self._dispatch_loop,
            name="GovernanceEventDispatcher",
            daemon=True
        )
        self._dispatcher_thread.start()
        LOG.info("GovernanceEventBus started")

    def stop(self):
        """Stop dispatcher and flush what is buffered"""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        if self._dispatcher_thread:
            self._dispatcher_thread.join(timeout=5.0)
        self._drain()
        LOG.info("GovernanceEventBus stopped")

    def publish(self, event: Event) -> bool:
        """Publish event. Returns False when the buffer was full."""
        if event.timestamp is None:
            event.timestamp = self.clock.now()
        with self._lock:
            self._events_published += 1
            if self._running:
                if len(self._buffer) >= self.buffer_size:
                    self._events_dropped += 1
                    return False
                self._buffer.append(event)
                self._wakeup.set()
                return True

        # No dispatcher: deliver inline
        self._dispatch_event(event)
        return True

    def subscribe(self, event_type: EventType, callback: Callable[[Event], None],
                  symbols: Optional[List[str]] = None) -> int:
        """Subscribe to an event type, optionally filtered by symbol"""
        subscriber = {'callback': callback, 'symbols': set(symbols) if symbols else None}
        with self._lock:
            self._subscribers[event_type].append(subscriber)
            return len(self._subscribers[event_type]) - 1

    def _dispatch_loop(self):
        while self._running:
            self._wakeup.wait(0.05)
            self._wakeup.clear()
            self._drain()

    def _drain(self):
        while True:
            with self._lock:
                if not self._buffer:
                    return
                event = self._buffer.popleft()
            self._dispatch_event(event)

    def _dispatch_event(self, event: Event):
        with self._lock:
            subscribers = list(self._subscribers.get(event.event_type, []))
        for sub in subscribers:
            if sub['symbols'] is None or (event.symbol and event.symbol in sub['symbols']):
                try:
                    sub['callback'](event)
                    self._events_dispatched += 1
                except Exception as e:
                    # Subscribers never break the publisher
                    self._callback_failures += 1
                    LOG.error(f"Subscriber callback failed for {event.event_type.value}: {e}")

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'events_published': self._events_published,
                'events_dispatched': self._events_dispatched,
                'events_dropped': self._events_dropped,
                'callback_failures': self._callback_failures,
                'buffer_depth': len(self._buffer),
                'running': self._running
            }
