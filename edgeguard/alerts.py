"""
Governance Alert Sink

Typed alerts raised by analytics, validation, routing and the decision
logger. Alerts are kept in a bounded in-memory history (oldest evicted)
that can be queried by kind and recency window, fanned out to in-process
subscribers, and optionally forwarded to Slack / PagerDuty.

Forwarding is best-effort and runs on a background worker: a failed webhook
is logged and never reaches the code that emitted the alert.
"""

import threading
import logging
import uuid
import requests
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set
from collections import deque

from .clock import Clock, SystemClock
from .events import Event, EventType, GovernanceEventBus

LOG = logging.getLogger(__name__)


class AlertKind(str, Enum):
    """Closed set of alert kinds"""
    NEUTRAL_RATE_SPIKE = "neutral_rate_spike"
    DATA_AVAILABILITY_DEGRADATION = "data_availability_degradation"
    UNIT_CONSISTENCY_FAILURE = "unit_consistency_failure"
    SHADOW_MODE_EXECUTION_VIOLATION = "shadow_mode_execution_violation"
    SYMBOL_MAPPING_FAILURE = "symbol_mapping_failure"
    ROUTER_INTEGRITY_VIOLATION = "router_integrity_violation"
    SHADOW_PERSISTENCE_FAILURE = "shadow_persistence_failure"
    DEGRADATION_DETECTED = "degradation_detected"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


ALERT_SEVERITY: Dict[AlertKind, AlertSeverity] = {
    AlertKind.NEUTRAL_RATE_SPIKE: AlertSeverity.WARNING,
    AlertKind.DATA_AVAILABILITY_DEGRADATION: AlertSeverity.WARNING,
    AlertKind.UNIT_CONSISTENCY_FAILURE: AlertSeverity.WARNING,
    AlertKind.SHADOW_MODE_EXECUTION_VIOLATION: AlertSeverity.CRITICAL,
    AlertKind.SYMBOL_MAPPING_FAILURE: AlertSeverity.WARNING,
    AlertKind.ROUTER_INTEGRITY_VIOLATION: AlertSeverity.CRITICAL,
    AlertKind.SHADOW_PERSISTENCE_FAILURE: AlertSeverity.WARNING,
    AlertKind.DEGRADATION_DETECTED: AlertSeverity.WARNING,
}


@dataclass(frozen=True)
class GovernanceAlert:
    """A single emitted alert"""
    kind: AlertKind
    timestamp_ms: int
    severity: AlertSeverity
    details: Dict[str, Any] = field(default_factory=dict)
    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            'alert_id': self.alert_id,
            'kind': self.kind.value,
            'timestamp_ms': self.timestamp_ms,
            'severity': self.severity.value,
            'details': dict(self.details),
        }


@dataclass
class AlertConfig:
    """Alert forwarding configuration"""
    slack_webhook: Optional[str] = None
    pagerduty_routing_key: Optional[str] = None

    # Only alerts at or above this severity leave the process
    forward_min_severity: AlertSeverity = AlertSeverity.CRITICAL

    # Same kind is forwarded at most once per window
    dedup_window_seconds: float = 300.0


class AlertSink:
    """
    Bounded, thread-safe alert history with subscribers.

    One sink is owned per GovernanceEngine (no module-level singleton), so
    tests and tenants never see each other's alerts.
    """

    def __init__(
        self,
        max_history: int = 500,
        clock: Optional[Clock] = None,
        config: Optional[AlertConfig] = None,
        event_bus: Optional[GovernanceEventBus] = None,
    ):
        self.max_history = max_history
        self.clock = clock or SystemClock()
        self.config = config or AlertConfig()
        self.event_bus = event_bus
        self._history: deque = deque(maxlen=max_history)
        self._subscribers: List[Callable[[GovernanceAlert], None]] = []
        self._lock = threading.RLock()

        self._forwarded_keys: Set[str] = set()
        self._last_dedup_reset_ms = self.clock.now_ms()

        # Webhook posts run off the emitting thread
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="AlertForwarder")
        self._pending: List[Future] = []
        self._closed = False

    # ========================================
    # EMIT
    # ========================================

    def emit(self, kind: AlertKind, details: Optional[Dict[str, Any]] = None) -> GovernanceAlert:
        """Record an alert and notify subscribers"""
        kind = AlertKind(kind)
        alert = GovernanceAlert(
            kind=kind,
            timestamp_ms=self.clock.now_ms(),
            severity=ALERT_SEVERITY[kind],
            details=dict(details or {}),
        )

        with self._lock:
            self._history.append(alert)
            subscribers = list(self._subscribers)

        if alert.severity == AlertSeverity.CRITICAL:
            LOG.critical(f"[GOV-ALERT] {kind.value}: {alert.details}")
        else:
            LOG.warning(f"[GOV-ALERT] {kind.value}: {alert.details}")

        for callback in subscribers:
            try:
                callback(alert)
            except Exception as e:
                LOG.error(f"Alert subscriber failed for {kind.value}: {e}")

        if self.event_bus is not None:
            self.event_bus.publish(Event(
                event_type=EventType.ALERT_RAISED,
                data=alert.to_dict(),
            ))

        self._forward(alert)
        return alert

    def subscribe(self, callback: Callable[[GovernanceAlert], None]):
        with self._lock:
            self._subscribers.append(callback)

    # ========================================
    # QUERY
    # ========================================

    def get_recent_alerts(self, count: int = 50) -> List[GovernanceAlert]:
        with self._lock:
            return list(self._history)[-count:]

    def get_alerts(
        self,
        kind: Optional[AlertKind] = None,
        within_ms: Optional[int] = None,
    ) -> List[GovernanceAlert]:
        """Alerts filtered by kind and/or recency window (oldest first)"""
        with self._lock:
            alerts = list(self._history)
        if kind is not None:
            kind = AlertKind(kind)
            alerts = [a for a in alerts if a.kind == kind]
        if within_ms is not None:
            cutoff = self.clock.now_ms() - within_ms
            alerts = [a for a in alerts if a.timestamp_ms >= cutoff]
        return alerts

    def get_alert_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for alert in self._history:
                counts[alert.kind.value] = counts.get(alert.kind.value, 0) + 1
        return counts

    def clear(self):
        with self._lock:
            self._history.clear()
            self._forwarded_keys.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    # ========================================
    # FORWARDING
    # ========================================

    def _should_forward(self, alert: GovernanceAlert) -> bool:
        if not (self.config.slack_webhook or self.config.pagerduty_routing_key):
            return False
        order = [AlertSeverity.INFO, AlertSeverity.WARNING, AlertSeverity.CRITICAL]
        if order.index(alert.severity) < order.index(self.config.forward_min_severity):
            return False

        with self._lock:
            now_ms = self.clock.now_ms()
            if now_ms - self._last_dedup_reset_ms > self.config.dedup_window_seconds * 1000:
                self._forwarded_keys.clear()
                self._last_dedup_reset_ms = now_ms
            if alert.kind.value in self._forwarded_keys:
                LOG.debug(f"Alert forward suppressed (duplicate): {alert.kind.value}")
                return False
            self._forwarded_keys.add(alert.kind.value)
            return True

    def _forward(self, alert: GovernanceAlert):
        if not self._should_forward(alert):
            return
        with self._lock:
            if self._closed:
                LOG.warning(f"Alert sink is shut down, not forwarding {alert.kind.value}")
                return
            future = self._executor.submit(self._deliver, alert)
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _deliver(self, alert: GovernanceAlert):
        message = self._build_message(alert)
        if self.config.slack_webhook:
            self._send_slack(message, alert)
        if self.config.pagerduty_routing_key:
            self._send_pagerduty(message, alert)

    def flush(self, timeout: Optional[float] = 10.0):
        """Wait for queued webhook deliveries"""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.flush()
        self._executor.shutdown(wait=True)

    def _build_message(self, alert: GovernanceAlert) -> str:
        message = f"{alert.severity.value.upper()} Governance Alert\n\n"
        message += f"Kind: {alert.kind.value}\n"
        message += f"Time (ms): {alert.timestamp_ms}\n"
        if alert.details:
            message += "\nDetails:\n"
            for key, value in alert.details.items():
                message += f"  {key}: {value}\n"
        return message

    def _send_slack(self, message: str, alert: GovernanceAlert):
        try:
            color = "danger" if alert.severity == AlertSeverity.CRITICAL else "warning"
            payload = {
                "text": message,
                "attachments": [{
                    "color": color,
                    "text": message,
                    "footer": "edgeguard governance",
                    "ts": int(alert.timestamp_ms / 1000)
                }]
            }
            response = requests.post(self.config.slack_webhook, json=payload, timeout=5.0)
            response.raise_for_status()
            LOG.debug("Slack alert sent successfully")
        except Exception as e:
            LOG.error(f"Failed to send Slack alert: {e}")

    def _send_pagerduty(self, message: str, alert: GovernanceAlert):
        try:
            payload = {
                "routing_key": self.config.pagerduty_routing_key,
                "event_action": "trigger",
                "dedup_key": f"edgeguard_{alert.kind.value}",
                "payload": {
                    "summary": f"Governance alert: {alert.kind.value}",
                    "severity": "critical" if alert.severity == AlertSeverity.CRITICAL else "warning",
                    "source": "edgeguard",
                    "custom_details": {"message": message, **alert.details}
                }
            }
            response = requests.post(
                "https://events.pagerduty.com/v2/enqueue",
                json=payload,
                timeout=5.0
            )
            response.raise_for_status()
            LOG.debug("PagerDuty alert sent successfully")
        except Exception as e:
            LOG.error(f"Failed to send PagerDuty alert: {e}")
