"""
Alert Engine
Rule evaluation over live prices and computed metrics.

Alerts are immutable records; every change (trigger, re-arm, toggle,
update) produces a new record through a transition method. The engine is
the single writer of its alert table. Cooldown re-arming of repeating
alerts goes through a Scheduler that hands back cancellable handles, so
removing an alert or closing the engine leaves no timer behind.

Lifecycle:
    armed (enabled, not triggered) --match--> triggered
      non-repeating: enabled=False, stays triggered
      repeating:     triggered=False again after cooldown_ms
"""

import asyncio
import json
import logging
import os
import threading
import time
import uuid
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from .calculations import is_finite
from .errors import InvalidInput
from .indicator_config import DEFAULT_CONFIG, AlertDefaults
from .signals import signal_value

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class AlertType(Enum):
    PRICE = "price"
    INDICATOR = "indicator"
    VOLUME = "volume"  # reserved, never evaluated
    OFI = "ofi"
    SIGNAL = "signal"
    LIQUIDATION = "liquidation"

    def __str__(self) -> str:
        return self.value


class AlertCondition(Enum):
    """Comparison conditions. Indicator alerts use the indicator key instead."""
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"

    def __str__(self) -> str:
        return self.value


AlertValue = Union[float, str]


# =============================================================================
# ALERT RECORDS
# =============================================================================


@dataclass(frozen=True)
class Alert:
    """Immutable alert definition plus its current trigger state."""

    id: str
    symbol: str
    type: AlertType
    condition: str  # AlertCondition value, or indicator key for INDICATOR alerts
    value: AlertValue
    created_at: float
    message: str = ""
    enabled: bool = True
    triggered: bool = False
    last_triggered: Optional[float] = None
    repeating: bool = False
    cooldown_ms: float = DEFAULT_CONFIG.alerts.cooldown_ms
    sound_enabled: bool = False
    notification_enabled: bool = True

    @property
    def is_armed(self) -> bool:
        return self.enabled and not self.triggered

    def fired(self, now: float) -> "Alert":
        """Triggered copy; non-repeating alerts are disabled for good."""
        return replace(
            self,
            triggered=True,
            last_triggered=now,
            enabled=self.enabled if self.repeating else False,
        )

    def rearmed(self) -> "Alert":
        return replace(self, triggered=False)

    def toggled(self) -> "Alert":
        return replace(self, enabled=not self.enabled)

    def updated(self, **changes: Any) -> "Alert":
        for frozen_field in ("id", "created_at"):
            if frozen_field in changes:
                raise InvalidInput(f"{frozen_field} cannot be changed", field_name=frozen_field)
        if "type" in changes:
            changes["type"] = AlertType(changes["type"])
        return replace(self, **changes)

    def describe(self) -> str:
        """Message for notifications, falling back to a generated one."""
        if self.message:
            return self.message
        return f"{self.symbol} {self.type.value} {self.condition} {self.value}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Alert":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["type"] = AlertType(kwargs["type"])
        return cls(**kwargs)


@dataclass(frozen=True)
class AlertHistoryRecord:
    """Copy of an alert taken when it fired."""

    alert: Alert
    triggered_at: float
    message: str


# =============================================================================
# SCHEDULERS
# =============================================================================


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> ScheduledHandle: ...


class ThreadingScheduler:
    """Runs callbacks on daemon threading.Timer threads."""

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay_seconds, callback)
        timer.daemon = True
        timer.start()
        return timer


class LoopTimerHandle:
    """Cancellable handle for a call_later armed from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._lock = threading.Lock()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._cancelled = False

    def _arm(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._cancelled:
                self._timer = self._loop.call_later(delay_seconds, callback)

    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            timer, self._timer = self._timer, None
        if timer is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(timer.cancel)


class AsyncioScheduler:
    """
    Runs callbacks on an asyncio event loop.

    The loop is bound at construction: pass one explicitly, or build the
    scheduler from code already running inside the loop. `schedule` is safe
    to call from any thread.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()

    def schedule(self, delay_seconds: float, callback: Callable[[], None]) -> LoopTimerHandle:
        handle = LoopTimerHandle(self._loop)
        self._loop.call_soon_threadsafe(handle._arm, delay_seconds, callback)
        return handle


# =============================================================================
# CONDITION EVALUATION
# =============================================================================


def compare(observed: float, condition: str, target: float, tolerance: float = 0.01) -> bool:
    """Apply an above/below/equals condition; unknown conditions never match."""
    if condition == AlertCondition.ABOVE.value:
        return observed > target
    if condition == AlertCondition.BELOW.value:
        return observed < target
    if condition == AlertCondition.EQUALS.value:
        return abs(observed - target) < tolerance
    return False


def evaluate_alert(
    alert: Alert,
    price: float,
    indicators: Optional[Mapping[str, Any]] = None,
    tolerance: float = 0.01,
) -> bool:
    """True when the alert's condition holds for this price / metric set."""
    indicators = indicators or {}

    if alert.type is AlertType.PRICE:
        if not (is_finite(price) and is_finite(alert.value)):
            return False
        return compare(price, alert.condition, alert.value, tolerance)

    if alert.type is AlertType.INDICATOR:
        current = indicators.get(alert.condition)
        if not (is_finite(current) and is_finite(alert.value)):
            return False
        return current >= alert.value

    if alert.type in (AlertType.OFI, AlertType.LIQUIDATION):
        current = indicators.get(alert.type.value)
        if not (is_finite(current) and is_finite(alert.value)):
            return False
        return compare(current, alert.condition, alert.value, tolerance)

    if alert.type is AlertType.SIGNAL:
        current = indicators.get("signal")
        if current is None or not isinstance(alert.value, str):
            return False
        return signal_value(current) == alert.value

    # VOLUME is reserved
    return False


# =============================================================================
# ENGINE
# =============================================================================

Notifier = Callable[[Alert, str], None]
SoundPlayer = Callable[[Alert], None]


class AlertEngine:
    """
    Owns the alert table, trigger history and cooldown handles.

    Example:
        engine = AlertEngine(scheduler=AsyncioScheduler())
        alert_id = engine.add_alert("BTCUSDT", AlertType.PRICE, "above", 100_000)
        engine.check_alerts("BTCUSDT", 100_250.0)  # [alert_id]
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        notifier: Optional[Notifier] = None,
        sound_player: Optional[SoundPlayer] = None,
        clock: Optional[Clock] = None,
        config: Optional[AlertDefaults] = None,
    ):
        self.config = config or DEFAULT_CONFIG.alerts
        self._scheduler = scheduler or ThreadingScheduler()
        self._notifier = notifier
        self._sound_player = sound_player
        self._clock = clock or (lambda: time.time() * 1000)
        self._lock = threading.RLock()

        self._alerts: Dict[str, Alert] = {}
        self._history: List[AlertHistoryRecord] = []
        self._cooldowns: Dict[str, ScheduledHandle] = {}

    # ---- table management ----

    def _new_id(self) -> str:
        return f"alert_{int(self._clock())}_{uuid.uuid4().hex[:7]}"

    def add_alert(
        self,
        symbol: str,
        alert_type: Union[AlertType, str],
        condition: Union[AlertCondition, str],
        value: AlertValue,
        message: str = "",
        repeating: bool = False,
        cooldown_ms: Optional[float] = None,
        sound_enabled: bool = False,
        notification_enabled: bool = True,
        enabled: bool = True,
    ) -> str:
        """Register an alert and return its engine-assigned id."""
        condition_key = condition.value if isinstance(condition, AlertCondition) else str(condition)
        alert = Alert(
            id=self._new_id(),
            symbol=symbol,
            type=AlertType(alert_type),
            condition=condition_key,
            value=value,
            created_at=self._clock(),
            message=message,
            enabled=enabled,
            repeating=repeating,
            cooldown_ms=self.config.cooldown_ms if cooldown_ms is None else cooldown_ms,
            sound_enabled=sound_enabled,
            notification_enabled=notification_enabled,
        )
        with self._lock:
            self._alerts[alert.id] = alert
        logger.debug(f"Added {alert.type} alert {alert.id} for {symbol}")
        return alert.id

    def remove_alert(self, alert_id: str) -> bool:
        with self._lock:
            self._cancel_cooldown(alert_id)
            return self._alerts.pop(alert_id, None) is not None

    def toggle_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            alert = alert.toggled()
            self._alerts[alert_id] = alert
            return alert

    def update_alert(self, alert_id: str, **changes: Any) -> Optional[Alert]:
        """Apply field changes; id and created_at are immutable."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            alert = alert.updated(**changes)
            self._alerts[alert_id] = alert
            return alert

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            return self._alerts.get(alert_id)

    def get_alerts(self) -> List[Alert]:
        with self._lock:
            return list(self._alerts.values())

    def alerts_for_symbol(self, symbol: str) -> List[Alert]:
        return [a for a in self.get_alerts() if a.symbol == symbol]

    def active_alerts(self) -> List[Alert]:
        return [a for a in self.get_alerts() if a.is_armed]

    def history(self) -> List[AlertHistoryRecord]:
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history = []

    def clear_alerts(self) -> None:
        with self._lock:
            self._cancel_all()
            self._alerts = {}

    def load_alerts(self, records: Iterable[Mapping[str, Any]]) -> List[Alert]:
        """Replace the table with persisted alerts, all untriggered."""
        alerts = deserialize_alerts(records)
        with self._lock:
            self._cancel_all()
            self._alerts = {a.id: a for a in alerts}
        logger.info(f"Loaded {len(alerts)} alerts")
        return alerts

    def close(self) -> None:
        """Cancel all pending cooldown resets."""
        with self._lock:
            self._cancel_all()

    # ---- evaluation ----

    def check_alerts(
        self,
        symbol: str,
        price: float,
        indicators: Optional[Mapping[str, Any]] = None,
    ) -> List[str]:
        """Evaluate armed alerts for `symbol`; returns ids that fired."""
        fired: List[Alert] = []
        with self._lock:
            for alert in list(self._alerts.values()):
                if alert.symbol != symbol or not alert.is_armed:
                    continue
                if not evaluate_alert(alert, price, indicators, self.config.equals_tolerance):
                    continue
                fired.append(self._trigger(alert))

        # Side effects run outside the lock and never affect state
        for alert in fired:
            self._dispatch(alert)
        return [a.id for a in fired]

    def _trigger(self, alert: Alert) -> Alert:
        now = self._clock()
        triggered = alert.fired(now)
        self._alerts[alert.id] = triggered

        self._history.append(AlertHistoryRecord(alert=triggered, triggered_at=now, message=triggered.describe()))
        overflow = len(self._history) - self.config.history_limit
        if overflow > 0:
            del self._history[:overflow]

        if triggered.repeating:
            self._start_cooldown(triggered)

        logger.info(f"Alert {alert.id} triggered: {triggered.describe()}")
        return triggered

    def _start_cooldown(self, alert: Alert) -> None:
        self._cancel_cooldown(alert.id)
        try:
            self._cooldowns[alert.id] = self._scheduler.schedule(
                alert.cooldown_ms / 1000, lambda alert_id=alert.id: self._rearm(alert_id)
            )
        except Exception as exc:
            # Alert stays triggered until the table is reloaded
            logger.error(f"Could not schedule cooldown for alert {alert.id}: {exc}")

    def _rearm(self, alert_id: str) -> None:
        with self._lock:
            self._cooldowns.pop(alert_id, None)
            alert = self._alerts.get(alert_id)
            if alert is None or not alert.triggered:
                return
            self._alerts[alert_id] = alert.rearmed()
        logger.debug(f"Alert {alert_id} re-armed after cooldown")

    def _dispatch(self, alert: Alert) -> None:
        message = alert.describe()
        if alert.notification_enabled and self._notifier is not None:
            try:
                self._notifier(alert, message)
            except Exception as exc:
                logger.warning(f"Notification for alert {alert.id} failed: {exc}")
        if alert.sound_enabled and self._sound_player is not None:
            try:
                self._sound_player(alert)
            except Exception as exc:
                logger.warning(f"Alert sound for {alert.id} failed: {exc}")

    def _cancel_cooldown(self, alert_id: str) -> None:
        handle = self._cooldowns.pop(alert_id, None)
        if handle is not None:
            handle.cancel()

    def _cancel_all(self) -> None:
        for handle in self._cooldowns.values():
            handle.cancel()
        self._cooldowns = {}


# =============================================================================
# PERSISTENCE
# =============================================================================


def serialize_alerts(alerts: Iterable[Alert]) -> List[Dict[str, Any]]:
    return [alert.to_dict() for alert in alerts]


def deserialize_alerts(records: Iterable[Mapping[str, Any]]) -> List[Alert]:
    """Rebuild alerts from stored dicts; `triggered` is always reset."""
    return [replace(Alert.from_dict(record), triggered=False) for record in records]


class AlertStorage:
    """JSON file holding the persisted alert list."""

    def __init__(self, path: str):
        self.path = path

    def save(self, alerts: Iterable[Alert]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        payload = {"version": 1, "alerts": serialize_alerts(alerts)}
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle)

    def load(self) -> List[Alert]:
        """Stored alerts, untriggered. Missing or unreadable file gives []."""
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                payload = json.load(handle)
            return deserialize_alerts(payload.get("alerts", []))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Failed to load alerts from {self.path}: {exc}")
            return []
