"""
Governance Validation

Infrastructure checks that sit beside the strategy gates:

- Unit consistency: ATR, spread and friction must be in the same price
  units, otherwise every ratio downstream is meaningless.
- Symbol mapping: the display symbol must resolve in the live price feed
  or the symbol registry.
- Shadow-mode guard: nothing may reach execution while the short engine is
  shadow-only.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional
import logging
import threading

from .schemas import MarketContext
from ..alerts import AlertKind, AlertSink
from ..symbols import to_display_symbol

LOG = logging.getLogger(__name__)

FRICTION_RATIO_MIN = 0.5
FRICTION_RATIO_MAX = 50.0
FRICTION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class UnitValidationResult:
    valid: bool
    failures: List[str] = field(default_factory=list)

    @property
    def first_failure(self) -> Optional[str]:
        return self.failures[0] if self.failures else None


def validate_unit_consistency(ctx: MarketContext) -> UnitValidationResult:
    """Check ATR/spread/friction figures share units"""
    failures = []

    if ctx.atr_value <= 0:
        failures.append(f"ATR non-positive ({ctx.atr_value})")
    if ctx.spread < 0:
        failures.append(f"Negative spread ({ctx.spread})")
    if ctx.price_data_available and ctx.spread > 0:
        if not (FRICTION_RATIO_MIN <= ctx.friction_ratio <= FRICTION_RATIO_MAX):
            failures.append(
                f"Friction ratio {ctx.friction_ratio:.2f} outside "
                f"[{FRICTION_RATIO_MIN}, {FRICTION_RATIO_MAX}]"
            )
    expected_total = ctx.spread + ctx.slippage_estimate
    if abs(ctx.total_friction - expected_total) > FRICTION_TOLERANCE:
        failures.append(
            f"Total friction {ctx.total_friction} != spread + slippage {expected_total}"
        )

    return UnitValidationResult(valid=not failures, failures=failures)


@dataclass(frozen=True)
class SymbolMappingResult:
    valid: bool
    display_symbol: str
    in_price_feed: bool
    in_registry: bool


def verify_symbol_mapping(
    symbol: str,
    price_symbols: Iterable[str],
    registry: Iterable[str],
) -> SymbolMappingResult:
    display = to_display_symbol(symbol)
    in_feed = display in set(price_symbols)
    in_registry = display in set(registry)
    return SymbolMappingResult(
        valid=in_feed or in_registry,
        display_symbol=display,
        in_price_feed=in_feed,
        in_registry=in_registry,
    )


class ShadowModeGuard:
    """
    Counts attempts to execute while shadow-only is active.

    The execution layer calls assert_not_shadow_mode() right before placing
    an order; a False return means the order must be dropped.
    """

    def __init__(self, alerts: Optional[AlertSink] = None):
        self.alerts = alerts
        self._violations = 0
        self._lock = threading.Lock()

    def report_violation(self, context: dict):
        with self._lock:
            self._violations += 1
            count = self._violations
        LOG.critical(f"Shadow-mode execution violation #{count}: {context}")
        if self.alerts is not None:
            self.alerts.emit(AlertKind.SHADOW_MODE_EXECUTION_VIOLATION, {**context, 'violation_count': count})

    def assert_not_shadow_mode(self, shadow_only: bool, context: Optional[dict] = None) -> bool:
        if shadow_only:
            self.report_violation(context or {})
            return False
        return True

    def verify(self) -> bool:
        """True while no violation has been recorded"""
        with self._lock:
            return self._violations == 0

    @property
    def violation_count(self) -> int:
        with self._lock:
            return self._violations

    def reset(self):
        with self._lock:
            self._violations = 0
