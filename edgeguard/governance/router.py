"""
Engine Router

Routes a proposal to the long or short engine and enforces isolation:

- Long always goes to the long engine, regardless of config.
- Short is blocked, in order, by: long-only override, short engine disabled,
  pair not short-enabled, agent not authorized, session not allowed.

Integrity (long never on SHORT_ENGINE, short never on LONG_ENGINE) is checked
separately. A violation is a bug, not a business outcome: it is logged at
CRITICAL, raised as an alert, and raised as RouterIntegrityError in strict
mode.
"""

from typing import Optional
import logging

from .config import EngineConfig
from .context import detect_session
from .schemas import Direction, EngineTarget, LiquiditySession, RouterDecision
from ..alerts import AlertKind, AlertSink
from ..clock import Clock, SystemClock
from ..errors import RouterIntegrityError
from ..symbols import to_canonical_symbol

LOG = logging.getLogger(__name__)


def route(
    direction: Direction,
    symbol: str,
    agent_id: str,
    config: EngineConfig,
    session: LiquiditySession,
) -> RouterDecision:
    """Pure routing decision for an explicit session"""
    direction = Direction(direction)

    if direction == Direction.LONG:
        return RouterDecision(EngineTarget.LONG_ENGINE, "Long direction: long engine", direction)

    pair = to_canonical_symbol(symbol)

    if config.long_only_override:
        return RouterDecision(EngineTarget.BLOCKED, "Long-only override active", direction)
    if not config.enabled:
        return RouterDecision(EngineTarget.BLOCKED, "Short engine disabled", direction)
    if not config.is_pair_enabled(pair):
        return RouterDecision(EngineTarget.BLOCKED, f"{pair} not in short-enabled pairs", direction)
    if agent_id not in config.allowed_agents:
        return RouterDecision(EngineTarget.BLOCKED, f"Agent {agent_id} not authorized for shorts", direction)

    sessions = config.sessions_for(pair)
    if sessions is not None and session not in sessions:
        return RouterDecision(
            EngineTarget.BLOCKED,
            f"Session {session.value} not allowed for {pair} shorts",
            direction,
        )

    mode = "shadow" if config.shadow_only else "live"
    return RouterDecision(
        EngineTarget.SHORT_ENGINE,
        f"Short routed to short engine ({mode})",
        direction,
        shadow_only=config.shadow_only,
    )


class EngineRouter:
    """Stateful wrapper: reads the session from the clock and audits integrity"""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        alerts: Optional[AlertSink] = None,
        strict: bool = False,
    ):
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.alerts = alerts
        self.strict = strict
        self.violation_count = 0

    def update_config(self, config: EngineConfig):
        self.config = config

    def route(
        self,
        direction: Direction,
        symbol: str,
        agent_id: str,
        config: Optional[EngineConfig] = None,
        session: Optional[LiquiditySession] = None,
    ) -> RouterDecision:
        if session is None:
            session = detect_session(self.clock.utc_hour())
        decision = route(direction, symbol, agent_id, config or self.config, session)
        if decision.engine == EngineTarget.BLOCKED:
            LOG.info(f"Route blocked: {symbol} {decision.direction.value} ({decision.reason})")
        self.validate_router_integrity(decision)
        return decision

    def validate_router_integrity(self, decision: RouterDecision) -> bool:
        """False (plus CRITICAL log and alert) when direction and engine disagree"""
        violated = (
            (decision.direction == Direction.LONG and decision.engine == EngineTarget.SHORT_ENGINE)
            or (decision.direction == Direction.SHORT and decision.engine == EngineTarget.LONG_ENGINE)
        )
        if not violated:
            return True

        self.violation_count += 1
        LOG.critical(
            f"ROUTER INTEGRITY VIOLATION: direction={decision.direction.value} "
            f"engine={decision.engine.value} reason={decision.reason}"
        )
        if self.alerts is not None:
            self.alerts.emit(AlertKind.ROUTER_INTEGRITY_VIOLATION, {
                'direction': decision.direction.value,
                'engine': decision.engine.value,
                'reason': decision.reason,
            })
        if self.strict:
            raise RouterIntegrityError(decision.direction.value, decision.engine.value)
        return False

    def assert_integrity(self, decision: RouterDecision):
        """Raise RouterIntegrityError on violation regardless of strict mode"""
        if not self.validate_router_integrity(decision):
            raise RouterIntegrityError(decision.direction.value, decision.engine.value)
