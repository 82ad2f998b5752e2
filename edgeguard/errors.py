"""
Governance Exceptions

Exceptions are reserved for bugs and infrastructure faults. Business outcomes
(rejections, throttles, unavailable data) travel inside decisions instead.
"""


class GovernanceError(Exception):
    """Base class for edgeguard errors"""


class RouterIntegrityError(GovernanceError):
    """A routing decision paired a direction with the opposite engine"""

    def __init__(self, direction: str, engine: str):
        self.direction = direction
        self.engine = engine
        super().__init__(f"Router integrity violation: direction={direction} routed to {engine}")


class ShadowPersistenceError(GovernanceError):
    """Shadow-trade store rejected or failed a write"""


class UpstreamUnavailableError(GovernanceError):
    """Market-data, analysis or price collaborator could not answer"""

    def __init__(self, source: str, symbol: str, detail: str = ""):
        self.source = source
        self.symbol = symbol
        message = f"{source} unavailable for {symbol}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
