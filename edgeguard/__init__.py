"""
EdgeGuard

Risk-governance and decision-gating core for automated FX trading.

Core Principle:
    "Agents propose trades. Governance decides whether edge exists."

Flow:
    Proposal → Engine Router → Context Provider → Regime Classifier
             → Multiplier Scorer → Gate Battery → Decision → Decision Log

Subsystems:
    1. governance  - context, regimes, scoring, gates, stops, routing, engine, API
    2. audit       - decision log, persistence stores, analytics
    3. monitoring  - rolling health, shadow promotion, short survivorship

Version: 1.0.0
"""

__version__ = "1.0.0"
