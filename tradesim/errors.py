# tradesim/errors.py
"""
Exception hierarchy for the trading simulator.

Every error raised on purpose by the core derives from SimulationError so
callers can tell configuration mistakes, broken invariants and market-level
failures apart:

    try:
        result = run_simulation(params, agents, n_steps)
    except ConfigurationError:
        ...  # bad parameters, fix the call
    except MarketStepFailure:
        ...  # the run itself broke, nothing to salvage

Numeric degeneracy in belief updates is not an error: it resolves to a
uniform belief (see tradesim.pomdp). Per-agent failures are caught by the
coordinator and reported in SimulationResult.agent_failures.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class SimulationError(Exception):
    """
    Base class for simulator errors.

    Attributes:
        error_code: Short identifier for the error type
        is_recoverable: Whether the run can carry on after this error
        context: Extra key/values describing the failure
    """
    error_code: str = "SIMULATION_ERROR"
    is_recoverable: bool = False

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx_str})"
        return base

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "is_recoverable": self.is_recoverable,
            "context": self.context,
        }


class ConfigurationError(SimulationError, ValueError):
    """Invalid market parameters or invalid run preconditions."""
    error_code = "CONFIG_ERROR"


class InvariantViolation(SimulationError):
    """A component was handed state that breaks one of its preconditions."""
    error_code = "INVARIANT_VIOLATION"


class MarketStepFailure(SimulationError):
    """Price update or history bookkeeping failed. Fatal to the run."""
    error_code = "MARKET_STEP_FAILURE"


class AgentStepFailure(SimulationError):
    """One agent's observe/act/execute/learn failed during a step."""
    error_code = "AGENT_STEP_FAILURE"
    is_recoverable = True
