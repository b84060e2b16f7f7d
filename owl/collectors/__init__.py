"""owl.collectors package exports."""

from owl.collectors.state import ProcessState, StateSampler, status_to_state

__all__ = [
    "ProcessState",
    "StateSampler",
    "status_to_state",
]
