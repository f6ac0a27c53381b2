# PATH: monitoring/__init__.py
"""
Monitoring package for Observatory.

Modules:
- tracker: Signing state machine per chain
- poller: Fixed-interval poll loop per chain
- supervisor: Runs and restarts one poller per chain
"""

from monitoring.poller import ChainPoller
from monitoring.supervisor import ChainSupervisor, default_client_factory
from monitoring.tracker import SigningStateTracker

__all__ = [
    "ChainPoller",
    "ChainSupervisor",
    "SigningStateTracker",
    "default_client_factory",
]
