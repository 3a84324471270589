"""
Application Execution Package

Architectural Intent:
- Contains the rollout runtime: one state machine per host, one
  coordinator per fleet
- Cooperative cancellation shared between them
"""

from convoy.application.execution.cancellation import CancellationToken
from convoy.application.execution.fleet_coordinator import FleetCoordinator
from convoy.application.execution.host_state_machine import HostStateMachine

__all__ = ["CancellationToken", "FleetCoordinator", "HostStateMachine"]
