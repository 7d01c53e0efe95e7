# -*- coding: utf-8 -*-
"""
Scheduler Package for RiskPilot
===============================

Workflow orchestration: the analysis cycle and the position monitor tick
scheduled on one asyncio event loop.

Modules:
    workflows: Main workflow orchestrator with scheduling capabilities
"""

from .workflows import (
    WorkflowOrchestrator,
    CycleResult,
    create_orchestrator,
    run_single_cycle,
)

__all__ = [
    "WorkflowOrchestrator",
    "CycleResult",
    "create_orchestrator",
    "run_single_cycle",
]

__version__ = "1.0.0"
__author__ = "RiskPilot Team"
__description__ = "Workflow scheduling and orchestration for RiskPilot"
