"""Emissions orchestrator.

A block-height-triggered bot that swaps DFI to DUSD, moves the DUSD to the
EVM domain and distributes it to reward contracts:
- configuration loaded from `.env`
- structured logging
- a block event loop with a persisted cursor for crash recovery
"""

__version__ = "0.1.0"

from emissions_orchestrator.orchestrator.config import EmissionsSettings

__all__ = ["__version__", "EmissionsSettings"]
