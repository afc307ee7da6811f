"""Orchestrator components.

- Settings loaded from .env
- Structured logging
- Node and EVM collaborators (`chain`)
- Block loop, trigger policy and cursor (`scheduler`)
- Step sequencer and the emission pipeline (`workflow`)
"""
