"""Dispatcher process components.

- Settings loaded from environment and .env
- Structured logging
- The runtime that wires queue, fleet and scheduler together
- A small CLI surface
"""
