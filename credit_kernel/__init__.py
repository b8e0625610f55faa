"""
Credit Kernel - shared infrastructure for the credit decisioning engine.

- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with contextual fields
- Injectable clock for deterministic evaluation and replay
- SQLAlchemy base classes and session management
- Append-only, hash-chained decision audit trail
"""

__version__ = "0.1.0"
