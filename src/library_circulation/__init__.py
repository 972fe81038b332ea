"""
Library Circulation Package.

Tracks books through checkout, return and reservation queueing, and computes
fines for late, damaged and lost returns.

Key Components:
- models: Pydantic models returned to callers
- database: SQLAlchemy schema, session management and repositories
- circulation: the circulation engine, reservation queue and fine calculator
- config: Configuration management with pydantic-settings
- tools: MCP tools exposing the engine operations
"""

__version__ = "0.1.0"
