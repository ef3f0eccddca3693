"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging + dispatch context
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    database        — async SQLAlchemy engine / session factory
    middleware      — request logging, timing, correlation IDs
"""
