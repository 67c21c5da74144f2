"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging with run context
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    cache           — Redis short-TTL source cache
    middleware      — request run context & timing
"""
