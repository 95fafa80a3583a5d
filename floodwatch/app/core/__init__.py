"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging with tick context
    errors          — exception hierarchy & handlers
"""
