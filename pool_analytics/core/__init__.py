"""
Core Module - Configuration, Logging, Errors, Numerics and Telemetry

Modules:
- config: pydantic-settings configuration and startup validation
- logging_config: structured logging setup
- errors: tagged exception hierarchy
- numerics: fixed-point Decimal helpers
- telemetry: counter/histogram sinks
"""
