"""pipepool core -- errors, logging and settings shared by both process roles.

Architecture::

    errors.py      Structured error hierarchy (PoolError, StartupFailure, TransportFailure)
    logging.py     structlog configuration, context binding
    settings.py    PoolSettings (pydantic-settings, PIPEPOOL_ prefix)
"""
