"""Data layer package: backend registry and the DataConnector contract.

Backends register a constructor under a name; the application picks one
through ``get_data_connector(name, connection_string)``.

    json  -- single JSON document guarded by a readers-writer lock
    sql   -- SQLAlchemy relational store (alias: mysql)
"""

import logging
from typing import Callable

from db.connector import DataConnector
from error_handler import InternalError

logger = logging.getLogger(__name__)

_registered_backends: dict[str, Callable[[str], DataConnector]] = {}


def register_backend(*names: str):
    """Class decorator registering a backend constructor under one or more names."""
    def decorator(cls):
        for name in names:
            _registered_backends[name.lower()] = cls
        return cls
    return decorator


def available_backends() -> list[str]:
    _load_builtin_backends()
    return sorted(_registered_backends)


def get_data_connector(backend: str, connection_string: str) -> DataConnector:
    """Construct the named backend.

    Raises:
        InternalError: The backend name is not registered.
    """
    _load_builtin_backends()
    ctor = _registered_backends.get(backend.lower())
    if ctor is None:
        raise InternalError(
            f"Backend {backend} is not available",
            troubleshooting=f"Choose one of: {', '.join(sorted(_registered_backends))}",
        )
    logger.info("Opening %s data backend", backend)
    return ctor(connection_string)


def _load_builtin_backends() -> None:
    # Importing the modules runs their @register_backend decorators
    import db.json_store  # noqa: F401
    import db.sql_store  # noqa: F401


__all__ = ["DataConnector", "register_backend", "get_data_connector", "available_backends"]
