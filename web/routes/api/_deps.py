"""Shared dependencies for API route modules."""
import logging
import time

from fastapi import HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from ordersync.duckdb_store import get_store
from ordersync.sync_service import get_sync_service
from ordersync.exceptions import ValidationError

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Shared logger factory
def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

# Track startup time for uptime calculation
START_TIME = time.time()


def bad_request(error: ValidationError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(error))
