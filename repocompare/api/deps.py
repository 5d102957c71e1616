"""FastAPI dependencies for repocompare.

Provides shared dependencies (engine, hub, database, caller identity)
via FastAPI's Depends() injection system.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

from ..core.errors import BudgetError, RecordNotFoundError, RepoCompareError, ValidationError

logger = logging.getLogger(__name__)


async def get_db_manager(request: Request):
    """Get DatabaseManager from app state."""
    return request.app.state.db_manager


async def get_engine(request: Request):
    """Get ComparisonEngine from app state."""
    engine = request.app.state.engine
    if engine is None:
        raise HTTPException(status_code=503, detail="Comparison engine not available")
    return engine


async def get_hub(request: Request):
    """Get ProgressHub from app state."""
    return request.app.state.hub


async def get_optional_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity from the X-User-Id header; None when anonymous."""
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()


def http_error(error: RepoCompareError) -> HTTPException:
    """Map the error taxonomy onto HTTP status codes."""
    if isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, BudgetError):
        status = 429
    elif isinstance(error, RecordNotFoundError):
        status = 404
    else:
        logger.error(f"Unhandled domain error in request: {type(error).__name__}: {error}")
        status = 500
    return HTTPException(status_code=status, detail=error.user_message)
