"""Repository and deep-analysis API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ...core.errors import RepoCompareError
from ..deps import get_engine, get_optional_user_id, http_error
from ..schemas.comparison import OperationAccepted

logger = logging.getLogger(__name__)

router = APIRouter(tags=["repositories"])


@router.get("/repositories/{repository_id}")
def get_repository(
    repository_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    engine=Depends(get_engine),
):
    try:
        return engine.get_repository(repository_id, user_id=user_id)
    except RepoCompareError as e:
        raise http_error(e)


@router.post("/repositories/{repository_id}/deep-analysis", status_code=202, response_model=OperationAccepted)
def start_deep_analysis(
    repository_id: str,
    user_id: Optional[str] = Depends(get_optional_user_id),
    engine=Depends(get_engine),
):
    try:
        return engine.start_deep_analysis(repository_id, user_id=user_id)
    except RepoCompareError as e:
        raise http_error(e)
