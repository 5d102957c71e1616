"""Comparison API routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.errors import RepoCompareError
from ..deps import get_engine, get_optional_user_id, http_error
from ..schemas.comparison import ComparisonCreate, OperationAccepted

logger = logging.getLogger(__name__)

router = APIRouter(tags=["comparisons"])


@router.post("/comparisons", status_code=202, response_model=OperationAccepted)
def create_comparison(
    data: ComparisonCreate,
    user_id: Optional[str] = Depends(get_optional_user_id),
    engine=Depends(get_engine),
):
    try:
        return engine.start_comparison(data.query, user_id=user_id, force_refresh=data.force_refresh)
    except RepoCompareError as e:
        raise http_error(e)


@router.get("/comparisons")
def list_comparisons(
    search: Optional[str] = None,
    date: Optional[str] = Query(None, description="week | month"),
    sort: str = Query("recent", description="recent | popular"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1),
    engine=Depends(get_engine),
):
    # per_page above 100 is clamped rather than rejected
    return engine.list_comparisons(search=search, date=date, sort=sort, page=page, per_page=per_page)


@router.get("/comparisons/status/{session_id}")
def get_status(session_id: str, engine=Depends(get_engine)):
    try:
        return engine.get_status(session_id)
    except RepoCompareError as e:
        raise http_error(e)


@router.get("/comparisons/{comparison_id}")
def show_comparison(
    comparison_id: str,
    newly_created: bool = False,
    similarity: Optional[float] = Query(None, ge=0.0, le=1.0),
    user_id: Optional[str] = Depends(get_optional_user_id),
    engine=Depends(get_engine),
):
    try:
        return engine.show_comparison(
            comparison_id, user_id=user_id, newly_created=newly_created, similarity=similarity,
        )
    except RepoCompareError as e:
        raise http_error(e)
