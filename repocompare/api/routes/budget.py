"""Budget and cost statistics routes."""

from typing import Optional

from fastapi import APIRouter, Depends

from ...core.errors import RepoCompareError
from ..deps import get_engine, get_optional_user_id, http_error

router = APIRouter(tags=["budget"])


@router.get("/budget")
def get_budget(
    user_id: Optional[str] = Depends(get_optional_user_id),
    engine=Depends(get_engine),
):
    try:
        return engine.budget_summary(user_id=user_id)
    except RepoCompareError as e:
        raise http_error(e)
