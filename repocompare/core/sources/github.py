"""GitHub REST client for repository search, trending, readmes and issues.

Errors are mapped onto the repocompare taxonomy:
- 403/429 rate limiting -> SourceRateLimitError (transient)
- timeouts / connection errors -> SourceTimeoutError (transient)
- 404 -> SourceNotFoundError
- anything else non-2xx -> SourceSearchError
"""

import base64
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from ..errors import (
    SourceNotFoundError,
    SourceRateLimitError,
    SourceSearchError,
    SourceTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.github.com"


class GitHubSearchClient:
    """Narrow wrapper over the GitHub endpoints the pipeline consumes."""

    def __init__(
        self,
        token: Optional[str] = None,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_settings(cls, settings) -> "GitHubSearchClient":
        return cls(
            token=settings.github_token,
            api_base=settings.github_api_base,
            timeout=settings.github_timeout_seconds,
        )

    @property
    def authenticated(self) -> bool:
        return "Authorization" in self._session.headers

    # ── Public API ──────────────────────────────────────────────────────

    def search(self, query: str, per_page: int = 10, sort: Optional[str] = None) -> List[Dict[str, Any]]:
        """Search repositories; returns the raw ``items`` list."""
        params: Dict[str, Any] = {"q": query, "per_page": per_page}
        if sort:
            params.update({"sort": sort, "order": "desc"})
        data = self._get("/search/repositories", params=params)
        items = data.get("items", [])
        logger.info(f"GitHub search '{query}': {len(items)} items (total_count={data.get('total_count')})")
        return items

    def search_trending(
        self,
        days_ago: int = 7,
        min_stars: int = 10,
        per_page: int = 30,
        language: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Recently created repositories, most starred first."""
        since = (datetime.utcnow() - timedelta(days=days_ago)).strftime("%Y-%m-%d")
        parts = [f"created:>{since}", f"stars:>={min_stars}"]
        if language:
            parts.append(f"language:{language}")
        return self.search(" ".join(parts), per_page=per_page, sort="stars")

    def fetch_readme(self, full_name: str) -> Optional[str]:
        """Decoded README text, or None when the repository has none."""
        try:
            data = self._get(f"/repos/{full_name}/readme")
        except SourceNotFoundError:
            return None
        content = data.get("content")
        if not content:
            return None
        if data.get("encoding") == "base64":
            return base64.b64decode(content).decode("utf-8", errors="replace")
        return content

    def fetch_issues(self, full_name: str, state: str = "all", per_page: int = 30) -> List[Dict[str, Any]]:
        return self._get(
            f"/repos/{full_name}/issues",
            params={"state": state, "sort": "created", "direction": "desc", "per_page": per_page},
        )

    def fetch_repository(self, full_name: str) -> Dict[str, Any]:
        return self._get(f"/repos/{full_name}")

    def rate_limit_status(self) -> Dict[str, Any]:
        return self._get("/rate_limit")

    # ── HTTP ────────────────────────────────────────────────────────────

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.api_base}{path}"
        try:
            resp = self._session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise SourceTimeoutError(f"GitHub request timed out: {path}") from e
        except requests.ConnectionError as e:
            raise SourceTimeoutError(f"GitHub connection failed: {e}") from e

        if resp.status_code == 200:
            return resp.json()
        if resp.status_code == 404:
            raise SourceNotFoundError(f"GitHub resource not found: {path}")
        if resp.status_code == 429 or (
            resp.status_code == 403
            and (resp.headers.get("X-RateLimit-Remaining") == "0" or "rate limit" in resp.text.lower())
        ):
            logger.warning(f"GitHub rate limit hit on {path}")
            raise SourceRateLimitError(f"GitHub rate limit exceeded ({resp.status_code})")
        raise SourceSearchError(f"GitHub request failed: {resp.status_code} {resp.text[:200]}")
