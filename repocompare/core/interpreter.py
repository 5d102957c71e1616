"""Natural-language query -> structured GitHub search plan."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .prompts import QUERY_INTERPRETER_SYSTEM, build_query_interpreter_prompt
from .safety import sanitize_user_input

logger = logging.getLogger(__name__)


@dataclass
class ParsedQuery:
    """Structured interpretation of a user request.

    ``valid=False`` is a normal outcome; callers decide how to surface it.
    """

    tech_stack: str = ""
    problem_domain: str = ""
    constraints: List[str] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)
    strategy: str = "single"
    valid: bool = False
    validation_message: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tech_stack": self.tech_stack,
            "problem_domain": self.problem_domain,
            "constraints": list(self.constraints),
            "github_queries": list(self.search_queries),
            "query_strategy": self.strategy,
        }


def _as_list(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _as_bool(value) -> bool:
    """Strict truthiness for model flags; only true or "true" count."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


class QueryInterpreter:
    """Sanitize a raw query and ask the model for a search plan."""

    def __init__(self, completion_service, model: str = "gpt-4o-mini", temperature: float = 0.3):
        self._completion = completion_service
        self.model = model
        self.temperature = temperature

    def parse(self, raw_query: str) -> ParsedQuery:
        sanitized = sanitize_user_input(raw_query)
        if not sanitized:
            return ParsedQuery(valid=False, validation_message="Query is empty")

        result = self._completion.complete(
            QUERY_INTERPRETER_SYSTEM,
            build_query_interpreter_prompt(sanitized),
            model=self.model,
            temperature=self.temperature,
            purpose="query_interpretation",
        )
        content = result.content

        if result.parse_failed:
            logger.warning(f"Query interpretation returned unparseable output: {content.get('parse_error')}")
            return ParsedQuery(
                valid=False,
                validation_message="Could not understand the query",
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
            )

        parsed = ParsedQuery(
            tech_stack=str(content.get("tech_stack") or ""),
            problem_domain=str(content.get("problem_domain") or ""),
            constraints=_as_list(content.get("constraints")),
            search_queries=_as_list(content.get("github_queries")),
            strategy=content.get("query_strategy") or "single",
            valid=_as_bool(content.get("valid")),
            validation_message=str(content.get("validation_message") or ""),
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )

        if parsed.valid and not parsed.search_queries:
            parsed.valid = False
            parsed.validation_message = parsed.validation_message or "No search queries could be generated"

        logger.info(
            f"Parsed query: valid={parsed.valid} strategy={parsed.strategy} "
            f"queries={len(parsed.search_queries)}"
        )
        return parsed
