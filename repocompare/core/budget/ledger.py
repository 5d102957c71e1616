"""Per-(date, model) running totals of AI spend."""

import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db.models import CostLedgerEntry
from ..gateway import calculate_cost

logger = logging.getLogger(__name__)


class CostLedger:
    """Accumulates request count, tokens, and cost per (date, model).

    Increments are issued as ``UPDATE ... SET col = col + :n`` so concurrent
    writers never lose an update; the first write of a day inserts the row
    inside a savepoint and falls back to the update on a unique violation.
    """

    def record_usage(
        self,
        session: Session,
        model: str,
        input_tokens: int,
        output_tokens: int,
        day: Optional[date] = None,
    ) -> float:
        """Add one request to the (day, model) row. Returns the request cost."""
        cost = calculate_cost(model, input_tokens, output_tokens)
        day = day or datetime.utcnow().date()

        if not self._increment(session, day, model, input_tokens, output_tokens, cost):
            try:
                with session.begin_nested():
                    session.add(CostLedgerEntry(
                        date=day,
                        model=model,
                        total_requests=1,
                        total_input_tokens=input_tokens,
                        total_output_tokens=output_tokens,
                        total_cost_usd=cost,
                    ))
            except IntegrityError:
                # Another writer created the row first
                self._increment(session, day, model, input_tokens, output_tokens, cost)

        logger.debug(f"Ledger {day} {model}: +{input_tokens}/{output_tokens} tokens, +${cost:.5f}")
        return cost

    def _increment(self, session, day, model, input_tokens, output_tokens, cost) -> bool:
        updated = (
            session.query(CostLedgerEntry)
            .filter(CostLedgerEntry.date == day, CostLedgerEntry.model == model)
            .update(
                {
                    CostLedgerEntry.total_requests: CostLedgerEntry.total_requests + 1,
                    CostLedgerEntry.total_input_tokens: CostLedgerEntry.total_input_tokens + input_tokens,
                    CostLedgerEntry.total_output_tokens: CostLedgerEntry.total_output_tokens + output_tokens,
                    CostLedgerEntry.total_cost_usd: CostLedgerEntry.total_cost_usd + cost,
                    CostLedgerEntry.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        return updated > 0

    def entry_for(self, session: Session, day: date, model: str) -> Optional[CostLedgerEntry]:
        return (
            session.query(CostLedgerEntry)
            .filter(CostLedgerEntry.date == day, CostLedgerEntry.model == model)
            .first()
        )

    def total_cost_for(self, session: Session, day: Optional[date] = None) -> float:
        day = day or datetime.utcnow().date()
        total = (
            session.query(func.coalesce(func.sum(CostLedgerEntry.total_cost_usd), 0.0))
            .filter(CostLedgerEntry.date == day)
            .scalar()
        )
        return float(total or 0.0)

    def rollup_for_date(self, session: Session, day: Optional[date] = None) -> Dict[str, Any]:
        """Summarize one day across all models."""
        day = day or datetime.utcnow().date()
        entries = (
            session.query(CostLedgerEntry)
            .filter(CostLedgerEntry.date == day)
            .order_by(CostLedgerEntry.model)
            .all()
        )
        return {
            "date": day.isoformat(),
            "total_requests": sum(e.total_requests for e in entries),
            "total_input_tokens": sum(e.total_input_tokens for e in entries),
            "total_output_tokens": sum(e.total_output_tokens for e in entries),
            "total_cost_usd": round(sum(e.total_cost_usd for e in entries), 6),
            "models": [
                {
                    "model": e.model,
                    "requests": e.total_requests,
                    "cost_usd": round(e.total_cost_usd, 6),
                    "avg_cost_per_request": round(e.average_cost_per_request, 6),
                }
                for e in entries
            ],
        }
