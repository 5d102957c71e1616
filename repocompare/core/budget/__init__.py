"""Cost accounting and budget gating."""

from .gate import ANALYSIS, COMPARISON, BudgetGate
from .ledger import CostLedger

__all__ = ["ANALYSIS", "COMPARISON", "BudgetGate", "CostLedger"]
