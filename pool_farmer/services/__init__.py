"""Engine services."""
from .journal import CycleJournal
from .portfolio import InvestmentOutcome, PortfolioManager
from .scheduler import CycleReport, CycleScheduler
from .watchlist import Watchlist

__all__ = [
    "CycleJournal",
    "CycleReport",
    "CycleScheduler",
    "InvestmentOutcome",
    "PortfolioManager",
    "Watchlist",
]
