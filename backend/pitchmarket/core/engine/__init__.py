"""
Pitch Market Engine
===================

Stage controller, pitch scheduler, draft ledger, portfolio commit,
market projector and roster services.

Usage:
    from pitchmarket.core.engine import PitchScheduler

    scheduler = PitchScheduler(db)
    await scheduler.start_pitch(schedule_id, team_id, cluster_id)
"""

from pitchmarket.core.engine.commit import CommitResult, PortfolioCommitEngine, PortfolioItem
from pitchmarket.core.engine.ledger import DraftLedger, TeamInvestmentState
from pitchmarket.core.engine.market import MarketProjector, MarketValuations, TeamValuation
from pitchmarket.core.engine.roster import RosterOverview, RosterService, ShuffleResult
from pitchmarket.core.engine.scheduler import PitchScheduler
from pitchmarket.core.engine.stage import StageController

__all__ = [
    "StageController",
    "PitchScheduler",
    "DraftLedger",
    "TeamInvestmentState",
    "PortfolioCommitEngine",
    "PortfolioItem",
    "CommitResult",
    "MarketProjector",
    "MarketValuations",
    "TeamValuation",
    "RosterService",
    "RosterOverview",
    "ShuffleResult",
]
