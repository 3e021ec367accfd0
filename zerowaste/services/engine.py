# zerowaste/services/engine.py
from dataclasses import dataclass
from typing import Optional

from zerowaste.core.clock import Clock, utcnow
from zerowaste.core.config import Settings, settings as default_settings
from zerowaste.repos.base import Repository
from zerowaste.services.achievements import AchievementService
from zerowaste.services.donations import DonationService
from zerowaste.services.expiry import ExpirySweeper
from zerowaste.services.leaderboard import LeaderboardService
from zerowaste.services.matching import GeoMatcher
from zerowaste.services.notifications import FanoutNotifier, StoredNotifier, WebhookNotifier
from zerowaste.services.points import PointsLedger


@dataclass
class Engine:
    repo: Repository
    notifier: object
    leaderboard: LeaderboardService
    ledger: PointsLedger
    achievements: AchievementService
    donations: DonationService
    matcher: GeoMatcher
    sweeper: ExpirySweeper


def default_notifier(repo, clock: Clock, cfg: Settings):
    stored = StoredNotifier(repo, clock)
    if not cfg.webhook_url:
        return stored
    return FanoutNotifier([stored, WebhookNotifier(cfg.webhook_url, cfg.webhook_secret, clock)])


def build_engine(repo: Repository, notifier=None, clock: Clock = utcnow,
                 cfg: Optional[Settings] = None) -> Engine:
    """Wire every service over one repository, notifier and clock."""
    cfg = cfg or default_settings
    if notifier is None:
        notifier = default_notifier(repo, clock, cfg)

    leaderboard = LeaderboardService(repo, clock)
    ledger = PointsLedger(repo, leaderboard, notifier, clock)
    achievements = AchievementService(repo, ledger, leaderboard, notifier, clock)
    donations = DonationService(repo, ledger, achievements, notifier, clock)
    return Engine(
        repo=repo,
        notifier=notifier,
        leaderboard=leaderboard,
        ledger=ledger,
        achievements=achievements,
        donations=donations,
        matcher=GeoMatcher(repo, cfg.matching_radius_km),
        sweeper=ExpirySweeper(repo, donations, clock, cfg.sweep_interval_seconds),
    )
