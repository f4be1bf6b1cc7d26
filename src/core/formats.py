"""
Win-condition rules: how a set is decided and how a match is won.
"""
import logging
from typing import List, Optional

from core.models import (
    GameSet, Match, Side, TournamentSettings,
    WIN_POINTS, WIN_SETS, WIN_TIME,
)

logger = logging.getLogger(__name__)

# Below the nominal set target a set can still be closed out by a two point lead.
WIN_BY_TWO_THRESHOLD = 15
WIN_BY_TWO_MARGIN = 2


class ScoringFormat:
    """Base rule set. Subclasses decide when a set and a match are over."""

    name = None

    def __init__(self, settings: TournamentSettings):
        self.settings = settings

    def sets_per_match(self) -> int:
        return 1

    def new_sets(self) -> List[GameSet]:
        return [GameSet() for _ in range(self.sets_per_match())]

    def is_set_won(self, game_set: GameSet, side: Side) -> bool:
        raise NotImplementedError

    def is_match_decided(self, match: Match) -> bool:
        """Called after the active set completes."""
        return True

    def winner(self, match: Match, last_scorer: Optional[Side] = None) -> Optional[Side]:
        """Higher raw score wins; the last scorer breaks a level score."""
        team1 = match.total_points(Side.TEAM1)
        team2 = match.total_points(Side.TEAM2)
        if team1 > team2:
            return Side.TEAM1
        if team2 > team1:
            return Side.TEAM2
        return last_scorer


class PointsFormat(ScoringFormat):
    """Single set, first to ``points_to_win``."""

    name = WIN_POINTS

    def is_set_won(self, game_set, side):
        return game_set.score(side) >= self.settings.points_to_win


class TimeFormat(ScoringFormat):
    """Single set decided by the clock; points never close it."""

    name = WIN_TIME

    def is_set_won(self, game_set, side):
        return False


class SetsFormat(ScoringFormat):
    """Best-of-N sets, each to ``points_to_win_set`` or 15+ with a two point lead."""

    name = WIN_SETS

    def sets_per_match(self):
        return max(1, self.settings.number_of_sets)

    def is_set_won(self, game_set, side):
        score = game_set.score(side)
        if score >= self.settings.points_to_win_set:
            return True
        margin = score - game_set.score(side.other())
        return score >= WIN_BY_TWO_THRESHOLD and margin >= WIN_BY_TWO_MARGIN

    def is_match_decided(self, match):
        sets_to_win = self.settings.sets_to_win
        if match.sets_won(Side.TEAM1) >= sets_to_win or match.sets_won(Side.TEAM2) >= sets_to_win:
            return True
        # Out of sets: the match ends on whatever was won.
        return match.current_set >= len(match.sets) - 1

    def winner(self, match, last_scorer=None):
        team1 = match.sets_won(Side.TEAM1)
        team2 = match.sets_won(Side.TEAM2)
        if team1 > team2:
            return Side.TEAM1
        if team2 > team1:
            return Side.TEAM2
        return super().winner(match, last_scorer)


FORMATS = {
    WIN_POINTS: PointsFormat,
    WIN_TIME: TimeFormat,
    WIN_SETS: SetsFormat,
}


def get_format(settings: TournamentSettings) -> ScoringFormat:
    """Return the rule set for ``settings.win_condition`` (points when unknown)."""
    format_class = FORMATS.get(settings.win_condition)
    if format_class is None:
        logger.warning('Unknown win condition %r, scoring as points', settings.win_condition)
        format_class = PointsFormat
    return format_class(settings)
