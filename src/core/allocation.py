"""
Group-stage match allocation.

Every pair of teams inside a group meets once. Matches are laid out on a
single running sequence, honouring a rest cooldown between two matches of the
same team, and spread over the courts in round-robin order.
"""
import logging
from itertools import combinations
from typing import Dict, List, Optional, Tuple

from core.formats import get_format
from core.models import Match, Team, TournamentSettings, PHASE_GROUP
from core.standings import teams_by_group

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN = 3
# Idle sequence numbers allowed per remaining matchup before giving up.
IDLE_ADVANCE_FACTOR = 5


def court_label(index: int) -> str:
    return f"Court {index + 1}"


class ScheduleResult:
    """Matches produced by the allocator plus enough bookkeeping to spot a partial schedule."""

    def __init__(self, matches, expected_matches, idle_advances, unscheduled):
        self.matches = matches
        self.expected_matches = expected_matches
        self.idle_advances = idle_advances
        self.unscheduled = unscheduled

    @property
    def complete(self) -> bool:
        return len(self.matches) == self.expected_matches

    def summary(self) -> dict:
        return {
            'scheduled_matches': len(self.matches),
            'expected_matches': self.expected_matches,
            'idle_advances': self.idle_advances,
            'complete': self.complete,
            'unscheduled': [
                {'team1': t1.name, 'team2': t2.name, 'group': group}
                for t1, t2, group in self.unscheduled
            ],
        }

    def __repr__(self):
        return (f"ScheduleResult(scheduled={len(self.matches)}, "
                f"expected={self.expected_matches}, idle_advances={self.idle_advances})")


class AllocationManager:
    def __init__(self, teams: List[Team], settings: TournamentSettings, cooldown: Optional[int] = None):
        self.teams = teams
        self.settings = settings
        self.cooldown = cooldown if cooldown is not None else settings.cooldown
        self.courts = max(1, settings.number_of_courts)
        self.last_played: Dict[str, int] = {}

    def _team_key(self, team: Team):
        return team.id if team.id is not None else team.name

    def _generate_group_matchups(self) -> List[Tuple[Team, Team, str]]:
        """Every unordered pair within each group, groups in label order."""
        matchups = []
        for label, group_teams in teams_by_group(self.teams, self.settings.number_of_groups).items():
            if len(group_teams) < 2:
                logger.debug('Group %s has %d team(s), no matchups', label, len(group_teams))
                continue
            for team1, team2 in combinations(group_teams, 2):
                matchups.append((team1, team2, label))
        return matchups

    def _is_rested(self, team: Team, sequence: int) -> bool:
        last = self.last_played.get(self._team_key(team))
        return last is None or sequence - last >= self.cooldown

    def _pick_matchup(self, candidates, sequence):
        for index, (team1, team2, _group) in enumerate(candidates):
            if self._is_rested(team1, sequence) and self._is_rested(team2, sequence):
                return index
        return None

    def allocate(self, starting_sequence: int = 1) -> ScheduleResult:
        """
        Walk forward through sequence numbers, placing the first rested matchup at each one.

        When every remaining matchup is blocked the sequence advances without a match.
        Too many idle advances in a row stops the walk and the partial schedule is
        returned as is.
        """
        scoring = get_format(self.settings)
        candidates = self._generate_group_matchups()
        expected = len(candidates)
        self.last_played = {}

        matches = []
        sequence = starting_sequence
        idle_streak = 0
        idle_total = 0

        while candidates:
            index = self._pick_matchup(candidates, sequence)
            if index is None:
                idle_streak += 1
                idle_total += 1
                if idle_streak > IDLE_ADVANCE_FACTOR * len(candidates):
                    logger.warning(
                        'Stopping allocation at sequence %d: %d matchup(s) blocked by cooldown %d',
                        sequence, len(candidates), self.cooldown)
                    break
                logger.debug('No rested matchup at sequence %d', sequence)
                sequence += 1
                continue

            team1, team2, group = candidates.pop(index)
            match = Match(
                id=None,
                team1=team1,
                team2=team2,
                sets=scoring.new_sets(),
                court=court_label(len(matches) % self.courts),
                phase=PHASE_GROUP,
                group=group,
                sequence=sequence,
            )
            matches.append(match)
            self.last_played[self._team_key(team1)] = sequence
            self.last_played[self._team_key(team2)] = sequence
            logger.debug('Scheduled #%d %s vs %s (group %s) on %s',
                         sequence, team1.name, team2.name, group, match.court)
            idle_streak = 0
            sequence += 1

        result = ScheduleResult(matches, expected, idle_total, list(candidates))
        if not result.complete:
            logger.warning('Partial schedule: %d of %d matches', len(matches), expected)
        return result


def generate_group_schedule(teams: List[Team], settings: TournamentSettings,
                            starting_sequence: int = 1, cooldown: Optional[int] = None) -> ScheduleResult:
    return AllocationManager(teams, settings, cooldown).allocate(starting_sequence)


def generate_group_matches(teams: List[Team], settings: TournamentSettings,
                           starting_sequence: int = 1) -> List[Match]:
    """Group-stage matches for the roster; may be fewer than a full round robin."""
    return generate_group_schedule(teams, settings, starting_sequence).matches
