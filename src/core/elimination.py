"""
Knockout bracket generation from a ranked list of qualifiers.
"""
import logging
from typing import List, Optional

from core.formats import get_format
from core.models import (
    Match, Team, TournamentSettings,
    PHASE_QUARTERFINAL, PHASE_SEMIFINAL, PHASE_FINAL,
)
from core.allocation import court_label

logger = logging.getLogger(__name__)

MAX_BRACKET_SIZE = 8
BYE = 'BYE'
TBD = 'TBD'


def get_round_name(teams_in_round: int) -> str:
    """Phase name for a round with the given number of teams."""
    if teams_in_round == 2:
        return PHASE_FINAL
    elif teams_in_round == 4:
        return PHASE_SEMIFINAL
    elif teams_in_round == 8:
        return PHASE_QUARTERFINAL
    return f"round_of_{teams_in_round}"


def calculate_bracket_size(num_teams: int) -> int:
    """Leaves in the bracket: 4 up to four qualifiers, 8 above."""
    if num_teams <= 0:
        return 0
    if num_teams <= 4:
        return 4
    return MAX_BRACKET_SIZE


def calculate_byes(num_teams: int) -> int:
    return calculate_bracket_size(num_teams) - num_teams


def seeded_pairings(bracket_size: int) -> List[tuple]:
    """
    First-round seed pairs, best against worst: 8 -> (1,8) (2,7) (3,6) (4,5).
    """
    return [(seed, bracket_size + 1 - seed) for seed in range(1, bracket_size // 2 + 1)]


class BracketResult:
    """
    Outcome of bracket generation.

    ``ready`` is False when there are too few qualifiers; ``required`` and
    ``available`` then tell the caller how far off it is.
    """

    def __init__(self, ready, matches=None, required=0, available=0, real_team_count=0, first_phase=None):
        self.ready = ready
        self.matches = matches or []
        self.required = required
        self.available = available
        self.real_team_count = real_team_count
        self.first_phase = first_phase

    @classmethod
    def not_ready(cls, required: int, available: int) -> 'BracketResult':
        return cls(False, required=required, available=available)

    @property
    def message(self) -> str:
        if not self.ready:
            return (f"Need at least {self.required} qualified teams to generate the "
                    f"knockout stage, {self.available} available")
        return f"Knockout stage generated with {self.real_team_count} teams"

    def to_dict(self) -> dict:
        return {
            'ready': self.ready,
            'required': self.required,
            'available': self.available,
            'real_team_count': self.real_team_count,
            'first_phase': self.first_phase,
            'matches': [m.to_dict() for m in self.matches],
            'message': self.message,
        }


def _settle_bye(match: Match):
    """A real team drawn against a bye goes through without playing."""
    if match.team1.is_placeholder == match.team2.is_placeholder:
        return
    match.winner = match.team2 if match.team1.is_placeholder else match.team1
    match.is_complete = True


def generate_knockout_bracket(qualified_teams: List[Team], settings: TournamentSettings,
                              starting_sequence: Optional[int] = None) -> BracketResult:
    """
    Build the knockout skeleton from qualifiers ordered best first.

    The first round is seeded 1 vs N, 2 vs N-1, ...; later rounds are created
    with TBD participants and are filled in by the caller as results come in.
    Short brackets are padded with BYE placeholders.
    """
    minimum = settings.min_knockout_teams
    available = len(qualified_teams)
    if available < minimum or available < 2:
        required = max(minimum, 2)
        logger.warning('Knockout stage not ready: %d of %d qualifiers', available, required)
        return BracketResult.not_ready(required, available)

    if available > MAX_BRACKET_SIZE:
        logger.warning('%d qualifiers, only the top %d enter the bracket', available, MAX_BRACKET_SIZE)
        qualified_teams = qualified_teams[:MAX_BRACKET_SIZE]

    bracket_size = calculate_bracket_size(len(qualified_teams))
    seeds = list(qualified_teams)
    seeds.extend(Team.placeholder(BYE) for _ in range(calculate_byes(len(qualified_teams))))

    scoring = get_format(settings)
    courts = max(1, settings.number_of_courts)
    sequence = starting_sequence
    matches = []

    def add_match(team1, team2, phase):
        nonlocal sequence
        match = Match(
            id=None,
            team1=team1,
            team2=team2,
            sets=scoring.new_sets(),
            court=court_label(len(matches) % courts),
            phase=phase,
            sequence=sequence,
        )
        if sequence is not None:
            sequence += 1
        matches.append(match)
        return match

    first_phase = get_round_name(bracket_size)
    for seed1, seed2 in seeded_pairings(bracket_size):
        match = add_match(seeds[seed1 - 1], seeds[seed2 - 1], first_phase)
        _settle_bye(match)

    teams_in_round = bracket_size // 2
    while teams_in_round >= 2:
        phase = get_round_name(teams_in_round)
        for _ in range(teams_in_round // 2):
            add_match(Team.placeholder(TBD), Team.placeholder(TBD), phase)
        teams_in_round //= 2

    real_teams = sum(1 for team in seeds if not team.is_placeholder)
    logger.info('Generated %s bracket: %d matches, %d real teams', first_phase, len(matches), real_teams)
    return BracketResult(True, matches, required=minimum, available=available,
                         real_team_count=real_teams, first_phase=first_phase)
