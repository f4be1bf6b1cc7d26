"""
Data model for teams, matches and tournament settings.

Everything here is plain data. Mappings produced by ``to_dict`` are only
meant for the persistence boundary; the scheduling and scoring code works on
the objects themselves.
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional


PHASE_GROUP = 'group'
PHASE_QUARTERFINAL = 'quarterfinal'
PHASE_SEMIFINAL = 'semifinal'
PHASE_FINAL = 'final'
PHASES = (PHASE_GROUP, PHASE_QUARTERFINAL, PHASE_SEMIFINAL, PHASE_FINAL)
KNOCKOUT_PHASES = (PHASE_QUARTERFINAL, PHASE_SEMIFINAL, PHASE_FINAL)

WIN_POINTS = 'points'
WIN_TIME = 'time'
WIN_SETS = 'sets'
WIN_CONDITIONS = (WIN_POINTS, WIN_TIME, WIN_SETS)


class Side(Enum):
    """One of the two participants of a match."""
    TEAM1 = 'team1'
    TEAM2 = 'team2'

    def other(self) -> 'Side':
        if self is Side.TEAM1:
            return Side.TEAM2
        return Side.TEAM1

    @classmethod
    def parse(cls, value) -> Optional['Side']:
        """Return the Side for 'team1'/'team2' (or a Side), None otherwise."""
        if isinstance(value, cls):
            return value
        for side in cls:
            if side.value == value:
                return side
        return None


@dataclass
class Team:
    id: Optional[str]
    name: str
    group: Optional[str] = None
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    is_placeholder: bool = False

    @property
    def point_diff(self) -> int:
        return self.points_for - self.points_against

    @property
    def set_diff(self) -> int:
        return self.sets_won - self.sets_lost

    @property
    def matches_played(self) -> int:
        return self.wins + self.losses

    @classmethod
    def placeholder(cls, name: str) -> 'Team':
        """A 'TBD'/'BYE' stand-in with zero stats that is never a real entrant."""
        return cls(id=None, name=name, is_placeholder=True)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Team':
        return cls(
            id=data.get('id'),
            name=data.get('name', ''),
            group=data.get('group'),
            wins=int(data.get('wins', 0) or 0),
            losses=int(data.get('losses', 0) or 0),
            points_for=int(data.get('points_for', 0) or 0),
            points_against=int(data.get('points_against', 0) or 0),
            sets_won=int(data.get('sets_won', 0) or 0),
            sets_lost=int(data.get('sets_lost', 0) or 0),
            is_placeholder=bool(data.get('is_placeholder', False)),
        )


@dataclass
class GameSet:
    team1_score: int = 0
    team2_score: int = 0
    is_complete: bool = False

    def score(self, side: Side) -> int:
        if side is Side.TEAM1:
            return self.team1_score
        return self.team2_score

    def set_score(self, side: Side, value: int):
        if side is Side.TEAM1:
            self.team1_score = value
        else:
            self.team2_score = value

    def leader(self) -> Optional[Side]:
        """Side ahead in this set, or None when level."""
        if self.team1_score > self.team2_score:
            return Side.TEAM1
        if self.team2_score > self.team1_score:
            return Side.TEAM2
        return None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'GameSet':
        return cls(
            team1_score=max(0, int(data.get('team1_score', 0) or 0)),
            team2_score=max(0, int(data.get('team2_score', 0) or 0)),
            is_complete=bool(data.get('is_complete', False)),
        )


@dataclass
class Match:
    id: Optional[str]
    team1: Team
    team2: Team
    sets: List[GameSet] = field(default_factory=lambda: [GameSet()])
    current_set: int = 0
    is_complete: bool = False
    is_running: bool = False
    court: str = ''
    phase: str = PHASE_GROUP
    group: Optional[str] = None
    winner: Optional[Team] = None
    sequence: Optional[int] = None

    def team(self, side: Side) -> Team:
        if side is Side.TEAM1:
            return self.team1
        return self.team2

    @property
    def active_set(self) -> GameSet:
        return self.sets[self.current_set]

    def sets_won(self, side: Side) -> int:
        """Completed sets won by ``side``."""
        return sum(1 for s in self.sets if s.is_complete and s.leader() is side)

    def total_points(self, side: Side) -> int:
        return sum(s.score(side) for s in self.sets)

    @property
    def has_placeholder(self) -> bool:
        return self.team1.is_placeholder or self.team2.is_placeholder

    def involves(self, team_id: str) -> bool:
        return team_id is not None and team_id in (self.team1.id, self.team2.id)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'team1': self.team1.to_dict(),
            'team2': self.team2.to_dict(),
            'sets': [s.to_dict() for s in self.sets],
            'current_set': self.current_set,
            'is_complete': self.is_complete,
            'is_running': self.is_running,
            'court': self.court,
            'phase': self.phase,
            'group': self.group,
            'winner': self.winner.to_dict() if self.winner else None,
            'sequence': self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Match':
        sets = [GameSet.from_dict(s) for s in (data.get('sets') or [])] or [GameSet()]
        current_set = int(data.get('current_set', 0) or 0)
        current_set = min(max(current_set, 0), len(sets) - 1)
        is_complete = bool(data.get('is_complete', False))
        winner = data.get('winner')
        return cls(
            id=data.get('id'),
            team1=Team.from_dict(data.get('team1') or {}),
            team2=Team.from_dict(data.get('team2') or {}),
            sets=sets,
            current_set=current_set,
            is_complete=is_complete,
            is_running=bool(data.get('is_running', False)) and not is_complete,
            court=data.get('court', '') or '',
            phase=data.get('phase', PHASE_GROUP) or PHASE_GROUP,
            group=data.get('group'),
            winner=Team.from_dict(winner) if winner else None,
            sequence=data.get('sequence'),
        )


@dataclass
class TournamentSettings:
    number_of_courts: int = 4
    number_of_groups: int = 4
    win_condition: str = WIN_POINTS
    points_to_win: int = 15
    time_limit: int = 20  # minutes
    number_of_sets: int = 1
    sets_to_win: int = 1
    points_to_win_set: int = 25
    teams_advancing_from_group: int = 2
    auto_start_delay: int = 0
    cooldown: int = 3
    min_knockout_teams: int = 4
    admin_password: str = 'admin123'

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the settings are usable."""
        errors = []
        if self.number_of_courts < 1:
            errors.append('Number of courts must be at least 1.')
        if not 1 <= self.number_of_groups <= 26:
            errors.append('Number of groups must be between 1 and 26.')
        if self.win_condition not in WIN_CONDITIONS:
            errors.append(f'Unknown win condition: {self.win_condition}.')
        if self.points_to_win < 1:
            errors.append('Points to win must be positive.')
        if self.points_to_win_set < 1:
            errors.append('Points to win a set must be positive.')
        if self.number_of_sets < 1:
            errors.append('Number of sets must be at least 1.')
        if not 1 <= self.sets_to_win <= self.number_of_sets:
            errors.append('Sets to win must be between 1 and the number of sets.')
        if self.teams_advancing_from_group not in (1, 2):
            errors.append('Teams advancing from each group must be 1 or 2.')
        if self.cooldown < 1:
            errors.append('Cooldown must be at least 1.')
        if self.min_knockout_teams < 2:
            errors.append('Minimum knockout teams must be at least 2.')
        return errors

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'TournamentSettings':
        """Build settings from a mapping, falling back to defaults for missing keys."""
        settings = cls()
        for key, value in (data or {}).items():
            if not hasattr(settings, key) or value is None:
                continue
            default = getattr(settings, key)
            if isinstance(default, int) and not isinstance(default, bool):
                value = int(value)
            elif isinstance(default, str):
                value = str(value)
            setattr(settings, key, value)
        return settings


EVENT_SET_COMPLETE = 'set_complete'
EVENT_MATCH_COMPLETE = 'match_complete'
EVENT_GROUP_STAGE_GENERATED = 'group_stage_generated'
EVENT_PARTIAL_SCHEDULE = 'partial_schedule'
EVENT_KNOCKOUT_GENERATED = 'knockout_generated'
EVENT_INSUFFICIENT_TEAMS = 'insufficient_teams'


@dataclass
class Event:
    """Something the caller may want to tell the user about."""
    kind: str
    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)
