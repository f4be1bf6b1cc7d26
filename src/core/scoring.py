"""
Score progression and tournament phase advancement.

Functions here never mutate their arguments: they work on copies and hand
back the updated match, the updated team records and any events worth
showing to the user. Calls that make no sense for the current state (a
stale button press on a finished match, an unknown side) return the input
unchanged rather than raising.
"""
import copy
import logging
from typing import Dict, List, Optional

from core.elimination import generate_knockout_bracket
from core.formats import get_format
from core.models import (
    Event, GameSet, Match, Side, Team, TournamentSettings,
    PHASE_GROUP, KNOCKOUT_PHASES,
    EVENT_SET_COMPLETE, EVENT_MATCH_COMPLETE,
    EVENT_KNOCKOUT_GENERATED, EVENT_INSUFFICIENT_TEAMS,
)
from core.standings import collect_qualifiers

logger = logging.getLogger(__name__)


class ScoreUpdate:
    """Result of a score change against one match."""

    def __init__(self, match: Match, teams: Optional[List[Team]] = None,
                 events: Optional[List[Event]] = None, changed: bool = True):
        self.match = match
        self.teams = teams or []
        self.events = events or []
        self.changed = changed

    @classmethod
    def unchanged(cls, match: Match) -> 'ScoreUpdate':
        return cls(match, changed=False)

    @property
    def match_completed(self) -> bool:
        return any(e.kind == EVENT_MATCH_COMPLETE for e in self.events)


class PhaseUpdate:
    """Result of checking whether the tournament moves past the group stage."""

    def __init__(self, phase: str, new_matches: Optional[List[Match]] = None,
                 events: Optional[List[Event]] = None, bracket=None):
        self.phase = phase
        self.new_matches = new_matches or []
        self.events = events or []
        self.bracket = bracket


class TournamentUpdate:
    """Score change plus everything it caused, applied to the whole tournament."""

    def __init__(self, matches, teams, phase, score_update, phase_update):
        self.matches = matches
        self.teams = teams
        self.phase = phase
        self.score_update = score_update
        self.phase_update = phase_update

    @property
    def match(self) -> Match:
        return self.score_update.match

    @property
    def events(self) -> List[Event]:
        return self.score_update.events + self.phase_update.events


def _find_team(team: Team, roster: Optional[Dict]) -> Team:
    """Current record for ``team``: the roster entry with the same id when there is one."""
    if roster and team.id in roster:
        return copy.deepcopy(roster[team.id])
    return copy.deepcopy(team)


def _apply_result(match: Match, winner_side: Side, roster: Optional[Dict], sign: int = 1) -> List[Team]:
    """
    Add (sign=1) or take back (sign=-1) a finished match's contribution to both records.
    """
    updated = []
    for side in (Side.TEAM1, Side.TEAM2):
        team = _find_team(match.team(side), roster)
        other = side.other()
        if side is winner_side:
            team.wins += sign
        else:
            team.losses += sign
        team.points_for += sign * match.total_points(side)
        team.points_against += sign * match.total_points(other)
        team.sets_won += sign * match.sets_won(side)
        team.sets_lost += sign * match.sets_won(other)
        updated.append(team)
    return updated


def _index_roster(teams: Optional[List[Team]]) -> Dict:
    if not teams:
        return {}
    return {team.id: team for team in teams if team.id is not None}


def _winner_side(match: Match) -> Side:
    winner = match.winner
    if winner.id is not None:
        return Side.TEAM1 if winner.id == match.team1.id else Side.TEAM2
    return Side.TEAM1 if winner.name == match.team1.name else Side.TEAM2


def _is_int(value) -> bool:
    # bool is an int subclass but never a score
    return isinstance(value, int) and not isinstance(value, bool)


def revert_result(match: Match, teams: Optional[List[Team]] = None) -> List[Team]:
    """
    Team records with a finished match's contribution taken back.

    Use before discarding a completed match. Matches that never counted
    (unfinished, or settled by a bye) give an empty list.
    """
    if not match.is_complete or match.winner is None or match.has_placeholder:
        return []
    return _apply_result(match, _winner_side(match), _index_roster(teams), sign=-1)


def reset_records(teams: List[Team]) -> List[Team]:
    """Copies of ``teams`` with every cumulative statistic back at zero."""
    return [Team(id=t.id, name=t.name, group=t.group, is_placeholder=t.is_placeholder) for t in teams]


def _complete_match(match: Match, winner_side: Side, roster: Dict) -> tuple:
    match.is_complete = True
    match.is_running = False
    updated_teams = _apply_result(match, winner_side, roster)
    match.team1, match.team2 = updated_teams
    match.winner = match.team(winner_side)
    loser = match.team(winner_side.other())

    score = ' / '.join(f"{s.team1_score}-{s.team2_score}" for s in match.sets if s.is_complete)
    message = f"{match.winner.name} beats {loser.name} {score}"
    logger.info('Match complete: %s', message)
    event = Event(EVENT_MATCH_COMPLETE, message, {
        'match_id': match.id,
        'winner': match.winner.name,
        'loser': loser.name,
        'phase': match.phase,
    })
    return updated_teams, event


def apply_score_delta(match: Match, side, delta: int, settings: TournamentSettings,
                      teams: Optional[List[Team]] = None) -> ScoreUpdate:
    """
    Add ``delta`` (+1 or -1) to ``side`` in the active set of a running match.

    Scores never drop below zero. When the point closes the set the match
    either moves on to the next set or finishes; a finished match updates the
    records of both teams. ``teams`` is the current roster, used so the
    returned records carry the latest statistics; without it the records
    embedded in the match are used.
    """
    side = Side.parse(side)
    if side is None or not _is_int(delta) or delta not in (1, -1):
        return ScoreUpdate.unchanged(match)
    if not match.is_running or match.is_complete or match.has_placeholder:
        return ScoreUpdate.unchanged(match)
    if not 0 <= match.current_set < len(match.sets) or match.active_set.is_complete:
        return ScoreUpdate.unchanged(match)

    current = match.active_set.score(side)
    new_score = max(0, current + delta)
    if new_score == current:
        return ScoreUpdate.unchanged(match)

    updated = copy.deepcopy(match)
    game_set = updated.active_set
    game_set.set_score(side, new_score)

    scoring = get_format(settings)
    if delta < 0 or not scoring.is_set_won(game_set, side):
        return ScoreUpdate(updated)

    game_set.is_complete = True
    set_number = updated.current_set + 1
    events = [Event(EVENT_SET_COMPLETE,
                    f"Set {set_number} to {updated.team(side).name} "
                    f"{game_set.team1_score}-{game_set.team2_score}",
                    {'match_id': updated.id, 'set': set_number, 'winner': updated.team(side).name})]

    if not scoring.is_match_decided(updated):
        updated.current_set += 1
        return ScoreUpdate(updated, events=events)

    winner_side = scoring.winner(updated, side)
    updated_teams, event = _complete_match(updated, winner_side, _index_roster(teams))
    events.append(event)
    return ScoreUpdate(updated, updated_teams, events)


def set_final_score(match: Match, team1_score: int, team2_score: int,
                    settings: TournamentSettings, teams: Optional[List[Team]] = None) -> ScoreUpdate:
    """
    Administrative override: record a final score as a single set and finish the match.

    Set progression is bypassed whatever the win condition. Correcting a match
    that was already finished first takes back the old result from both team
    records. Negative or level scores are ignored.
    """
    if not _is_int(team1_score) or not _is_int(team2_score):
        return ScoreUpdate.unchanged(match)
    if team1_score < 0 or team2_score < 0 or team1_score == team2_score:
        return ScoreUpdate.unchanged(match)
    if match.has_placeholder:
        return ScoreUpdate.unchanged(match)

    roster = _index_roster(teams)
    updated = copy.deepcopy(match)
    if match.is_complete and match.winner is not None:
        reverted = _apply_result(match, _winner_side(match), roster, sign=-1)
        for team in reverted:
            if team.id is not None:
                roster[team.id] = team
        updated.team1, updated.team2 = reverted

    set_count = max(len(updated.sets), get_format(settings).sets_per_match())
    updated.sets = [GameSet(team1_score, team2_score, True)]
    updated.sets.extend(GameSet() for _ in range(set_count - 1))
    updated.current_set = 0

    winner_side = Side.TEAM1 if team1_score > team2_score else Side.TEAM2
    updated_teams, event = _complete_match(updated, winner_side, roster)
    return ScoreUpdate(updated, updated_teams, [event])


def start_match(match: Match) -> Match:
    """Mark a match as being scored live; finished or TBD matches stay as they are."""
    if match.is_complete or match.is_running or match.has_placeholder:
        return match
    updated = copy.deepcopy(match)
    updated.is_running = True
    return updated


def stop_match(match: Match) -> Match:
    if not match.is_running:
        return match
    updated = copy.deepcopy(match)
    updated.is_running = False
    return updated


def merge_teams(teams: List[Team], patch: List[Team]) -> List[Team]:
    """Roster with patched records swapped in by id, order preserved."""
    by_id = {team.id: team for team in patch if team.id is not None}
    return [by_id.get(team.id, team) for team in teams]


def replace_match(matches: List[Match], updated: Match) -> List[Match]:
    return [updated if m is not None and m.id is not None and m.id == updated.id else m for m in matches]


def check_phase_progression(matches: List[Match], teams: List[Team], settings: TournamentSettings,
                            current_phase: str, starting_sequence: Optional[int] = None) -> PhaseUpdate:
    """
    Move from the group stage to the knockout stage once every group match is finished.

    Qualifiers are the top teams of each group in group order. Too few
    qualifiers leaves the tournament in the group stage with an
    ``insufficient_teams`` event.
    """
    if current_phase != PHASE_GROUP:
        return PhaseUpdate(current_phase)

    group_matches = [m for m in matches if m.phase == PHASE_GROUP]
    if not group_matches or not all(m.is_complete for m in group_matches):
        return PhaseUpdate(current_phase)

    existing = [m.phase for m in matches if m.phase in KNOCKOUT_PHASES]
    if existing:
        first_phase = min(existing, key=KNOCKOUT_PHASES.index)
        return PhaseUpdate(first_phase)

    if starting_sequence is None:
        sequences = [m.sequence for m in matches if m.sequence is not None]
        starting_sequence = max(sequences) + 1 if sequences else None

    qualifiers = collect_qualifiers(teams, settings)
    bracket = generate_knockout_bracket(qualifiers, settings, starting_sequence)
    if not bracket.ready:
        event = Event(EVENT_INSUFFICIENT_TEAMS, bracket.message,
                      {'required': bracket.required, 'available': bracket.available})
        return PhaseUpdate(current_phase, events=[event], bracket=bracket)

    logger.info('Group stage finished, moving to %s', bracket.first_phase)
    event = Event(EVENT_KNOCKOUT_GENERATED, bracket.message, {
        'phase': bracket.first_phase,
        'teams': bracket.real_team_count,
        'matches': len(bracket.matches),
    })
    return PhaseUpdate(bracket.first_phase, bracket.matches, [event], bracket)


def record_score(matches: List[Match], teams: List[Team], match_id: str, side, delta: int,
                 settings: TournamentSettings, current_phase: str) -> TournamentUpdate:
    """
    Apply a point change to one match of the tournament and follow it through.

    Returns the full match list and roster after the change, the resulting
    phase and the events raised along the way.
    """
    match = next((m for m in matches if m.id == match_id), None)
    if match is None:
        return TournamentUpdate(matches, teams, current_phase,
                                ScoreUpdate.unchanged(None), PhaseUpdate(current_phase))

    score_update = apply_score_delta(match, side, delta, settings, teams)
    if not score_update.changed:
        return TournamentUpdate(matches, teams, current_phase, score_update, PhaseUpdate(current_phase))

    all_matches = replace_match(matches, score_update.match)
    all_teams = merge_teams(teams, score_update.teams)
    phase_update = PhaseUpdate(current_phase)
    if score_update.match_completed:
        phase_update = check_phase_progression(all_matches, all_teams, settings, current_phase)
        all_matches = all_matches + phase_update.new_matches
    return TournamentUpdate(all_matches, all_teams, phase_update.phase, score_update, phase_update)
