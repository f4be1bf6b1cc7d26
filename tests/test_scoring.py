"""
Unit tests for score progression and phase advancement.
"""
import pytest
import random
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.allocation import generate_group_matches
from core.models import GameSet, Match, Side, Team, TournamentSettings
from core.scoring import (
    apply_score_delta,
    set_final_score,
    start_match,
    stop_match,
    merge_teams,
    check_phase_progression,
    record_score,
    revert_result,
    reset_records,
)


def new_match(settings, team1=None, team2=None, running=True, sets=None):
    team1 = team1 or Team(id="t1", name="Team One", group="A")
    team2 = team2 or Team(id="t2", name="Team Two", group="A")
    sets = sets or [GameSet() for _ in range(settings.number_of_sets if settings.win_condition == 'sets' else 1)]
    return Match(id="m1", team1=team1, team2=team2, sets=sets, is_running=running, group="A")


def score_points(match, side, count, settings, teams=None):
    update = None
    for _ in range(count):
        update = apply_score_delta(match, side, 1, settings, teams)
        match = update.match
    return match, update


class TestPreconditions:
    """Stale or malformed calls leave the match alone."""

    def test_not_running_is_noop(self, points_settings):
        match = new_match(points_settings, running=False)
        update = apply_score_delta(match, 'team1', 1, points_settings)
        assert not update.changed
        assert update.match is match
        assert match.sets[0].team1_score == 0

    def test_unknown_side_is_noop(self, points_settings):
        match = new_match(points_settings)
        assert not apply_score_delta(match, 'team3', 1, points_settings).changed

    @pytest.mark.parametrize("delta", [0, 2, -2, 5, True, 1.0, -1.0, "1"])
    def test_bad_delta_is_noop(self, points_settings, delta):
        match = new_match(points_settings)
        assert not apply_score_delta(match, 'team1', delta, points_settings).changed

    def test_decrement_at_zero_is_noop(self, points_settings):
        match = new_match(points_settings)
        update = apply_score_delta(match, Side.TEAM1, -1, points_settings)
        assert not update.changed
        assert update.match.sets[0].team1_score == 0

    def test_placeholder_participants_cannot_score(self, points_settings):
        match = new_match(points_settings, team1=Team.placeholder("TBD"), team2=Team.placeholder("TBD"))
        assert not apply_score_delta(match, 'team1', 1, points_settings).changed

    def test_input_match_is_not_mutated(self, points_settings):
        match = new_match(points_settings)
        update = apply_score_delta(match, 'team2', 1, points_settings)
        assert update.changed
        assert update.match.sets[0].team2_score == 1
        assert match.sets[0].team2_score == 0


class TestPointsMode:
    """Single set, first to points_to_win."""

    def test_increment_and_decrement(self, points_settings):
        match = new_match(points_settings)
        match, _ = score_points(match, 'team1', 3, points_settings)
        update = apply_score_delta(match, 'team1', -1, points_settings)
        assert update.changed
        assert update.match.sets[0].team1_score == 2
        assert update.events == []

    def test_first_to_fifteen(self, points_settings):
        team1 = Team(id="t1", name="Team One", group="A")
        team2 = Team(id="t2", name="Team Two", group="A")
        roster = [team1, team2]
        match = new_match(points_settings, team1, team2)

        match, _ = score_points(match, 'team2', 10, points_settings, roster)
        match, update = score_points(match, 'team1', 15, points_settings, roster)

        assert match.is_complete
        assert not match.is_running
        assert match.winner.id == "t1"
        records = {t.id: t for t in update.teams}
        assert records["t1"].wins == 1
        assert records["t1"].points_for == 15
        assert records["t1"].points_against == 10
        assert records["t1"].sets_won == 1
        assert records["t2"].losses == 1
        assert records["t2"].points_for == 10
        assert records["t2"].points_against == 15
        assert [e.kind for e in update.events] == ["set_complete", "match_complete"]
        assert "Team One" in update.events[-1].message

    def test_generated_group_match_played_to_fifteen(self, group_a_teams, points_settings):
        matches = generate_group_matches(group_a_teams, points_settings)
        assert len(matches) == 6

        match = start_match(matches[0])
        match, _ = score_points(match, 'team2', 10, points_settings, group_a_teams)
        match, update = score_points(match, 'team1', 15, points_settings, group_a_teams)

        assert match.is_complete
        assert match.winner.id == matches[0].team1.id
        winner = next(t for t in update.teams if t.id == match.winner.id)
        assert (winner.wins, winner.points_for, winner.points_against) == (1, 15, 10)

    def test_roster_records_are_used(self, points_settings):
        stale = Team(id="t1", name="Team One", group="A")
        current = Team(id="t1", name="Team One", group="A", wins=2, points_for=30)
        match = new_match(points_settings, team1=stale)
        match, update = score_points(match, 'team1', 15, points_settings, [current])
        records = {t.id: t for t in update.teams}
        assert records["t1"].wins == 3
        assert records["t1"].points_for == 45
        # The roster itself is left untouched
        assert current.wins == 2

    def test_complete_match_ignores_further_points(self, points_settings):
        match = new_match(points_settings)
        match, _ = score_points(match, 'team1', 15, points_settings)
        before = match.to_dict()
        for side in ('team1', 'team2'):
            for delta in (1, -1):
                update = apply_score_delta(match, side, delta, points_settings)
                assert not update.changed
                assert update.match.to_dict() == before


class TestTimeMode:
    def test_points_never_finish_the_match(self):
        settings = TournamentSettings(win_condition='time', number_of_groups=1)
        match = new_match(settings)
        match, update = score_points(match, 'team1', 40, settings)
        assert match.sets[0].team1_score == 40
        assert not match.is_complete
        assert update.events == []


class TestSetsMode:
    """Best of three sets."""

    def test_best_of_three(self, sets_settings):
        team1 = Team(id="t1", name="Team One", group="A")
        team2 = Team(id="t2", name="Team Two", group="A")
        match = new_match(sets_settings, team1, team2, sets=[GameSet(24, 20), GameSet(), GameSet()])

        update = apply_score_delta(match, 'team1', 1, sets_settings)
        match = update.match
        assert match.sets[0].is_complete
        assert match.current_set == 1
        assert not match.is_complete
        assert [e.kind for e in update.events] == ["set_complete"]

        match.sets[1] = GameSet(18, 24)
        match = apply_score_delta(match, 'team2', 1, sets_settings).match
        assert match.sets[1].is_complete
        assert match.current_set == 2
        assert not match.is_complete

        match.sets[2] = GameSet(24, 23)
        update = apply_score_delta(match, 'team1', 1, sets_settings)
        match = update.match
        assert match.is_complete
        assert match.current_set == 2
        assert match.winner.id == "t1"
        assert match.sets_won(Side.TEAM1) == 2
        assert match.sets_won(Side.TEAM2) == 1

        records = {t.id: t for t in update.teams}
        assert records["t1"].sets_won == 2
        assert records["t1"].sets_lost == 1
        assert records["t2"].sets_won == 1
        assert records["t1"].points_for == 25 + 18 + 25
        assert records["t2"].points_for == 20 + 25 + 23

    def test_straight_sets_end_early(self, sets_settings):
        match = new_match(sets_settings, sets=[GameSet(25, 10, True), GameSet(24, 3), GameSet()])
        match.current_set = 1
        match = apply_score_delta(match, 'team1', 1, sets_settings).match
        assert match.is_complete
        assert match.current_set == 1
        assert match.sets[2] == GameSet()

    def test_win_by_two_from_fifteen(self, sets_settings):
        match = new_match(sets_settings)
        match, _ = score_points(match, 'team1', 15, sets_settings)
        assert match.sets[0].is_complete
        assert match.sets[0].team1_score == 15
        assert match.current_set == 1

    def test_one_point_lead_keeps_set_open(self, sets_settings):
        match = new_match(sets_settings, sets=[GameSet(15, 15), GameSet(), GameSet()])
        match = apply_score_delta(match, 'team1', 1, sets_settings).match
        assert not match.sets[0].is_complete
        match = apply_score_delta(match, 'team1', 1, sets_settings).match
        assert match.sets[0].is_complete

    def test_decrement_never_closes_a_set(self, sets_settings):
        match = new_match(sets_settings, sets=[GameSet(17, 16), GameSet(), GameSet()])
        match = apply_score_delta(match, 'team2', -1, sets_settings).match
        assert match.sets[0] == GameSet(17, 15)
        assert match.current_set == 0

    def test_completed_set_is_frozen(self, sets_settings):
        match = new_match(sets_settings, sets=[GameSet(25, 3, True), GameSet(), GameSet()])
        # current_set still points at the finished set
        assert not apply_score_delta(match, 'team2', 1, sets_settings).changed


class TestProperties:
    """Randomised checks over long sequences of score changes."""

    @pytest.mark.parametrize("win_condition", ["points", "sets"])
    def test_scores_never_negative_and_stats_balance(self, win_condition):
        settings = TournamentSettings(number_of_groups=1, win_condition=win_condition,
                                      number_of_sets=3, sets_to_win=2, points_to_win_set=21)
        rng = random.Random(7)
        for _ in range(20):
            team1 = Team(id="t1", name="One", group="A", wins=1, points_for=5, points_against=9)
            team2 = Team(id="t2", name="Two", group="A", losses=2, points_for=11, points_against=3)
            match = new_match(settings, team1, team2)
            update = None
            for _ in range(2000):
                update = apply_score_delta(match, rng.choice(['team1', 'team2']),
                                           rng.choice([1, 1, 1, -1]), settings, [team1, team2])
                match = update.match
                for game_set in match.sets:
                    assert game_set.team1_score >= 0 and game_set.team2_score >= 0
                if match.is_complete:
                    break
            assert match.is_complete
            records = {t.id: t for t in update.teams}
            winner = records[match.winner.id]
            loser = records["t2" if match.winner.id == "t1" else "t1"]
            before = {"t1": team1, "t2": team2}
            assert winner.wins - before[winner.id].wins == 1
            assert loser.losses - before[loser.id].losses == 1
            assert (winner.points_for - before[winner.id].points_for ==
                    loser.points_against - before[loser.id].points_against)
            assert (loser.points_for - before[loser.id].points_for ==
                    winner.points_against - before[winner.id].points_against)

    def test_replay_is_deterministic(self, sets_settings):
        rng = random.Random(3)
        moves = [(rng.choice(['team1', 'team2']), rng.choice([1, -1, 1])) for _ in range(120)]

        def replay():
            match = new_match(sets_settings)
            for side, delta in moves:
                match = apply_score_delta(match, side, delta, sets_settings).match
            return match.to_dict()

        assert replay() == replay()


class TestManualScore:
    """Administrative final score override."""

    def test_sets_score_and_completes(self, sets_settings):
        match = new_match(sets_settings, running=False)
        update = set_final_score(match, 21, 17, sets_settings)
        assert update.changed
        result = update.match
        assert result.is_complete
        assert not result.is_running
        assert result.sets[0] == GameSet(21, 17, True)
        assert len(result.sets) == 3
        assert result.winner.id == "t1"
        records = {t.id: t for t in update.teams}
        assert records["t1"].wins == 1
        assert records["t1"].sets_won == 1
        assert records["t2"].losses == 1
        assert records["t2"].points_for == 17

    def test_team2_can_win(self, points_settings):
        update = set_final_score(new_match(points_settings), 8, 15, points_settings)
        assert update.match.winner.id == "t2"

    @pytest.mark.parametrize("scores", [(10, 10), (-1, 5), (5, -1), (True, False), (15.0, 3), (15, "3")])
    def test_invalid_scores_are_noop(self, points_settings, scores):
        match = new_match(points_settings)
        update = set_final_score(match, scores[0], scores[1], points_settings)
        assert not update.changed
        assert update.match is match

    def test_correction_replaces_previous_result(self, points_settings):
        team1 = Team(id="t1", name="Team One", group="A")
        team2 = Team(id="t2", name="Team Two", group="A")
        match = new_match(points_settings, team1, team2)

        first = set_final_score(match, 15, 10, points_settings, [team1, team2])
        roster = merge_teams([team1, team2], first.teams)
        second = set_final_score(first.match, 12, 15, points_settings, roster)
        records = {t.id: t for t in merge_teams(roster, second.teams)}

        assert second.match.winner.id == "t2"
        assert records["t1"].wins == 0
        assert records["t1"].losses == 1
        assert records["t1"].points_for == 12
        assert records["t1"].points_against == 15
        assert records["t2"].wins == 1
        assert records["t2"].losses == 0
        assert records["t2"].points_for == 15

    def test_correction_without_roster(self, points_settings):
        match = new_match(points_settings)
        first = set_final_score(match, 15, 10, points_settings)
        second = set_final_score(first.match, 15, 11, points_settings)
        records = {t.id: t for t in second.teams}
        assert records["t1"].wins == 1
        assert records["t1"].points_against == 11
        assert records["t2"].losses == 1


class TestStartStop:
    def test_start_and_stop(self, points_settings):
        match = new_match(points_settings, running=False)
        started = start_match(match)
        assert started.is_running
        assert not match.is_running
        assert not stop_match(started).is_running

    def test_completed_match_cannot_start(self, points_settings):
        match = set_final_score(new_match(points_settings, running=False), 15, 3, points_settings).match
        assert start_match(match) is match
        assert not match.is_running


class TestPhaseProgression:
    """Automatic move from the group stage to the knockout stage."""

    def _finish(self, matches, teams, settings):
        """Play every group match with team1 winning 15-5."""
        for match in list(matches):
            update = set_final_score(match, 15, 5, settings, teams)
            teams = merge_teams(teams, update.teams)
            matches = [update.match if m is match else m for m in matches]
        return matches, teams

    def test_waits_for_all_group_matches(self, group_a_teams, points_settings):
        matches = generate_group_matches(group_a_teams, points_settings)
        update = check_phase_progression(matches, group_a_teams, points_settings, 'group')
        assert update.phase == 'group'
        assert update.new_matches == []

    def test_generates_bracket_when_group_stage_done(self, group_a_teams, points_settings):
        matches, teams = self._finish(generate_group_matches(group_a_teams, points_settings),
                                      group_a_teams, points_settings)
        update = check_phase_progression(matches, teams, points_settings, 'group')
        assert update.phase == 'semifinal'
        assert len(update.new_matches) == 3
        assert [e.kind for e in update.events] == ['knockout_generated']
        first_semi = update.new_matches[0]
        # Team A won all three of its matches as team1
        assert first_semi.team1.name == "Team A"
        assert first_semi.sequence == max(m.sequence for m in matches) + 1

    def test_eight_qualifiers_reach_quarterfinals(self):
        settings = TournamentSettings(number_of_groups=4, teams_advancing_from_group=2)
        teams = [Team(id=f"{g}{i}", name=f"{g}{i}", group=g) for g in "ABCD" for i in range(1, 4)]
        matches, teams = self._finish(generate_group_matches(teams, settings), teams, settings)
        update = check_phase_progression(matches, teams, settings, 'group')
        assert update.phase == 'quarterfinal'
        quarterfinals = [m for m in update.new_matches if m.phase == 'quarterfinal']
        assert len(quarterfinals) == 4
        assert (quarterfinals[0].team1.name, quarterfinals[0].team2.name) == ("A1", "D2")

    def test_not_ready_stays_in_group_phase(self, points_settings):
        teams = [Team(id=n, name=n, group="A") for n in ("X", "Y", "Z")]
        matches, teams = self._finish(generate_group_matches(teams, points_settings), teams, points_settings)
        update = check_phase_progression(matches, teams, points_settings, 'group')
        assert update.phase == 'group'
        assert update.new_matches == []
        assert update.events[0].kind == 'insufficient_teams'
        assert update.events[0].data == {'required': 4, 'available': 3}

    def test_only_runs_in_group_phase(self, group_a_teams, points_settings):
        matches, teams = self._finish(generate_group_matches(group_a_teams, points_settings),
                                      group_a_teams, points_settings)
        update = check_phase_progression(matches, teams, points_settings, 'quarterfinal')
        assert update.phase == 'quarterfinal'
        assert update.new_matches == []

    def test_no_group_matches(self, points_settings):
        assert check_phase_progression([], [], points_settings, 'group').phase == 'group'


class TestRecordScore:
    """Point changes applied to a whole tournament."""

    def test_last_point_of_group_stage_builds_bracket(self, group_a_teams, points_settings):
        matches = generate_group_matches(group_a_teams, points_settings)
        for index, match in enumerate(matches):
            match.id = f"m{index}"
        teams = group_a_teams
        for match in matches[:-1]:
            update = set_final_score(match, 15, 7, points_settings, teams)
            teams = merge_teams(teams, update.teams)
            matches = [update.match if m.id == match.id else m for m in matches]

        last = matches[-1]
        matches = [start_match(m) if m.id == last.id else m for m in matches]
        phase = 'group'
        update = None
        for _ in range(15):
            update = record_score(matches, teams, last.id, 'team2', 1, points_settings, phase)
            matches, teams, phase = update.matches, update.teams, update.phase

        assert update.match.is_complete
        assert phase == 'semifinal'
        assert len(matches) == 9
        kinds = [e.kind for e in update.events]
        assert kinds == ['set_complete', 'match_complete', 'knockout_generated']
        played = sum(t.matches_played for t in teams)
        assert played == 12

    def test_unknown_match(self, group_a_teams, points_settings):
        update = record_score([], group_a_teams, "missing", 'team1', 1, points_settings, 'group')
        assert update.match is None
        assert update.events == []
        assert update.phase == 'group'

    def test_noop_returns_same_lists(self, group_a_teams, points_settings):
        matches = generate_group_matches(group_a_teams, points_settings)
        matches[0].id = "m0"
        update = record_score(matches, group_a_teams, "m0", 'team1', 1, points_settings, 'group')
        # Not running yet
        assert not update.score_update.changed
        assert update.matches is matches
        assert update.teams is group_a_teams


class TestRevertResult:
    """Taking a finished match back out of the team records."""

    def test_revert_restores_records(self, points_settings):
        team1 = Team(id="t1", name="Team One", group="A", wins=2, points_for=30, points_against=20)
        team2 = Team(id="t2", name="Team Two", group="A", losses=1, points_for=7, points_against=15)
        update = set_final_score(new_match(points_settings, team1, team2), 15, 9, points_settings,
                                 [team1, team2])
        roster = merge_teams([team1, team2], update.teams)

        records = {t.id: t for t in revert_result(update.match, roster)}

        assert records["t1"] == team1
        assert records["t2"] == team2
        # The roster passed in is left alone
        assert roster[0].wins == 3

    def test_unfinished_match_reverts_nothing(self, points_settings):
        assert revert_result(new_match(points_settings)) == []

    def test_bye_reverts_nothing(self, points_settings):
        team = Team(id="t1", name="Team One", wins=1)
        bye = Match(id="q1", team1=team, team2=Team.placeholder("BYE"), is_complete=True, winner=team)
        assert revert_result(bye, [team]) == []

    def test_reset_records(self):
        teams = [Team(id="t1", name="Team One", group="B", wins=2, losses=1, points_for=40,
                      points_against=33, sets_won=4, sets_lost=2)]
        cleared = reset_records(teams)
        assert cleared == [Team(id="t1", name="Team One", group="B")]
        assert teams[0].wins == 2
