"""
Group standings and knockout qualification.
"""
import string
from typing import Dict, List

from core.models import Team, TournamentSettings


def group_labels(number_of_groups: int) -> List[str]:
    """Sequential group labels: 1 -> ['A'], 3 -> ['A', 'B', 'C']."""
    count = max(0, min(number_of_groups, len(string.ascii_uppercase)))
    return list(string.ascii_uppercase[:count])


def teams_by_group(teams: List[Team], number_of_groups: int) -> Dict[str, List[Team]]:
    """
    Partition teams into the configured groups, preserving roster order.

    Teams whose label is not one of the configured groups are left out.
    """
    groups = {label: [] for label in group_labels(number_of_groups)}
    for team in teams:
        if team.group in groups:
            groups[team.group].append(team)
    return groups


def rank_teams(teams: List[Team]) -> List[Team]:
    """
    Order teams by standings: wins, then point differential, then points scored.

    The sort is stable, so fully tied teams keep their input order.
    """
    return sorted(teams, key=lambda t: (-t.wins, -t.point_diff, -t.points_for))


def calculate_group_standings(teams: List[Team], settings: TournamentSettings) -> Dict[str, List[dict]]:
    """
    Calculate ranked standings for every configured group.

    Returns: {group: [{'position': n, 'team': Team, 'point_diff': n,
                       'set_diff': n, 'matches_played': n, 'advancing': bool}, ...]}
    """
    standings = {}
    advance = qualifiers_per_group(settings)
    for label, group_teams in teams_by_group(teams, settings.number_of_groups).items():
        rows = []
        for position, team in enumerate(rank_teams(group_teams), start=1):
            rows.append({
                'position': position,
                'team': team,
                'point_diff': team.point_diff,
                'set_diff': team.set_diff,
                'matches_played': team.matches_played,
                'advancing': position <= advance,
            })
        standings[label] = rows
    return standings


def qualifiers_per_group(settings: TournamentSettings) -> int:
    """
    How many teams each group sends to the knockout stage.

    With a single group qualification is by overall ranking, so enough teams
    advance to fill the smallest bracket.
    """
    if settings.number_of_groups == 1:
        return max(settings.teams_advancing_from_group, settings.min_knockout_teams)
    return settings.teams_advancing_from_group


def collect_qualifiers(teams: List[Team], settings: TournamentSettings) -> List[Team]:
    """
    Top teams of each group, concatenated in group order.

    The result is the ranked qualification list used for bracket seeding:
    [A1, A2, B1, B2, ...] when two teams advance per group.
    """
    per_group = qualifiers_per_group(settings)
    qualified = []
    for group_teams in teams_by_group(teams, settings.number_of_groups).values():
        qualified.extend(rank_teams(group_teams)[:per_group])
    return qualified
