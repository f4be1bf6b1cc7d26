import os
import sys
import yaml
from core.allocation import generate_group_schedule
from core.models import Team, TournamentSettings


def load_teams(file_path):
    """Load a roster from YAML: {group_letter: [team names]}."""
    teams = []
    with open(file_path, mode='r', encoding='utf-8') as file:
        groups_data = yaml.safe_load(file) or {}
        for group_name, team_names in groups_data.items():
            for index, team_name in enumerate(team_names or []):
                group = str(group_name).upper()
                teams.append(Team(id=f"{group}{index + 1}", name=team_name, group=group))
    return teams


def load_settings(file_path):
    if not file_path or not os.path.exists(file_path):
        return TournamentSettings()
    with open(file_path, mode='r', encoding='utf-8') as file:
        return TournamentSettings.from_dict(yaml.safe_load(file))


def format_schedule(matches):
    """One line per match, grouped under a heading per group."""
    lines = []
    matches_by_group = {}
    for match in matches:
        matches_by_group.setdefault(match.group, []).append(match)
    for group, group_matches in sorted(matches_by_group.items()):
        if lines:
            lines.append('')
        lines.append(f"# Group {group}")
        for match in group_matches:
            lines.append(f"#{match.sequence} {match.court}: {match.team1.name} vs {match.team2.name}")
    return lines


def main():
    script_dir = os.path.dirname(__file__)
    base_dir = os.path.dirname(script_dir)

    # Use command line arguments if provided, otherwise use default paths
    teams_file = sys.argv[1] if len(sys.argv) > 1 else os.path.join(base_dir, 'data', 'teams.yaml')
    settings_file = sys.argv[2] if len(sys.argv) > 2 else os.path.join(base_dir, 'data', 'settings.yaml')

    teams = load_teams(teams_file)
    if not teams:
        print(f"No teams loaded. Check {teams_file}", file=sys.stderr)
        return

    settings = load_settings(settings_file)
    # Make sure every lettered group in the file is scheduled
    letters = [team.group for team in teams if len(team.group) == 1 and team.group.isalpha()]
    if letters:
        needed = ord(max(letters)) - ord('A') + 1
        settings.number_of_groups = max(settings.number_of_groups, min(needed, 26))

    result = generate_group_schedule(teams, settings)
    for line in format_schedule(result.matches):
        print(line)

    if not result.complete:
        print(f"WARNING: only {len(result.matches)} of {result.expected_matches} matches could be "
              f"scheduled with a cooldown of {settings.cooldown}", file=sys.stderr)


if __name__ == '__main__':
    main()
