"""
Flask web application for the tournament scoreboard.

The app owns state and persistence (YAML files in the data directory) and
calls into ``core`` for scheduling, scoring and bracket generation.
"""
import os
import hmac
import uuid
import yaml
from datetime import timedelta
from functools import wraps
from filelock import FileLock
from flask import Flask, request, jsonify, session
from core.models import (
    Event, Match, Side, Team, TournamentSettings,
    PHASE_GROUP, PHASES, KNOCKOUT_PHASES,
    EVENT_GROUP_STAGE_GENERATED, EVENT_PARTIAL_SCHEDULE,
)
from core.allocation import generate_group_schedule, court_label
from core.elimination import generate_knockout_bracket
from core.formats import get_format
from core.scoring import (
    set_final_score, start_match, stop_match, check_phase_progression,
    merge_teams, replace_match, record_score, revert_result, reset_records,
)
from core.standings import calculate_group_standings, collect_qualifiers, group_labels

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(BASE_DIR, 'data'))


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


app.secret_key = _get_or_create_secret_key()
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=1)

TEAMS_FILENAME = 'teams.yaml'
GAMES_FILENAME = 'games.yaml'
SETTINGS_FILENAME = 'settings.yaml'
TOURNAMENT_FILENAME = 'tournament.yaml'


def _file_path(filename: str) -> str:
    """Return full path to a data file."""
    return os.path.join(DATA_DIR, filename)


def _data_lock() -> FileLock:
    """Lock serializing every read-modify-write of the data files."""
    os.makedirs(DATA_DIR, exist_ok=True)
    return FileLock(os.path.join(DATA_DIR, '.lock'), timeout=10)


def _load_yaml(filename: str):
    path = _file_path(filename)
    if not os.path.exists(path):
        return None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        app.logger.warning(f'Failed to parse {path}: {e}')
        return None


def _save_yaml(filename: str, data):
    os.makedirs(DATA_DIR, exist_ok=True)
    with open(_file_path(filename), 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def load_settings() -> TournamentSettings:
    """Load settings from YAML file, merging with defaults."""
    data = _load_yaml(SETTINGS_FILENAME)
    if not isinstance(data, dict):
        return TournamentSettings()
    try:
        return TournamentSettings.from_dict(data)
    except (TypeError, ValueError) as e:
        app.logger.warning(f'Invalid settings file, using defaults: {e}')
        return TournamentSettings()


def save_settings(settings: TournamentSettings):
    _save_yaml(SETTINGS_FILENAME, settings.to_dict())


def load_teams() -> list:
    data = _load_yaml(TEAMS_FILENAME)
    if not data:
        return []
    return [Team.from_dict(t) for t in data.get('teams', [])]


def save_teams(teams: list):
    _save_yaml(TEAMS_FILENAME, {'teams': [t.to_dict() for t in teams]})


def load_games() -> list:
    data = _load_yaml(GAMES_FILENAME)
    if not data:
        return []
    return [Match.from_dict(m) for m in data.get('games', [])]


def save_games(games: list):
    _save_yaml(GAMES_FILENAME, {'games': [m.to_dict() for m in games]})


def load_phase() -> str:
    data = _load_yaml(TOURNAMENT_FILENAME)
    phase = data.get('phase') if isinstance(data, dict) else None
    return phase if phase in PHASES else PHASE_GROUP


def save_phase(phase: str):
    _save_yaml(TOURNAMENT_FILENAME, {'phase': phase})


def _new_id() -> str:
    return uuid.uuid4().hex


def _assign_ids(matches: list) -> list:
    for match in matches:
        if match.id is None:
            match.id = _new_id()
    return matches


def _next_sequence(games: list) -> int:
    sequences = [m.sequence for m in games if m.sequence is not None]
    return max(sequences) + 1 if sequences else 1


def _public_settings(settings: TournamentSettings) -> dict:
    data = settings.to_dict()
    data.pop('admin_password', None)
    return data


def _events_json(events) -> list:
    return [e.to_dict() for e in events]


def calculate_tournament_stats(teams: list, games: list, settings: TournamentSettings, phase: str) -> dict:
    """Dashboard counters: teams, games played, courts in use and the current phase."""
    return {
        'total_teams': len(teams),
        'completed_games': sum(1 for g in games if g.is_complete),
        'pending_games': sum(1 for g in games if not g.is_complete and not g.is_running),
        'total_games': len(games),
        'active_courts': sum(1 for g in games if g.is_running),
        'number_of_courts': settings.number_of_courts,
        'phase': phase,
    }


UPCOMING_GAMES = 3


def _schedule_order(game: Match):
    """Running games first, then pending, then completed; by sequence within each."""
    status = 0 if game.is_running else (2 if game.is_complete else 1)
    sequence = game.sequence if game.sequence is not None else float('inf')
    return status, sequence


def build_court_schedule(games: list, settings: TournamentSettings) -> dict:
    """
    Games laid out per court, plus what is live and what comes next.

    Courts are the configured ones in order, followed by any other court
    label found on a game.
    """
    courts = [court_label(i) for i in range(settings.number_of_courts)]
    courts += sorted({g.court for g in games if g.court and g.court not in courts})

    schedule = []
    for court in courts:
        court_games = sorted((g for g in games if g.court == court), key=_schedule_order)
        schedule.append({
            'court': court,
            'games': [g.to_dict() for g in court_games],
            'completed': sum(1 for g in court_games if g.is_complete),
            'pending': sum(1 for g in court_games if not g.is_complete and not g.is_running),
            'live': sum(1 for g in court_games if g.is_running),
        })

    ordered = sorted(games, key=_schedule_order)
    return {
        'courts': schedule,
        'live': [g.to_dict() for g in ordered if g.is_running],
        'upcoming': [g.to_dict() for g in ordered
                     if not g.is_complete and not g.is_running][:UPCOMING_GAMES],
    }


def get_champion(games: list):
    """Winner of the completed final, if any."""
    for game in games:
        if game.phase == 'final' and game.is_complete and game.winner is not None:
            return game.winner
    return None


def admin_required(f):
    """Reject with 401 unless the admin password was entered this session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not session.get('admin'):
            return jsonify({'error': 'Admin access required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def _find_game(games: list, game_id: str):
    return next((g for g in games if g.id == game_id), None)


@app.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    password = str(data.get('password', ''))
    settings = load_settings()
    if hmac.compare_digest(password.encode(), settings.admin_password.encode()):
        session['admin'] = True
        return jsonify({'success': True})
    return jsonify({'error': 'Incorrect password'}), 401


@app.route('/logout', methods=['POST'])
def logout():
    session.pop('admin', None)
    return jsonify({'success': True})


@app.route('/api/state')
def api_state():
    settings = load_settings()
    teams = load_teams()
    games = load_games()
    phase = load_phase()
    return jsonify({
        'teams': [t.to_dict() for t in teams],
        'games': [g.to_dict() for g in games],
        'settings': _public_settings(settings),
        'phase': phase,
        'stats': calculate_tournament_stats(teams, games, settings, phase),
    })


@app.route('/api/settings', methods=['GET', 'POST'])
def api_settings():
    if request.method == 'GET':
        return jsonify(_public_settings(load_settings()))
    if not session.get('admin'):
        return jsonify({'error': 'Admin access required'}), 401

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Missing settings'}), 400
    with _data_lock():
        current = load_settings().to_dict()
        current.update(data)
        try:
            settings = TournamentSettings.from_dict(current)
        except (TypeError, ValueError) as e:
            return jsonify({'error': f'Invalid settings: {e}'}), 400
        errors = settings.validate()
        if errors:
            return jsonify({'error': ' '.join(errors), 'errors': errors}), 400
        save_settings(settings)
    return jsonify({'success': True, 'settings': _public_settings(settings)})


@app.route('/api/teams', methods=['POST'])
@admin_required
def api_add_team():
    data = request.get_json(silent=True) or {}
    name = str(data.get('name', '')).strip()
    group = str(data.get('group', '')).strip().upper()
    if not name:
        return jsonify({'error': 'Missing team name'}), 400
    with _data_lock():
        settings = load_settings()
        if group not in group_labels(settings.number_of_groups):
            return jsonify({'error': f'Unknown group: {group}'}), 400
        teams = load_teams()
        if any(t.name.lower() == name.lower() for t in teams):
            return jsonify({'error': f'Team "{name}" already exists'}), 400
        team = Team(id=_new_id(), name=name, group=group)
        teams.append(team)
        save_teams(teams)
    event = Event('team_added', f'{name} has been added to Group {group}')
    return jsonify({'success': True, 'team': team.to_dict(), 'events': _events_json([event])})


@app.route('/api/teams/delete', methods=['POST'])
@admin_required
def api_delete_team():
    data = request.get_json(silent=True) or {}
    team_id = data.get('team_id')
    with _data_lock():
        teams = load_teams()
        if not any(t.id == team_id for t in teams):
            return jsonify({'error': 'Team not found'}), 404
        games = load_games()
        remaining = [g for g in games if not g.involves(team_id)]
        for game in games:
            if game.involves(team_id):
                teams = merge_teams(teams, revert_result(game, teams))
        save_teams([t for t in teams if t.id != team_id])
        save_games(remaining)
    return jsonify({'success': True, 'removed_games': len(games) - len(remaining)})


@app.route('/api/games/generate', methods=['POST'])
@admin_required
def api_generate_games():
    """
    Generate the group stage round robin for every group.

    Existing games are replaced, so team records start again from zero.
    """
    with _data_lock():
        settings = load_settings()
        teams = reset_records(load_teams())
        result = generate_group_schedule(teams, settings)
        _assign_ids(result.matches)
        save_teams(teams)
        save_games(result.matches)
        save_phase(PHASE_GROUP)

    app.logger.info(f'Generated {len(result.matches)} group stage games')
    events = [Event(EVENT_GROUP_STAGE_GENERATED,
                    f'{len(result.matches)} group stage games created',
                    {'count': len(result.matches)})]
    if not result.complete:
        events.append(Event(EVENT_PARTIAL_SCHEDULE,
                            f'Only {len(result.matches)} of {result.expected_matches} games could be '
                            f'scheduled with the current cooldown',
                            result.summary()))
    return jsonify({
        'success': True,
        'games': [m.to_dict() for m in result.matches],
        'schedule': result.summary(),
        'events': _events_json(events),
    })


@app.route('/api/games', methods=['POST'])
@admin_required
def api_create_game():
    """Create a single match by hand."""
    data = request.get_json(silent=True) or {}
    team1_id = data.get('team1_id')
    team2_id = data.get('team2_id')
    if not team1_id or not team2_id:
        return jsonify({'error': 'Missing teams'}), 400
    if team1_id == team2_id:
        return jsonify({'error': 'Please select two different teams'}), 400
    phase = data.get('phase', PHASE_GROUP)
    if phase not in PHASES:
        return jsonify({'error': f'Unknown phase: {phase}'}), 400

    with _data_lock():
        settings = load_settings()
        teams = {t.id: t for t in load_teams()}
        if team1_id not in teams or team2_id not in teams:
            return jsonify({'error': 'Team not found'}), 404
        team1, team2 = teams[team1_id], teams[team2_id]
        games = load_games()
        game = Match(
            id=_new_id(),
            team1=team1,
            team2=team2,
            sets=get_format(settings).new_sets(),
            court=data.get('court') or court_label(len(games) % max(1, settings.number_of_courts)),
            phase=phase,
            group=team1.group if phase == PHASE_GROUP and team1.group == team2.group else None,
            sequence=_next_sequence(games),
        )
        games.append(game)
        save_games(games)
    event = Event('game_created', f'{team1.name} vs {team2.name} scheduled on {game.court}')
    return jsonify({'success': True, 'game': game.to_dict(), 'events': _events_json([event])})


@app.route('/api/games/delete', methods=['POST'])
@admin_required
def api_delete_game():
    data = request.get_json(silent=True) or {}
    game_id = data.get('game_id')
    with _data_lock():
        games = load_games()
        game = _find_game(games, game_id)
        if game is None:
            return jsonify({'error': 'Game not found'}), 404
        teams = load_teams()
        reverted = revert_result(game, teams)
        if reverted:
            save_teams(merge_teams(teams, reverted))
        save_games([g for g in games if g.id != game_id])
    return jsonify({'success': True})


@app.route('/api/games/<game_id>/start', methods=['POST'])
def api_start_game(game_id):
    with _data_lock():
        games = load_games()
        game = _find_game(games, game_id)
        if game is None:
            return jsonify({'error': 'Game not found'}), 404
        updated = start_match(game)
        save_games(replace_match(games, updated))
    return jsonify({'success': True, 'game': updated.to_dict()})


@app.route('/api/games/<game_id>/stop', methods=['POST'])
def api_stop_game(game_id):
    with _data_lock():
        games = load_games()
        game = _find_game(games, game_id)
        if game is None:
            return jsonify({'error': 'Game not found'}), 404
        updated = stop_match(game)
        save_games(replace_match(games, updated))
    return jsonify({'success': True, 'game': updated.to_dict()})


@app.route('/api/games/<game_id>/score', methods=['POST'])
def api_update_score(game_id):
    """Add or remove one point for a side of a running game."""
    data = request.get_json(silent=True) or {}
    side = Side.parse(data.get('side'))
    delta = data.get('delta')
    if side is None:
        return jsonify({'error': 'side must be "team1" or "team2"'}), 400
    if not isinstance(delta, int) or isinstance(delta, bool) or delta not in (1, -1):
        return jsonify({'error': 'delta must be 1 or -1'}), 400

    with _data_lock():
        settings = load_settings()
        teams = load_teams()
        games = load_games()
        if _find_game(games, game_id) is None:
            return jsonify({'error': 'Game not found'}), 404
        phase = load_phase()
        update = record_score(games, teams, game_id, side, delta, settings, phase)
        if update.score_update.changed:
            save_games(_assign_ids(update.matches))
            save_teams(update.teams)
            if update.phase != phase:
                save_phase(update.phase)
                app.logger.info(f'Tournament phase changed from {phase} to {update.phase}')

    changed_ids = {t.id for t in update.score_update.teams}
    return jsonify({
        'success': True,
        'changed': update.score_update.changed,
        'game': update.match.to_dict(),
        'teams': [t.to_dict() for t in update.teams if t.id in changed_ids],
        'phase': update.phase,
        'events': _events_json(update.events),
    })


@app.route('/api/games/<game_id>/final-score', methods=['POST'])
@admin_required
def api_final_score(game_id):
    """Administrative override of a game's final score."""
    data = request.get_json(silent=True) or {}
    team1_score = data.get('team1_score')
    team2_score = data.get('team2_score')
    for score in (team1_score, team2_score):
        if not isinstance(score, int) or isinstance(score, bool) or score < 0:
            return jsonify({'error': 'Scores must be non-negative integers'}), 400
    if team1_score == team2_score:
        return jsonify({'error': 'Scores cannot be level'}), 400

    with _data_lock():
        settings = load_settings()
        teams = load_teams()
        games = load_games()
        game = _find_game(games, game_id)
        if game is None:
            return jsonify({'error': 'Game not found'}), 404
        update = set_final_score(game, team1_score, team2_score, settings, teams)
        if not update.changed:
            return jsonify({'error': 'Game has no confirmed participants yet'}), 400
        games = replace_match(games, update.match)
        teams = merge_teams(teams, update.teams)
        phase = load_phase()
        phase_update = check_phase_progression(games, teams, settings, phase)
        save_games(games + _assign_ids(phase_update.new_matches))
        save_teams(teams)
        if phase_update.phase != phase:
            save_phase(phase_update.phase)
            app.logger.info(f'Tournament phase changed from {phase} to {phase_update.phase}')

    return jsonify({
        'success': True,
        'game': update.match.to_dict(),
        'teams': [t.to_dict() for t in update.teams],
        'phase': phase_update.phase,
        'events': _events_json(update.events + phase_update.events),
    })


@app.route('/api/games/<game_id>/participants', methods=['POST'])
@admin_required
def api_set_participants(game_id):
    """Fill the TBD slots of a knockout game with real teams."""
    data = request.get_json(silent=True) or {}
    team1_id = data.get('team1_id')
    team2_id = data.get('team2_id')
    if not team1_id or not team2_id or team1_id == team2_id:
        return jsonify({'error': 'Two different teams are required'}), 400

    with _data_lock():
        teams = {t.id: t for t in load_teams()}
        if team1_id not in teams or team2_id not in teams:
            return jsonify({'error': 'Team not found'}), 404
        games = load_games()
        game = _find_game(games, game_id)
        if game is None:
            return jsonify({'error': 'Game not found'}), 404
        if game.phase not in KNOCKOUT_PHASES or game.is_complete or game.is_running:
            return jsonify({'error': 'Only pending knockout games can be reassigned'}), 400
        game.team1 = teams[team1_id]
        game.team2 = teams[team2_id]
        save_games(games)
    return jsonify({'success': True, 'game': game.to_dict()})


@app.route('/api/knockout/generate', methods=['POST'])
@admin_required
def api_generate_knockout():
    """Generate the knockout bracket from the current group standings."""
    with _data_lock():
        settings = load_settings()
        teams = load_teams()
        games = load_games()
        if any(g.phase in KNOCKOUT_PHASES for g in games):
            return jsonify({'error': 'Knockout stage already generated'}), 409
        bracket = generate_knockout_bracket(collect_qualifiers(teams, settings), settings,
                                            starting_sequence=_next_sequence(games))
        if not bracket.ready:
            app.logger.warning(bracket.message)
            return jsonify({'error': bracket.message, 'required': bracket.required,
                            'available': bracket.available}), 409
        save_games(games + _assign_ids(bracket.matches))
        save_phase(bracket.first_phase)
    return jsonify({'success': True, 'bracket': bracket.to_dict()})


@app.route('/api/schedule')
def api_schedule():
    return jsonify(build_court_schedule(load_games(), load_settings()))


@app.route('/api/standings')
def api_standings():
    settings = load_settings()
    standings = calculate_group_standings(load_teams(), settings)
    return jsonify({
        group: [{**row, 'team': row['team'].to_dict()} for row in rows]
        for group, rows in standings.items()
    })


@app.route('/api/bracket')
def api_bracket():
    games = load_games()
    rounds = {phase: [g.to_dict() for g in games if g.phase == phase] for phase in KNOCKOUT_PHASES}
    champion = get_champion(games)
    return jsonify({
        'phase': load_phase(),
        'rounds': rounds,
        'progress': {
            phase: {'complete': sum(1 for g in rounds[phase] if g['is_complete']),
                    'total': len(rounds[phase])}
            for phase in KNOCKOUT_PHASES
        },
        'champion': champion.to_dict() if champion else None,
    })


@app.route('/api/reset', methods=['POST'])
@admin_required
def api_reset():
    """Clear all teams and games."""
    with _data_lock():
        save_teams([])
        save_games([])
        save_phase(PHASE_GROUP)
    app.logger.info('Tournament reset')
    return jsonify({'success': True})


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG') == '1')
