"""
Shared pytest fixtures for tournament scoreboard tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

os.environ.setdefault('SECRET_KEY', 'test-secret-key')

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.models import Team, TournamentSettings


def make_team(name, group='A', **stats):
    """Team whose id is its name, so tests can look records up easily."""
    return Team(id=name, name=name, group=group, **stats)


@pytest.fixture
def group_a_teams():
    """Four teams in a single group."""
    return [make_team(f"Team {letter}") for letter in "ABCD"]


@pytest.fixture
def two_group_teams():
    """Three teams in group A, two in group B."""
    return [
        make_team("Team A", "A"),
        make_team("Team B", "A"),
        make_team("Team C", "A"),
        make_team("Team D", "B"),
        make_team("Team E", "B"),
    ]


@pytest.fixture
def points_settings():
    """Single set, first to 15, one group."""
    return TournamentSettings(number_of_courts=2, number_of_groups=1, win_condition='points',
                              points_to_win=15)


@pytest.fixture
def sets_settings():
    """Best of three sets to 25."""
    return TournamentSettings(number_of_courts=2, number_of_groups=1, win_condition='sets',
                              number_of_sets=3, sets_to_win=2, points_to_win_set=25)


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the app at an empty temporary data directory."""
    import app as app_module
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    return str(data_dir)


@pytest.fixture
def client(temp_data_dir):
    """Test client without admin rights."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def admin_client(client):
    """Test client logged in as admin."""
    with client.session_transaction() as sess:
        sess['admin'] = True
    yield client
