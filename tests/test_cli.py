import logging

import pytest
import yaml

from phim_etl import cli
from phim_etl.progress import ImportProgressTracker

from .conftest import FakeResponse, FakeSession, make_detail_payload, make_list_payload


LIST_PATH = '/danh-sach/phim-moi-cap-nhat'


@pytest.fixture(autouse=True)
def drop_log_handlers():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, '_phim_etl', False):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def config_file(tmp_path, config):
    config['import']['request_delay'] = 0.0
    path = tmp_path / 'import_config.yaml'
    path.write_text(yaml.safe_dump(config), encoding='utf-8')
    return str(path)


@pytest.fixture
def fake_session(monkeypatch):
    session = FakeSession()
    monkeypatch.setattr('phim_etl.phim_client.requests.Session', lambda: session)
    return session


def test_missing_config_is_fatal(tmp_path, capsys):
    assert cli.main(['--config', str(tmp_path / 'nope.yaml'), 'status']) == cli.EXIT_FATAL
    assert 'Configuration file not found' in capsys.readouterr().err


@pytest.mark.parametrize('argv', [
    ['range', '5', '2'],
    ['range', '0', '3'],
    ['range', '1', '999999'],
    ['page', '0'],
])
def test_invalid_range_is_rejected(config_file, argv):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(['--config', config_file] + argv)
    assert excinfo.value.code == 2


def test_unknown_command():
    with pytest.raises(SystemExit):
        cli.main(['import-everything'])


def test_page_import(config_file, config, fake_session, capsys):
    fake_session.routes[LIST_PATH] = make_list_payload(['a', 'b'])
    fake_session.routes['/phim/a'] = make_detail_payload('a')
    fake_session.routes['/phim/b'] = make_detail_payload('b')

    assert cli.main(['--config', config_file, 'page', '1']) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert 'Movies saved:    2' in out
    assert ImportProgressTracker(config['progress']['path']).last_completed_page() == 1


def test_failed_page_exit_code(config_file, fake_session, capsys):
    fake_session.routes[LIST_PATH] = FakeResponse(status_code=503)

    assert cli.main(['--config', config_file, 'range', '1', '2']) == cli.EXIT_PAGES_FAILED
    assert 'Failed pages (rerun later): 1 2' in capsys.readouterr().out


def test_status_and_reset(config_file, config, capsys):
    tracker = ImportProgressTracker(config['progress']['path'])
    tracker.record_page_complete(12)

    assert cli.main(['--config', config_file, 'status']) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert 'Last completed page: 12' in out
    assert 'Next page:           13 of 2252' in out

    assert cli.main(['--config', config_file, 'reset']) == cli.EXIT_OK
    assert 'Progress checkpoint cleared.' in capsys.readouterr().out
    assert tracker.read_progress() is None

    cli.main(['--config', config_file, 'reset'])
    assert 'No progress checkpoint found.' in capsys.readouterr().out


def test_unusable_database_is_fatal(tmp_path, config, capsys):
    config['database']['path'] = str(tmp_path / 'missing-dir' / 'phimgg.db')
    path = tmp_path / 'bad_db.yaml'
    path.write_text(yaml.safe_dump(config), encoding='utf-8')

    assert cli.main(['--config', str(path), 'status']) == cli.EXIT_FATAL
    assert 'Cannot use database' in capsys.readouterr().err


def test_schedule_run_once(config_file, fake_session, capsys):
    fake_session.routes[LIST_PATH] = make_list_payload(['a'])
    fake_session.routes['/phim/a'] = make_detail_payload('a')

    assert cli.main(['--config', config_file, 'schedule', '--run-once']) == cli.EXIT_OK
    assert 'Movies saved:    1' in capsys.readouterr().out


def test_dry_run_writes_nothing(config_file, config, fake_session, capsys):
    fake_session.routes[LIST_PATH] = make_list_payload(['a', 'b'])
    fake_session.routes['/phim/a'] = make_detail_payload('a')
    fake_session.routes['/phim/b'] = make_detail_payload('b')

    assert cli.main(['--config', config_file, 'range', '1', '2', '--dry-run']) == cli.EXIT_OK

    out = capsys.readouterr().out
    assert 'Movies validated: 4 (dry run, nothing written)' in out
    assert 'Movies saved:    0' in out
    assert ImportProgressTracker(config['progress']['path']).read_progress() is None


def test_movie_command(config_file, fake_session, capsys):
    fake_session.routes['/phim/khom-lung'] = make_detail_payload('khom-lung')

    assert cli.main(['--config', config_file, 'movie', 'khom-lung']) == cli.EXIT_OK
    assert 'Movies saved:    1' in capsys.readouterr().out

    assert cli.main(['--config', config_file, 'movie', 'missing']) == cli.EXIT_PAGES_FAILED
    assert 'missing [fetch_detail]' in capsys.readouterr().out
