"""Tests for the code and set management commands."""
import json
import pytest
from notam_dashboard.database import NotamStore
from notam_dashboard.errors import InvalidAirportCodeError
from notam_dashboard.sets_cli import build_parser, main, run


@pytest.fixture
def store(tmp_path):
    return NotamStore(str(tmp_path / 'codes.db'))


def invoke(store, *argv):
    return run(build_parser().parse_args(list(argv)), store)


class TestCodeCommands:

    def test_add_and_list(self, store, capsys):
        assert invoke(store, 'add', 'kjfk', 'CYYZ') == 0
        assert invoke(store, 'add', 'KJFK', 'EGLL') == 0
        capsys.readouterr()

        invoke(store, 'list')

        assert capsys.readouterr().out.strip() == 'KJFK CYYZ EGLL'

    def test_add_rejects_invalid_batch(self, store):
        with pytest.raises(InvalidAirportCodeError):
            invoke(store, 'add', 'KJFK', 'JFK')
        assert store.get_codes() == []

    def test_remove(self, store, capsys):
        store.save_codes(['KJFK', 'CYYZ'])

        assert invoke(store, 'remove', 'kjfk') == 0
        assert invoke(store, 'remove', 'KJFK') == 1
        assert store.get_codes() == ['CYYZ']

    def test_clear_cache(self, store, capsys):
        store.save_records('KJFK', [])

        invoke(store, 'clear-cache')

        assert 'Cleared 1' in capsys.readouterr().out


class TestSetCommands:

    def test_save_set_defaults_to_configured_codes(self, store):
        store.save_codes(['KJFK', 'KBOS'])

        invoke(store, 'save-set', 'east')

        assert store.get_set('east') == ['KJFK', 'KBOS']

    def test_load_set_replaces_codes(self, store):
        store.save_codes(['KJFK'])
        invoke(store, 'save-set', 'canada', 'CYYZ', 'CYUL')

        assert invoke(store, 'load-set', 'canada') == 0
        assert store.get_codes() == ['CYYZ', 'CYUL']

    def test_unknown_set(self, store):
        assert invoke(store, 'load-set', 'nope') == 1
        assert invoke(store, 'delete-set', 'nope') == 1

    def test_export_import(self, store, tmp_path):
        store.save_codes(['KJFK'])
        store.add_set('east', ['KJFK', 'KBOS'])
        path = str(tmp_path / 'export.json')

        invoke(store, 'export', path)
        other = NotamStore(str(tmp_path / 'other.db'))
        invoke(other, 'import', path)

        with open(path) as f:
            assert json.load(f)['codes'] == ['KJFK']
        assert other.get_codes() == ['KJFK']
        assert other.get_sets() == {'east': ['KJFK', 'KBOS']}


class TestMain:

    def test_invalid_code_exits_2(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(['--db', str(tmp_path / 'codes.db'), 'add', 'JFK'])
        assert exc_info.value.code == 2

    def test_success_exits_0(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(['--db', str(tmp_path / 'codes.db'), 'add', 'KJFK'])
        assert exc_info.value.code == 0
