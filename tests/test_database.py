"""Unit tests for the local store."""
import pytest
import tempfile
import os
import time
from notam_dashboard.database import NotamStore
from notam_dashboard.errors import InvalidAirportCodeError
from notam_dashboard.models.notam import Category, NotamRecord, Source


class TestNotamStore:
    """Test cases for NotamStore class."""

    @pytest.fixture
    def db(self):
        """Create a temporary database for testing."""
        fd, path = tempfile.mkstemp(suffix='.db')
        os.close(fd)

        database = NotamStore(path)

        yield database

        # Cleanup
        try:
            os.unlink(path)
        except OSError:
            pass

    @pytest.fixture
    def sample_records(self):
        return [
            NotamRecord(id='CYYZ-A0001/24', code='CYYZ', number='A0001/24',
                        category=Category.RUNWAY_CLOSURE, valid_from='2024-01-01T12:00:00.000Z',
                        summary='RUNWAY 05 CLOSED', body='RUNWAY 05 CLOSED FOR MAINTENANCE',
                        source=Source.SECONDARY),
            NotamRecord(id='CYYZ-1', code='CYYZ', body='BIRD ACTIVITY'),
        ]

    def test_codes_round_trip_in_order(self, db):
        db.save_codes(['kjfk', 'CYYZ', 'KJFK'])

        assert db.get_codes() == ['KJFK', 'CYYZ']

    def test_add_and_remove_codes(self, db):
        db.save_codes(['KJFK'])

        assert db.add_codes(['CYYZ', 'KJFK']) == ['CYYZ']
        assert db.remove_code('KJFK') is True
        assert db.remove_code('KJFK') is False
        assert db.get_codes() == ['CYYZ']

    def test_invalid_codes_rejected(self, db):
        db.save_codes(['KJFK'])

        with pytest.raises(InvalidAirportCodeError):
            db.save_codes(['KBOS', 'TOOLONG'])

        assert db.get_codes() == ['KJFK']

    def test_sets(self, db):
        db.add_set('east', ['KJFK', 'KBOS'])
        db.add_set('canada', ['CYYZ'])

        assert db.get_sets() == {'canada': ['CYYZ'], 'east': ['KJFK', 'KBOS']}
        assert db.update_set('east', ['KJFK']) is True
        assert db.get_set('east') == ['KJFK']
        assert db.update_set('missing', ['KJFK']) is False
        assert db.delete_set('canada') is True
        assert db.get_set('canada') is None

    def test_set_requires_name(self, db):
        with pytest.raises(ValueError):
            db.add_set('  ', ['KJFK'])

    def test_cache_round_trip(self, db, sample_records):
        db.save_records('CYYZ', sample_records)

        cached = db.get_cached_records(300)

        assert list(cached) == ['CYYZ']
        assert cached['CYYZ'] == sample_records
        assert cached['CYYZ'][0].source == Source.SECONDARY

    def test_stale_cache_discarded(self, db, sample_records):
        db.save_records('CYYZ', sample_records, cached_at=time.time() - 600)
        db.save_records('KJFK', [], cached_at=time.time())

        cached = db.get_cached_records(300)

        assert cached == {'KJFK': []}
        assert db.get_cached_records(10_000) == {'KJFK': []}

    def test_clear_cache(self, db, sample_records):
        db.save_records('CYYZ', sample_records)
        assert db.clear_cache() == 1
        assert db.get_cached_records(300) == {}

    def test_session_claim(self, db):
        first = db.claim_session('first')
        assert db.active_session_id() == first

        db.claim_session('second')
        assert db.active_session_id() == 'second'

    def test_export_import(self, db):
        db.save_codes(['KJFK'])
        db.add_set('east', ['KJFK', 'KBOS'])
        exported = db.export_data()

        fd, path = tempfile.mkstemp(suffix='.db')
        os.close(fd)
        try:
            other = NotamStore(path)
            other.save_codes(['CYYZ'])
            counts = other.import_data(exported)

            assert counts == {'codes': 1, 'sets': 1}
            assert other.get_codes() == ['CYYZ', 'KJFK']
            assert other.get_sets() == {'east': ['KJFK', 'KBOS']}
        finally:
            os.unlink(path)

    def test_import_rejects_non_object(self, db):
        with pytest.raises(ValueError):
            db.import_data(['KJFK'])
