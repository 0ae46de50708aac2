"""Unit tests for change detection."""
import pytest
from notam_dashboard.changes import ChangeSet, diff, record_key
from notam_dashboard.models.notam import NotamRecord


def make_record(number, code='KJFK', summary='RUNWAY CLOSED'):
    return NotamRecord(id=f"{code}-{number}", code=code, number=number, summary=summary, body=summary)


class TestDiff:

    @pytest.fixture
    def records(self):
        return [make_record('A0001/24'), make_record('A0002/24'), make_record('A0003/24')]

    def test_identical_sets(self, records):
        assert diff(records, records) == ChangeSet([], [])
        assert diff(records, [make_record(r.number) for r in records]) == ChangeSet([], [])

    def test_one_added(self, records):
        extra = make_record('A0004/24')

        changes = diff(records, records + [extra])

        assert changes.added == [extra]
        assert changes.removed == []

    def test_one_removed(self, records):
        """Second fetch drops one notice: exactly one removal."""
        changes = diff(records, records[:2])

        assert changes.added == []
        assert changes.removed == [records[2]]
        assert changes.has_changes

    def test_none_and_empty_inputs(self, records):
        assert diff(None, None) == ChangeSet([], [])
        assert diff(None, records).added == records
        assert diff(records, []).removed == records
        assert not diff([], None).has_changes

    def test_accepts_mappings(self):
        previous = [{'id': 'CYYZ-1', 'summary': 'A'}]
        new = [{'id': 'CYYZ-1', 'summary': 'A'}, {'number': 'B0002/24'}]

        changes = diff(previous, new)

        assert changes.added == [{'number': 'B0002/24'}]


class TestRecordKey:

    def test_id_first(self):
        assert record_key(make_record('A0001/24')) == 'id:KJFK-A0001/24'

    def test_number_fallback(self):
        assert record_key({'number': 'A0001/24'}) == 'number:A0001/24'

    def test_content_fingerprint(self):
        first = {'code': 'CYYZ', 'summary': 'BIRDS', 'body': 'BIRD ACTIVITY', 'valid_from': None}
        same = dict(first)
        other = dict(first, body='BIRD ACTIVITY INCREASED')

        assert record_key(first).startswith('sha1:')
        assert record_key(first) == record_key(same)
        assert record_key(first) != record_key(other)
