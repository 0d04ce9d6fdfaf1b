"""
Fleet Trip Integrity - Integrity Scan Script Tests

Tests the scan CLI over in-memory stores:
- Report assembly (edge cases, recovery scenarios, unwritten audit entries)
- Exit codes for complete, partial and failed scans
- Argument validation
"""

import json
import pytest
from unittest.mock import patch

from integrity.audit_trail import AuditTrailLogger
from integrity.store import InMemoryTripStore, StoreUnavailableError
from integrity.types import AuditSearchFilters, OperationType
from scripts.run_integrity_scan import EXIT_FAILED, EXIT_OK, EXIT_PARTIAL, main, run_scan


class BrokenTripStore(InMemoryTripStore):
    def list_vehicle_ids(self):
        raise StoreUnavailableError("connection refused")


class FailingAuditStore:
    """Audit store whose writes always fail."""

    def append(self, entry):
        raise RuntimeError("audit database offline")


@pytest.fixture
def fleet(trip_store, series_factory):
    trips = series_factory(6)
    trips[2]['destinations'] = ['City Hospital']
    trips[4]['end_km'] = None
    trip_store.add_trips('v-1', trips)
    trip_store.add_trips('v-2', series_factory(6, vehicle_id='v-2'))
    return trip_store


class TestRunScan:
    def test_edge_case_report(self, fleet, audit):
        output = run_scan(fleet, audit, workers=2, timeout=30)

        report = output['edge_cases']
        assert report['vehicles_scanned'] == 2
        assert report['cases_by_type']['emergency_trip'] == 1
        assert report['is_complete'] is True
        assert 'recovery_scenarios' not in output
        assert 'unwritten_audit_entries' not in output

        detections = audit.search_audit_trail(AuditSearchFilters(
            operation_types=(OperationType.EDGE_CASE_DETECTION,),
        ))
        assert detections.total >= 1

    def test_recovery_scenarios_per_vehicle(self, fleet, audit):
        output = run_scan(fleet, audit, vehicle_ids=['v-1', 'ghost'], include_recovery=True, timeout=30)

        scenarios = output['recovery_scenarios']
        assert 'incomplete_trip' in [s['scenario_type'] for s in scenarios['v-1']]
        assert 'error' in scenarios['ghost']
        assert output['edge_cases']['failed_vehicles'] == ['ghost']

    def test_unwritten_audit_entries_are_reported(self, trip_store, series_factory):
        trip_store.add_trips('v-1', series_factory(3))
        audit = AuditTrailLogger(store=FailingAuditStore())

        output = run_scan(trip_store, audit, vehicle_ids=['v-1', 'ghost'], timeout=30)

        unwritten = output['unwritten_audit_entries']
        assert any(e['entity_id'] == 'ghost' for e in unwritten)
        assert all(e['severity_level'] in ('error', 'critical') for e in unwritten)

    def test_store_unavailable_raises(self, audit):
        with pytest.raises(StoreUnavailableError):
            run_scan(BrokenTripStore(), audit, timeout=30)


class TestMain:
    def test_complete_scan_prints_json(self, fleet, audit, capsys):
        with patch('scripts.run_integrity_scan.build_store', return_value=fleet) as mock_build, \
                patch('scripts.run_integrity_scan.build_audit_logger', return_value=audit):
            exit_code = main(['--source', 'api', '--workers', '2'])

        assert exit_code == EXIT_OK
        mock_build.assert_called_once_with('api')
        output = json.loads(capsys.readouterr().out)
        assert output['edge_cases']['vehicles_scanned'] == 2

    def test_partial_scan_exit_code(self, fleet, audit, capsys):
        with patch('scripts.run_integrity_scan.build_store', return_value=fleet), \
                patch('scripts.run_integrity_scan.build_audit_logger', return_value=audit):
            exit_code = main(['--vehicle', 'v-1', '--vehicle', 'ghost', '--recovery'])

        assert exit_code == EXIT_PARTIAL
        output = json.loads(capsys.readouterr().out)
        assert set(output['recovery_scenarios']) == {'v-1', 'ghost'}

    def test_store_unavailable_exit_code(self, audit, capsys):
        with patch('scripts.run_integrity_scan.build_store', return_value=BrokenTripStore()), \
                patch('scripts.run_integrity_scan.build_audit_logger', return_value=audit):
            exit_code = main([])

        assert exit_code == EXIT_FAILED
        assert capsys.readouterr().out == ''

    @pytest.mark.parametrize("argv", [
        ['--workers', '0'],
        ['--timeout', '0'],
        ['--source', 'csv'],
    ])
    def test_invalid_arguments(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            main(argv)

        assert exc_info.value.code == 2
