"""
Fleet Trip Integrity - Flask App Unit Tests

Tests the Flask application over in-memory stores:
- App creation, blueprints and root endpoint
- Health checks
- Validation and edge-case endpoints
- Audit trail search, export and corrections
- Error handlers (404, 400, 503)

Priority: P1 - Core API functionality
"""

import pytest
from unittest.mock import patch

from api.app import create_app
from integrity.audit_trail import AuditTrailLogger
from integrity.store import InMemoryTripStore, StoreUnavailableError
from integrity.types import (
    AuditSearchFilters,
    AuditSeverity,
    AuditTrailEntry,
    OperationCategory,
    OperationType,
)


class UnavailableTripStore(InMemoryTripStore):
    def list_vehicle_ids(self):
        raise StoreUnavailableError("connection refused")

    def get_vehicle(self, vehicle_id):
        raise StoreUnavailableError("connection refused", vehicle_id=vehicle_id)

    def get_vehicle_trips(self, vehicle_id):
        raise StoreUnavailableError("connection refused", vehicle_id=vehicle_id)


def add_entries(audit, count, **overrides):
    for i in range(count):
        values = {
            'operation_type': OperationType.VALIDATION_CHECK,
            'operation_category': OperationCategory.TRIP_DATA,
            'entity_type': 'trip',
            'entity_id': f't-{i}',
            'action_performed': f'Validated trip {i}',
        }
        values.update(overrides)
        audit.record(AuditTrailEntry(**values))


class TestCreateApp:
    """Test Flask app creation and configuration."""

    def test_create_app_configures_environment(self, app):
        assert 'ENV' in app.config
        assert 'SECRET_KEY' in app.config
        assert app.json.sort_keys is False

    def test_create_app_registers_blueprints(self, app):
        assert {'health', 'integrity', 'audit'} <= set(app.blueprints)

    def test_create_app_configures_cors(self, client):
        response = client.get('/api/health', headers={'Origin': 'http://dashboard.local'})
        assert response.headers.get('Access-Control-Allow-Origin') == '*'

    def test_root_endpoint(self, client):
        response = client.get('/')

        assert response.status_code == 200
        data = response.get_json()
        assert data['name'] == 'Fleet Trip Integrity API'
        assert data['endpoints']['audit'] == '/api/audit/trail'


class TestHealthEndpoint:
    def test_healthy(self, client):
        data = client.get('/api/health').get_json()

        assert data['status'] == 'healthy'
        assert data['checks']['trip_store']['vehicle_count'] == 1
        assert data['checks']['audit_trail']['unwritten_entries'] == 0

    def test_empty_fleet_is_degraded(self):
        app = create_app(trip_store=InMemoryTripStore(), audit_logger=AuditTrailLogger())
        response = app.test_client().get('/api/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'degraded'

    def test_unreachable_store_is_unhealthy(self):
        app = create_app(trip_store=UnavailableTripStore(), audit_logger=AuditTrailLogger())
        response = app.test_client().get('/api/health')

        assert response.status_code == 503
        assert response.get_json()['checks']['trip_store']['status'] == 'unhealthy'


class TestIntegrityEndpoints:
    def test_vehicle_validation(self, client, trip_store, trip_factory):
        trip_store.add_trips('v-1', [trip_factory(), trip_factory(id='t-2', end_km=900.0)])

        response = client.get('/api/vehicles/v-1/validation')

        assert response.status_code == 200
        data = response.get_json()
        assert data['vehicle_id'] == 'v-1'
        assert [r['trip_id'] for r in data['results']] == ['t-1', 't-2']
        assert data['results'][0]['score'] == 100
        assert data['results'][1]['is_valid'] is False
        assert data['summary']['totalTrips'] == 2
        assert data['summary']['criticalIssues'] >= 1

    def test_unknown_vehicle_is_404(self, client):
        response = client.get('/api/vehicles/nope/validation')

        assert response.status_code == 404
        assert response.get_json()['error'] == 'Not Found'

    def test_store_unavailable_is_503(self):
        app = create_app(trip_store=UnavailableTripStore(), audit_logger=AuditTrailLogger())
        response = app.test_client().get('/api/vehicles/v-1/validation')

        assert response.status_code == 503
        assert response.get_json()['error'] == 'Service Unavailable'

    def test_data_quality_summary_subset(self, client, trip_store, series_factory):
        trip_store.add_trips('v-1', series_factory(3))
        trip_store.add_trips('v-2', series_factory(2, vehicle_id='v-2'))

        response = client.get('/api/data-quality/summary?vehicle_id=v-2')

        summary = response.get_json()['summary']
        assert summary['totalTrips'] == 2
        assert summary['vehiclesIncluded'] == 1
        assert summary['isComplete'] is True

    def test_data_quality_summary_lists_unknown_vehicles(self, client):
        summary = client.get('/api/data-quality/summary?vehicle_id=v-1,ghost').get_json()['summary']

        assert summary['failedVehicles'] == ['ghost']
        assert summary['isComplete'] is False

    def test_system_wide_edge_cases(self, client, trip_store, series_factory):
        trips = series_factory(6)
        trips[2]['destinations'] = ['City Hospital']
        trip_store.add_trips('v-1', trips)

        response = client.get('/api/edge-cases')

        assert response.status_code == 200
        report = response.get_json()['report']
        assert report['vehicles_scanned'] == 1
        assert report['cases_by_type']['emergency_trip'] == 1
        assert report['is_complete'] is True

    def test_vehicle_edge_cases(self, client, trip_store, trip_factory):
        trip_store.add_trips('v-1', [trip_factory(end_km=900.0)])

        data = client.get('/api/vehicles/v-1/edge-cases').get_json()

        assert data['total_cases'] == 1
        assert data['detections'][0]['severity'] == 'critical'
        assert data['detections'][0]['vehicle_registration'] == 'MH12AB1234'

    def test_recovery_scenarios(self, client, trip_store, series_factory):
        trips = series_factory(3)
        trips[1]['end_km'] = None
        trip_store.add_trips('v-1', trips)

        data = client.get('/api/vehicles/v-1/recovery-scenarios').get_json()

        types = [s['scenario_type'] for s in data['scenarios']]
        assert 'incomplete_trip' in types
        assert data['total_scenarios'] == len(types)

    def test_dashboard_reads_leave_audit_trail_untouched(self, client, audit, trip_store, trip_factory):
        trip_store.add_trips('v-1', [trip_factory(end_km=900.0)])

        for _ in range(2):
            client.get('/api/edge-cases')
            client.get('/api/vehicles/v-1/edge-cases')
            client.get('/api/vehicles/v-1/validation')
            client.get('/api/vehicles/v-1/recovery-scenarios')

        assert audit.search_audit_trail().total == 0

    def test_scan_records_detections(self, client, audit, trip_store, trip_factory):
        trip_store.add_trips('v-1', [trip_factory(end_km=900.0)])

        response = client.post('/api/edge-cases/scan')

        assert response.status_code == 200
        assert response.get_json()['report']['total_cases_detected'] == 1
        detections = audit.search_audit_trail(AuditSearchFilters(
            operation_types=(OperationType.EDGE_CASE_DETECTION,),
        ))
        assert detections.total == 1
        assert detections.entries[0].entity_id == 't-1'


class TestAuditTrailEndpoints:
    def test_pagination(self, client, audit):
        add_entries(audit, 250)

        response = client.get('/api/audit/trail?limit=25&offset=75')

        data = response.get_json()
        assert response.status_code == 200
        assert data['total'] == 250
        assert len(data['entries']) == 25
        assert data['entries'][0]['entity_id'] == 't-75'
        assert data['limit'] == 25
        assert data['offset'] == 75

    def test_filters_and_descending_sort(self, client, audit):
        add_entries(audit, 3)
        add_entries(audit, 2, severity_level=AuditSeverity.ERROR, entity_type='vehicle')

        data = client.get('/api/audit/trail?severity=error&sort=desc').get_json()

        assert data['total'] == 2
        assert all(e['severity_level'] == 'error' for e in data['entries'])
        assert data['entries'][0]['performed_at'] >= data['entries'][1]['performed_at']

    def test_limit_is_capped(self, client, audit):
        add_entries(audit, 2)
        assert client.get('/api/audit/trail?limit=5000').get_json()['limit'] == 1000

    @pytest.mark.parametrize("query", [
        'severity=fatal',
        'sort=sideways',
        'operation_type=unknown',
        'limit=abc',
        'offset=-1',
        'start_date=yesterday',
        'start_date=2024-03-10&end_date=2024-03-01',
    ])
    def test_invalid_parameters_are_400(self, client, query):
        response = client.get(f'/api/audit/trail?{query}')

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Bad Request'

    def test_stats(self, client, audit):
        add_entries(audit, 3, data_quality_score=80.0)
        add_entries(audit, 1, severity_level=AuditSeverity.CRITICAL, data_quality_score=40.0)

        data = client.get('/api/audit/stats').get_json()

        assert data['total_operations'] == 4
        assert data['error_rate'] == 25.0
        assert data['avg_quality_score'] == 70.0
        assert data['operations_by_severity']['critical'] == 1

    def test_summary(self, client, audit):
        add_entries(audit, 2)

        data = client.get('/api/audit/summary?days=7').get_json()

        assert data['period_days'] == 7
        assert data['total_operations'] == 2

    def test_summary_days_must_be_positive(self, client):
        assert client.get('/api/audit/summary?days=0').status_code == 400

    def test_export_csv(self, client, audit):
        add_entries(audit, 3)

        response = client.get('/api/audit/export')

        assert response.status_code == 200
        assert response.mimetype == 'text/csv'
        disposition = response.headers['Content-Disposition']
        assert disposition.startswith('attachment; filename=audit-trail-')
        assert disposition.endswith('.csv')
        lines = response.get_data(as_text=True).split('\n')
        assert len(lines) == 4
        assert lines[0].startswith('"Date","Operation Type"')

    def test_entity_history(self, client, audit):
        add_entries(audit, 2, entity_id='t-9')

        data = client.get('/api/audit/entities/trip/t-9').get_json()

        assert len(data['entries']) == 2
        assert data['entries'][0]['performed_at'] >= data['entries'][1]['performed_at']


class TestCorrectionsEndpoint:
    def correction(self, **overrides):
        body = {
            'entity_type': 'trip',
            'entity_id': 't-1',
            'before': {'end_km': 950},
            'after': {'end_km': 1950},
            'reason': 'Digit dropped on entry',
            'performer_name': 'A. Reviewer',
        }
        body.update(overrides)
        return body

    def test_records_correction(self, client, audit):
        response = client.post('/api/audit/corrections', json=self.correction())

        assert response.status_code == 201
        entry_id = response.get_json()['id']
        entry = audit.search_audit_trail().entries[0]
        assert entry.id == entry_id
        assert entry.operation_type is OperationType.DATA_CORRECTION
        assert entry.performed_by == 'A. Reviewer'
        assert entry.changes_made['before'] == {'end_km': 950}

    @pytest.mark.parametrize("body", [
        {'entity_type': 'trip'},
        {'entity_type': 'trip', 'entity_id': 't-1', 'before': [], 'after': {}, 'reason': 'x'},
    ])
    def test_invalid_body_is_400(self, client, body):
        assert client.post('/api/audit/corrections', json=body).status_code == 400

    def test_confidence_out_of_range_is_400(self, client):
        response = client.post('/api/audit/corrections', json=self.correction(confidence_score=150))
        assert response.status_code == 400

    def test_non_json_body_is_400(self, client):
        response = client.post('/api/audit/corrections', data='end_km=1950')
        assert response.status_code == 400

    def test_failed_audit_write_is_503(self, client, audit):
        with patch.object(audit.store, 'append', side_effect=RuntimeError("disk full")):
            response = client.post('/api/audit/corrections', json=self.correction())

        assert response.status_code == 503
        assert len(audit.fallback_entries) == 0


class TestErrorHandlers:
    def test_unknown_route_is_json_404(self, client):
        response = client.get('/api/does-not-exist')

        assert response.status_code == 404
        assert response.content_type == 'application/json'

    def test_method_not_allowed(self, client):
        assert client.delete('/api/audit/trail').status_code == 405
