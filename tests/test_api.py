"""
Tests for the REST API.
"""
import pytest

from timetable_sync.api import create_app
from timetable_sync.data.converter import COLLECTIONS, DataConverter
from timetable_sync.service import ScheduleService
from timetable_sync.store.memory import InMemoryDocumentStore
from timetable_sync.synchronizer import SCHEDULE_COLLECTION

from conftest import FailingStore, make_assignment


def seeded_store(rooms, faculty, subjects, batches, store_cls=InMemoryDocumentStore, **kwargs):
    initial = {
        COLLECTIONS['rooms']: [DataConverter.room_to_doc(r) for r in rooms.values()],
        COLLECTIONS['faculty']: [DataConverter.faculty_to_doc(f) for f in faculty.values()],
        COLLECTIONS['subjects']: [DataConverter.subject_to_doc(s) for s in subjects.values()],
        COLLECTIONS['batches']: [DataConverter.batch_to_doc(b) for b in batches.values()],
        SCHEDULE_COLLECTION: [DataConverter.assignment_to_doc(make_assignment('A1'))],
    }
    return store_cls(initial=initial, **kwargs)


@pytest.fixture
def client(rooms, faculty, subjects, batches):
    service = ScheduleService(seeded_store(rooms, faculty, subjects, batches))
    service.refresh()
    app = create_app(service)
    app.config['TESTING'] = True
    return app.test_client()


def assignment_doc(assignment_id, **kwargs):
    return DataConverter.assignment_to_doc(make_assignment(assignment_id, **kwargs))


class TestRoutes:
    """Test the API endpoints."""

    def test_health(self, client):
        response = client.get('/api/v1/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_get_schedule(self, client):
        response = client.get('/api/v1/schedule')

        assert [a['id'] for a in response.get_json()['assignments']] == ['A1']
        assert client.get('/api/v1/schedule?batchId=B2').get_json()['assignments'] == []

    def test_conflicts(self, client):
        body = {'draft': [assignment_doc('D1', room='R1', batch='B2', faculty=('F3',))]}

        response = client.post('/api/v1/conflicts', json=body)

        data = response.get_json()
        assert response.status_code == 200
        assert list(data['conflicts']) == ['D1']
        assert data['conflicts']['D1'][0]['kind'] == 'Room'
        assert data['conflicts']['D1'][0]['assignmentIds'] == ['D1']

    def test_conflicts_with_explicit_external(self, client):
        body = {'draft': [assignment_doc('D1', room='R1', batch='B2', faculty=('F3',))], 'external': []}

        response = client.post('/api/v1/conflicts', json=body)

        assert response.get_json()['conflicts'] == {}

    def test_malformed_draft(self, client):
        response = client.post('/api/v1/conflicts', json={'draft': [{'id': 'D1'}]})

        assert response.status_code == 400
        assert 'draft[0]' in response.get_json()['error']

    def test_body_must_be_object(self, client):
        assert client.post('/api/v1/conflicts', json=[1, 2]).status_code == 400

    def test_save_schedule(self, client):
        body = {'assignments': [assignment_doc('N1', batch='B2')], 'batchId': 'B2'}

        response = client.put('/api/v1/schedule', json=body)

        assert response.status_code == 200
        assert response.get_json()['written'] == 1
        ids = [a['id'] for a in client.get('/api/v1/schedule').get_json()['assignments']]
        assert sorted(ids) == ['A1', 'N1']

    def test_save_outside_scope_rejected(self, client):
        body = {'assignments': [assignment_doc('N1', batch='B1')], 'batchId': 'B2'}

        assert client.put('/api/v1/schedule', json=body).status_code == 400

    def test_save_failure_is_bad_gateway(self, rooms, faculty, subjects, batches):
        store = seeded_store(rooms, faculty, subjects, batches, store_cls=FailingStore, fail_on=1)
        service = ScheduleService(store)
        service.refresh()
        client = create_app(service).test_client()

        response = client.put('/api/v1/schedule', json={'assignments': [assignment_doc('N1')]})

        assert response.status_code == 502
        assert 'try again' in response.get_json()['error']
        # Local view was reloaded from the store
        assert [a.id for a in service.assignments] == ['A1']

    def test_reset_requires_confirm(self, client):
        assert client.delete('/api/v1/schedule').status_code == 400

        response = client.delete('/api/v1/schedule?confirm=true')

        assert response.status_code == 200
        assert response.get_json()['deleted'] == 1

    def test_availability(self, client):
        assert client.get('/api/v1/availability/faculty/F1?day=0&slot=0').get_json()['available'] is False
        assert client.get('/api/v1/availability/faculty/F1?day=0&slot=1').get_json()['available'] is True
        assert client.get('/api/v1/availability/batches/B1?day=0&slot=0').get_json()['available'] is False

        room = client.get('/api/v1/availability/rooms/R2?day=0&slot=0&batchId=B1&subjectId=S1')
        assert room.get_json()['available'] is True

    def test_availability_bad_arguments(self, client):
        assert client.get('/api/v1/availability/faculty/F1?day=x&slot=0').status_code == 400
        assert client.get('/api/v1/availability/rooms/R2?day=0&slot=0').status_code == 400
        assert client.get('/api/v1/availability/rooms/R9?day=0&slot=0&batchId=B1&subjectId=S1').status_code == 404

    def test_substitutes(self, client):
        response = client.get('/api/v1/substitutes/A1')

        ranked = response.get_json()['substitutes']
        assert response.status_code == 200
        assert [r['facultyId'] for r in ranked] == ['F2', 'F3']
        assert ranked[0]['score'] == 70
        assert ranked[0]['canTeachOriginal'] is True
        assert client.get('/api/v1/substitutes/NOPE').status_code == 404

    def test_import(self, client):
        raw = {
            'rooms': [{'id': 'r1', 'name': 'LH-1', 'capacity': 60}],
            'subjects': [{'id': 's1', 'name': 'Calculus'}],
            'faculty': [{'id': 'f1', 'name': 'Ada', 'subjectIds': ['s1']}],
            'schedule': [{'id': 'x', 'day': 0, 'slot': 0, 'subjectId': 's1', 'facultyIds': ['f1'],
                          'roomId': 'r1', 'batchId': 'gone'}],
        }

        response = client.post('/api/v1/import', json=raw)

        data = response.get_json()
        assert response.status_code == 200
        assert data['sync']['success']
        assert data['report']['dangling'][0]['reference'] == 'gone'
        assert data['snapshot']['rooms'][0]['id'].startswith('RM-LH-1-')

    def test_slots(self, client):
        assert len(client.get('/api/v1/slots').get_json()['slots']) == 7
