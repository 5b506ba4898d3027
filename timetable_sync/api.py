"""
REST API for the timetable core.
Exposes conflict checks, availability queries, schedule synchronization and
snapshot import over HTTP.
"""
import logging
import time

from flask import Flask, abort, current_app, jsonify, request
from flask_cors import CORS

from .config import generate_time_slots, load_config
from .data.converter import DataConverter
from .errors import ConfigurationError, ValidationError
from .service import ScheduleService
from .store.json_file import JsonFileDocumentStore

# Configure logging
logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def _service() -> ScheduleService:
    return current_app.config['SCHEDULE_SERVICE']


def _json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="Request body must be a JSON object")
    return payload


def _assignments(records, name):
    if records is None:
        return []
    if not isinstance(records, list):
        raise ValidationError(f"{name} must be a list of assignments")
    return DataConverter.parse_many(records, DataConverter.assignment_from_doc, name)


def _slot_args():
    try:
        return int(request.args['day']), int(request.args['slot'])
    except (KeyError, ValueError):
        abort(400, description="Query parameters 'day' and 'slot' must be integers")


def _sync_response(result):
    if result.success or result.cancelled:
        return jsonify(result.to_dict())
    # Partial writes are possible; the client should refresh and retry.
    return jsonify(result.to_dict()), 502


def create_app(service: ScheduleService = None) -> Flask:
    """
    Create the Flask application.

    Args:
        service: Service to serve; by default one backed by the JSON file
            store named in the environment, loaded from that store
    """
    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16 MB limit

    if service is None:
        config = load_config()
        store = JsonFileDocumentStore(config.store_path, max_batch_operations=config.max_batch_operations)
        service = ScheduleService(store, chunk_size=config.chunk_size)
        service.refresh()
        service.watch()
    app.config['SCHEDULE_SERVICE'] = service

    @app.errorhandler(ValidationError)
    @app.errorhandler(ConfigurationError)
    def handle_bad_input(error):
        logger.warning(f"Rejected request: {error}")
        return jsonify({'error': str(error)}), 400

    @app.route('/api/v1/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        return jsonify({
            'status': 'healthy',
            'timestamp': time.time()
        })

    @app.route('/api/v1/schedule', methods=['GET'])
    def get_schedule():
        """List assignments, optionally for one batch."""
        service = _service()
        batch_id = request.args.get('batchId')
        assignments = service.assignments_for_batch(batch_id) if batch_id else service.assignments
        return jsonify({'assignments': [DataConverter.assignment_to_doc(a) for a in assignments]})

    @app.route('/api/v1/schedule', methods=['PUT'])
    def save_schedule():
        """Replace the schedule, or one batch of it when batchId is given."""
        payload = _json_body()
        assignments = _assignments(payload.get('assignments'), 'assignments')
        result = _service().save_schedule(assignments, payload.get('batchId'))
        return _sync_response(result)

    @app.route('/api/v1/schedule', methods=['DELETE'])
    def reset_schedule():
        """Clear the schedule; requires ?confirm=true."""
        confirmed = request.args.get('confirm', '').lower() in ('true', '1', 'yes')
        if not confirmed:
            abort(400, description="Resetting the schedule requires confirm=true")
        return _sync_response(_service().reset_schedule(True))

    @app.route('/api/v1/conflicts', methods=['POST'])
    def check_conflicts():
        """
        Check a draft. Without an explicit external set it is checked against
        the stored schedule and the committed assignments; stored copies of
        draft assignments are superseded by the draft.
        """
        payload = _json_body()
        service = _service()
        draft = _assignments(payload.get('draft'), 'draft')
        external = payload.get('external')
        if external is None:
            external = service.assignments + service.external
        else:
            external = _assignments(external, 'external')
        conflicts = service.check_conflicts(draft, external)
        return jsonify({
            'conflicts': {aid: [c.to_dict() for c in found] for aid, found in conflicts.items()}
        })

    @app.route('/api/v1/availability/faculty/<faculty_id>', methods=['GET'])
    def faculty_availability(faculty_id):
        day, slot = _slot_args()
        return jsonify({'available': _service().is_faculty_available(faculty_id, day, slot)})

    @app.route('/api/v1/availability/rooms/<room_id>', methods=['GET'])
    def room_availability(room_id):
        day, slot = _slot_args()
        batch_id = request.args.get('batchId')
        subject_id = request.args.get('subjectId')
        if not batch_id or not subject_id:
            abort(400, description="Query parameters 'batchId' and 'subjectId' are required")
        service = _service()
        if room_id not in service.rooms:
            abort(404, description=f"Room {room_id} not found")
        return jsonify({'available': service.is_room_available(room_id, day, slot, batch_id, subject_id)})

    @app.route('/api/v1/availability/batches/<batch_id>', methods=['GET'])
    def batch_availability(batch_id):
        day, slot = _slot_args()
        return jsonify({'available': _service().is_batch_available(batch_id, day, slot)})

    @app.route('/api/v1/substitutes/<assignment_id>', methods=['GET'])
    def substitutes(assignment_id):
        """Faculty who could cover an assignment, best first."""
        service = _service()
        if service.get_assignment(assignment_id) is None:
            abort(404, description=f"Assignment {assignment_id} not found")
        ranked = service.rank_substitutes(assignment_id)
        return jsonify({'substitutes': [r.to_dict() for r in ranked]})

    @app.route('/api/v1/import', methods=['POST'])
    def import_snapshot():
        """Canonicalize a snapshot and replace all stored data with it."""
        result = _service().import_snapshot(_json_body())
        body = {
            'report': result.report.to_dict(),
            'sync': result.sync.to_dict(),
            'snapshot': DataConverter.snapshot_to_documents(result.snapshot),
        }
        return jsonify(body), (200 if result.success else 502)

    @app.route('/api/v1/slots', methods=['GET'])
    def time_slots():
        return jsonify({'slots': generate_time_slots(_service().settings)})

    return app
