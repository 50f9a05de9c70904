# faceclock/web/server.py
"""
JSON API for viewing attendance and enrolling employees over the LAN.

Endpoints:
- GET  /api/status            - scanner state
- GET  /api/events            - recent cycle events
- GET  /api/employees         - enrolled employees
- GET  /api/employees/<id>    - one employee
- DELETE /api/employees/<id>  - remove an employee (attendance history is kept)
- POST /api/register          - enroll from embedding samples
- POST /api/register/images   - enroll from uploaded photos (multipart)
- GET  /api/sessions?limit=N  - recent attendance sessions
- GET  /api/sessions/active   - sessions without a check-out

Usage:
    app = create_app(lambda: current_session, gallery, store, settings,
                     detector=detector, embedder=embedder)
    run_server(app, port=5000)
"""
import logging
import socket

import cv2
import numpy as np
from flask import Blueprint, Flask, current_app, jsonify, request

from ..errors import (
    DuplicateEmployeeId,
    EmbeddingInvalid,
    InvalidIdentity,
    RegistrationUnstable,
    StorageFault,
)
from ..recognition.enrollment import enroll_from_images
from ..recognition.gallery import register_identity, validate_identity

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500

api_bp = Blueprint('api', __name__, url_prefix='/api')


def _deps() -> dict:
    return current_app.extensions['faceclock']


def _error(message, status):
    return jsonify({'success': False, 'error': message}), status


def _limit_arg(default=50):
    raw = request.args.get('limit')
    if raw is None:
        return default
    try:
        limit = int(raw)
    except ValueError:
        return None
    if limit < 1:
        return None
    return min(limit, MAX_LIST_LIMIT)


@api_bp.errorhandler(StorageFault)
def handle_storage_fault(e):
    logger.error(f"[Web] Storage fault: {e}")
    return _error('Storage unavailable', 503)


@api_bp.route('/status')
def api_status():
    session = _deps()['session_provider']()
    if session is None:
        return jsonify({'scanning': False, 'state': 'idle'})
    return jsonify(session.status())


@api_bp.route('/events')
def api_events():
    """Most recent cycle events, oldest first."""
    limit = _limit_arg(default=20)
    if limit is None:
        return _error('limit must be a positive integer', 400)
    session = _deps()['session_provider']()
    if session is None:
        return jsonify([])
    events = list(session.recent_events)[-limit:]
    return jsonify([e.to_dict() for e in events])


@api_bp.route('/employees', methods=['GET'])
def api_employees():
    gallery = _deps()['gallery']
    return jsonify(gallery.list_employees())


@api_bp.route('/employees/<employee_id>', methods=['GET'])
def api_get_employee(employee_id):
    employee = _deps()['gallery'].get(employee_id)
    if employee is None:
        return _error(f"Employee '{employee_id}' not found", 404)
    return jsonify(employee)


@api_bp.route('/employees/<employee_id>', methods=['DELETE'])
def api_delete_employee(employee_id):
    """
    DELETE /api/employees/<employee_id>
    Remove an employee and their face templates. Attendance history is kept.
    """
    if not _deps()['gallery'].remove(employee_id):
        return _error(f"Employee '{employee_id}' not found", 404)
    logger.info(f"[Web] Removed employee {employee_id}")
    return jsonify({'success': True, 'employee_id': employee_id})


def _register_response(register):
    """Run a registration callable and map its failures to HTTP statuses."""
    try:
        template = register()
    except InvalidIdentity as e:
        return _error(str(e), 400)
    except DuplicateEmployeeId as e:
        return _error(str(e), 409)
    except RegistrationUnstable as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'stability': round(e.score, 4),
            'threshold': e.threshold,
        }), 422
    except EmbeddingInvalid as e:
        return _error(str(e), 422)
    return jsonify({'success': True, 'employee': template.to_dict()}), 201


@api_bp.route('/register', methods=['POST'])
def api_register():
    """
    POST /api/register
    Enroll an employee from embedding samples captured by the kiosk.

    JSON body:
        {"employee_id": "E1", "name": "Alice", "samples": [[...], [...]]}

    Response:
        201 template summary, 400 malformed body, 409 duplicate id,
        422 unstable or invalid samples
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _error('Expected a JSON object', 400)

    employee_id = body.get('employee_id')
    name = body.get('name')
    samples = body.get('samples')

    problem = validate_identity(employee_id, name)
    if problem:
        return _error(problem, 400)
    if not isinstance(samples, list) or not samples:
        return _error('samples must be a non-empty list of embeddings', 400)

    settings = _deps()['settings']
    return _register_response(lambda: register_identity(
        samples,
        _deps()['gallery'],
        employee_id,
        name,
        stability_threshold=settings.STABILITY_THRESHOLD,
        min_samples=settings.MIN_REGISTRATION_SAMPLES,
        dim=settings.EMBEDDING_DIM,
    ))


@api_bp.route('/register/images', methods=['POST'])
def api_register_images():
    """
    POST /api/register/images
    Enroll an employee from photos, one face per photo.

    Form data:
        - employee_id, name
        - images: two or more JPEG/PNG files

    Response:
        201 template summary, 400 malformed form or unreadable image,
        409 duplicate id, 422 no face / several faces / unstable capture,
        503 models not loaded
    """
    deps = _deps()
    if deps['detector'] is None or deps['embedder'] is None:
        return _error('Detector and embedder are not loaded', 503)

    employee_id = request.form.get('employee_id', '').strip()
    name = request.form.get('name', '').strip()
    problem = validate_identity(employee_id, name)
    if problem:
        return _error(problem, 400)

    files = request.files.getlist('images')
    if not files:
        return _error('Upload at least one image in the "images" field', 400)

    frames = []
    for i, image_file in enumerate(files):
        frame = cv2.imdecode(np.frombuffer(image_file.read(), np.uint8), cv2.IMREAD_COLOR)
        if frame is None:
            return _error(f"Image {i} ({image_file.filename}) could not be decoded", 400)
        frames.append(frame)

    settings = deps['settings']
    return _register_response(lambda: enroll_from_images(
        frames,
        deps['detector'],
        deps['embedder'],
        deps['gallery'],
        employee_id,
        name,
        confidence_threshold=settings.ENROLL_CONFIDENCE,
        crop_margin=settings.CROP_MARGIN,
        stability_threshold=settings.STABILITY_THRESHOLD,
        min_samples=settings.MIN_REGISTRATION_SAMPLES,
        dim=settings.EMBEDDING_DIM,
    ))


@api_bp.route('/sessions')
def api_sessions():
    limit = _limit_arg()
    if limit is None:
        return _error('limit must be a positive integer', 400)
    store = _deps()['store']
    return jsonify([s.to_dict() for s in store.list_sessions(limit)])


@api_bp.route('/sessions/active')
def api_active_sessions():
    store = _deps()['store']
    return jsonify([s.to_dict() for s in store.active_sessions()])


def create_app(session_provider, gallery, store, settings, detector=None, embedder=None) -> Flask:
    """
    Build the Flask app.

    Args:
        session_provider: callable returning the current ScanningSession or None
        gallery: Gallery used for listing and registration
        store: attendance store with list_sessions() / active_sessions()
        settings: Settings (registration thresholds, embedding dim)
        detector, embedder: models for photo enrollment; /register/images
            answers 503 without them
    """
    app = Flask(__name__)
    app.extensions['faceclock'] = {
        'session_provider': session_provider,
        'gallery': gallery,
        'store': store,
        'settings': settings,
        'detector': detector,
        'embedder': embedder,
    }
    app.register_blueprint(api_bp)
    return app


def get_local_ip():
    """Local LAN address, "localhost" if there is no route."""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def run_server(app: Flask, host='0.0.0.0', port=5000):
    """Run the web server (blocking; start it in a daemon thread)."""
    logger.info(f"🌐 Web API: http://{get_local_ip()}:{port}/api/status")
    app.run(host=host, port=port, debug=False, threaded=True, use_reloader=False)
