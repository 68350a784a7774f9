from flask import Blueprint, jsonify, request, current_app
from services.audit import record_audit_event, list_audit_events
from utils.decorators import json_endpoint

audit_bp = Blueprint('audit', __name__, url_prefix='/audit')


@audit_bp.route('/events', methods=['GET'])
@json_endpoint('audit_error')
def list_events():
    """Newest-first audit events. `?category=` narrows the list; 'all' or absent returns everything."""
    events = list_audit_events(category=request.args.get('category'))
    return jsonify({"items": [event.to_dict() for event in events]})


@audit_bp.route('/events', methods=['POST'])
@json_endpoint('audit_error')
def create_event():
    """
    Records an audit event.

    Body: {category, action, ...}. Every other field is stored as the event payload.
    """
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "Invalid body. Expected JSON object."}), 400
    category = body.get('category')
    action = body.get('action')
    if not category or not action:
        return jsonify({"error": "Missing 'category' or 'action'."}), 400

    payload = {k: v for k, v in body.items() if k not in ('category', 'action', 'id', 'ts')}
    event = record_audit_event(str(category), str(action), payload)
    current_app.logger.info(f"Audit event recorded: {event.category}/{event.action} ({event.id})")
    return jsonify({"ok": True, "id": event.id}), 201
