from flask import Blueprint, jsonify, current_app
from services.provider_gateway import ProviderGateway
from services.reporting_client import ReportingClient
from utils.helpers import utcnow, isoformat_utc

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """Liveness check; also reports which remote collaborators are configured."""
    return jsonify({
        "ok": True,
        "time": isoformat_utc(utcnow()),
        "provider": {
            "name": current_app.config.get('PROVIDER_NAME'),
            "configured": ProviderGateway.from_config(current_app.config).is_configured,
        },
        "reporting": {
            "configured": ReportingClient.from_config(current_app.config).is_configured,
        },
    })
