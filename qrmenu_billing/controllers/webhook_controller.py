from flask import Blueprint, request, jsonify, current_app
from qrmenu_billing.extension.extensions import db
from qrmenu_billing.services.errors import BillingError
from qrmenu_billing.services.webhook_service import process_webhook

bp_webhooks = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')


@bp_webhooks.post('/razorpay')
def razorpay_webhook():
    """
    Razorpay webhook receiver. The body is read raw; the signature covers
    the exact bytes the gateway sent.
    """
    try:
        raw_body = request.get_data(cache=False)
        result = process_webhook(
            raw_body,
            request.headers.get('X-Razorpay-Signature'),
            header_event_id=request.headers.get('X-Razorpay-Event-Id')
        )
        return jsonify({"status": result["status"]}), 200
    except BillingError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Webhook error: {str(e)}")
        return jsonify({"error": "An unexpected error occurred"}), 500
