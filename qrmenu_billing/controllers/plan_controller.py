from flask import Blueprint, request, jsonify
from qrmenu_billing.services.plan_service import list_plans

bp_plans = Blueprint('plans', __name__, url_prefix='/api/plans')

@bp_plans.get('')
def get_plans():
    active_only = request.args.get('active_only', 'true').lower() == 'true'
    plans = list_plans(active_only=active_only)
    return jsonify([p.to_dict() for p in plans]), 200
