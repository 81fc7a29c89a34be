from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token
from qrmenu_billing.models.user import User

bp_auth = Blueprint('auth', __name__, url_prefix='/api/auth')


@bp_auth.post('/login')
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return jsonify({"error": "email and password are required"}), 400

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return jsonify({"error": "Invalid credentials"}), 401

    token = create_access_token(
        identity=str(user.id),
        additional_claims={"role": user.role, "email": user.email}
    )
    return jsonify({"access_token": token, "user_id": user.id, "role": user.role}), 200
