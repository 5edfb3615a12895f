from functools import wraps
from flask import Blueprint, request, jsonify, current_app
from flask_wtf.csrf import generate_csrf
from flask_login import LoginManager, UserMixin, login_user, logout_user, login_required, current_user
from models.users_db import get_user, verify_password

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, username, role, email=None, phone=None):
        self.id = username
        self.username = username
        self.role = role
        self.email = email
        self.phone = phone

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.user_loader
def load_user(user_id):
    row = get_user(user_id)
    if not row:
        return None
    return User(row["username"], row["role"], row["email"], row["phone"])


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "unauthorized"}), 401


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_admin", False):
            current_app.logger.warning("forbidden: %s is not admin", current_user.username)
            return jsonify({"error": "forbidden"}), 403
        return f(*args, **kwargs)
    return wrapper


def current_username():
    """Username of the logged-in shopper, None for guests."""
    return current_user.username if current_user.is_authenticated else None


@auth_bp.post("/api/v1/auth/login")
def login_post():
    payload = request.get_json(silent=True) or request.form
    u = (payload.get("username") or "").strip()
    p = payload.get("password") or ""

    if not verify_password(u, p):
        current_app.logger.info("login failed for %r", u)
        # generic invalid-credentials message
        return jsonify({"error": "invalid_credentials"}), 401

    row = get_user(u)
    login_user(User(row["username"], row["role"], row["email"], row["phone"]))
    return jsonify({"username": row["username"], "role": row["role"]})


@auth_bp.post("/api/v1/auth/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/api/v1/auth/csrf")
def csrf_token():
    # every POST outside the provider webhook expects this value in X-CSRFToken
    return jsonify({"csrfToken": generate_csrf()})
