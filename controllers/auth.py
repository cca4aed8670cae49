from functools import wraps
from flask import Blueprint, jsonify, request
from flask_login import LoginManager, UserMixin, login_user, logout_user, login_required, current_user
from models.audit_store import audit
from services.data_sources import get_store
from services.metrics import LOGIN_SUCCESSES, LOGIN_FAILURES

auth_bp = Blueprint("auth", __name__)
login_manager = LoginManager()


class User(UserMixin):
    def __init__(self, username, role):
        self.id = username
        self.username = username
        self.role = role

    @property
    def is_admin(self):
        return self.role == "admin"


@login_manager.user_loader
def load_user(user_id):
    row = get_store().get_user(user_id)
    if not row:
        return None
    return User(row["username"], row["role"])


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "message": "Authentication required",
                    "error": "UNAUTHORIZED", "retryable": False}), 401


def admin_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return login_manager.unauthorized()
        if not getattr(current_user, "is_admin", False):
            audit(
                "auth.forbidden",
                target_type="user", target_id=(getattr(current_user, "username", "") or "anonymous"),
                outcome="failure", status=403,
                extra={"reason": "not_admin"}
            )
            return jsonify({"success": False, "message": "Admin access required",
                            "error": "FORBIDDEN", "retryable": False}), 403
        return f(*args, **kwargs)
    return wrapper


def _me(user):
    return {"username": user.username, "role": user.role}


@auth_bp.post("/login")
def login_post():
    data = request.get_json(silent=True) or request.form
    u = (data.get("username") or "").strip()
    p = data.get("password") or ""

    store = get_store()
    if not u or not store.verify_password(u, p):
        LOGIN_FAILURES.labels(reason="bad_credentials").inc()
        audit(
            "auth.login.failure",
            target_type="user", target_id=(u or "unknown"),
            outcome="failure", status=401,
            error_code="bad_credentials",
            extra={"reason": "bad_credentials"}
        )
        return jsonify({"success": False, "message": "Invalid username or password",
                        "error": "BAD_CREDENTIALS", "retryable": False}), 401

    row = store.get_user(u)
    user = User(row["username"], row["role"])
    login_user(user)
    LOGIN_SUCCESSES.inc()

    audit(
        "auth.login.success",
        target_type="user", target_id=row["username"],
        outcome="success", status=200,
        extra={"note": f"role={row['role']}"}
    )
    return jsonify({"success": True, "data": _me(user)})


@auth_bp.post("/logout")
@login_required
def logout():
    audit(
        "auth.logout",
        target_type="user", target_id=current_user.username,
        outcome="success", status=200
    )
    logout_user()
    return jsonify({"success": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify({"success": True, "data": _me(current_user)})
