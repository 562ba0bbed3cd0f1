from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session

from errors import ValidationError

auth_bp = Blueprint("auth", __name__)


# ── Auth decorators ──

def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_app.config.get("AUTH_REQUIRED", True) and not session.get("username"):
            current_app.logger.warning(f"Acesso não autorizado: {request.path}")
            return jsonify({"error": "Não autenticado"}), 401
        return f(*args, **kwargs)
    return decorated


def role_required(*roles):
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            if not current_app.config.get("AUTH_REQUIRED", True):
                return f(*args, **kwargs)
            if not session.get("username"):
                return jsonify({"error": "Não autenticado"}), 401
            if session.get("role") not in roles:
                current_app.logger.warning(f"Acesso negado ({session.get('role')}): {request.path}")
                return jsonify({"error": "Acesso negado"}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── Routes ──

@auth_bp.route("/auth/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip().lower()
    password = data.get("password") or ""
    if not username or not password:
        raise ValidationError("Usuário e senha são obrigatórios")

    user = current_app.config["USERS"].get(username)
    if not user:
        current_app.logger.info(f"Login: usuário não encontrado: {username}")
        return jsonify({"error": "Usuário não encontrado"}), 401
    if user["password"] != password:
        current_app.logger.info(f"Login: senha incorreta para {username}")
        return jsonify({"error": "Senha incorreta"}), 401

    session["username"] = username
    session["role"] = user["role"]
    current_app.logger.info(f"Login realizado: {username} ({user['role']})")
    return jsonify({"success": True, "user": {"username": username, "role": user["role"]}})


@auth_bp.route("/auth/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"success": True})


@auth_bp.route("/session")
def get_session():
    if not session.get("username"):
        return jsonify({"logged_in": False}), 401
    return jsonify({
        "logged_in": True,
        "username": session.get("username"),
        "role": session.get("role"),
    })
