"""
Error taxonomy shared by the booking rules, field updates and the routes.
Every error becomes a JSON body ``{"error": ..., "details": ...}``.
"""

import psycopg2
import psycopg2.errors
from flask import jsonify


class AppError(Exception):
    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    status_code = 400


class InvalidFieldError(AppError):
    status_code = 400

    def __init__(self, message="Campo não permitido para atualização", details=None):
        super().__init__(message, details)


class CapacityExceededError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class DuplicateError(AppError):
    status_code = 409


class DatabaseError(AppError):
    status_code = 500


def translate_db_error(exc, duplicate_message="Registro já existe"):
    """Map a psycopg2 exception onto the taxonomy."""
    if isinstance(exc, psycopg2.errors.UniqueViolation):
        return DuplicateError(duplicate_message, getattr(getattr(exc, "diag", None), "message_detail", None))
    if isinstance(exc, psycopg2.errors.NotNullViolation):
        return ValidationError("Campo obrigatório não preenchido", str(exc).strip())
    return DatabaseError("Erro no banco de dados", str(exc).strip())


def register_error_handlers(app):
    @app.errorhandler(AppError)
    def handle_app_error(error):
        if error.status_code >= 500:
            app.logger.error(f"{type(error).__name__}: {error.message} ({error.details})")
        else:
            app.logger.warning(f"{type(error).__name__}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(psycopg2.Error)
    def handle_db_error(error):
        return handle_app_error(translate_db_error(error))

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({"error": "Não autenticado"}), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({"error": "Acesso negado"}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Rota não encontrada"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Método não permitido"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error(f"500 Error: {error}", exc_info=True)
        return jsonify({"error": "Erro interno do servidor"}), 500
