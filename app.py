"""
Plantão Flexível Admin - PostgreSQL Backend
"""

import logging
import os
from logging.handlers import RotatingFileHandler

import click
from flask import Flask, jsonify
from flask.logging import default_handler
from flask_cors import CORS

import booking
import db
from config import get_config
from errors import register_error_handlers
from migration import run_migration

from after_shift_routes import after_shift_bp
from analytics_routes import analytics_bp
from attempts_routes import attempts_bp
from auth import auth_bp
from classes_routes import classes_bp
from enrollments_routes import enrollments_bp
from feedback_routes import feedback_bp
from finance_routes import finance_bp
from shifts_routes import shifts_bp
from students_routes import students_bp

BLUEPRINTS = [
    auth_bp,
    students_bp,
    classes_bp,
    enrollments_bp,
    finance_bp,
    shifts_bp,
    attempts_bp,
    after_shift_bp,
    feedback_bp,
    analytics_bp,
]


# ============================================
# LOGGING
# ============================================

def setup_logging(app):
    log_level = getattr(logging, app.config["LOG_LEVEL"], logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")

    handlers = []
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if app.config["LOG_TO_FILE"]:
        os.makedirs(app.config["LOG_DIR"], exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(app.config["LOG_DIR"], "plantao.log"),
            maxBytes=10485760,
            backupCount=10,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    # app.logger and the module loggers all propagate to the root logger
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if not getattr(h, "_plantao", False)]
    for handler in handlers:
        handler._plantao = True
        handler.setLevel(log_level)
        root.addHandler(handler)
    root.setLevel(log_level)

    app.logger.removeHandler(default_handler)
    app.logger.setLevel(log_level)


# ============================================
# APP FACTORY
# ============================================

def create_app(config_object=None):
    app = Flask(__name__)
    config_object = config_object or get_config()
    app.config.from_object(config_object)

    CORS(app, origins=app.config["CORS_ORIGINS"], supports_credentials=True)
    setup_logging(app)
    register_error_handlers(app)

    prefix = app.config["API_PREFIX"].rstrip("/")
    for bp in BLUEPRINTS:
        app.register_blueprint(bp, url_prefix=f"{prefix}{bp.url_prefix or ''}")

    @app.route("/health")
    @app.route(f"{prefix}/health")
    def health():
        return jsonify({"status": "ok", "db": "PostgreSQL"})

    @app.route(f"{prefix}/db-test")
    def db_test():
        conn = db.get_db_connection()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT NOW()")
                now = cur.fetchone()[0]
        finally:
            conn.close()
        return jsonify({"status": "ok", "db": "PostgreSQL", "now": str(now)})

    @app.route(prefix or "/")
    def api_root():
        return jsonify({
            "name": "Plantão Flexível API",
            "endpoints": sorted({bp.url_prefix for bp in BLUEPRINTS if bp.url_prefix}),
        })

    register_commands(app)
    app.logger.info(f"App iniciado: {config_object.info()}")
    return app


# ============================================
# CLI
# ============================================

def register_commands(app):
    @app.cli.command("init-db")
    def init_db_command():
        """Create the schema and tables if missing."""
        db.init_db()
        click.echo("Banco inicializado.")

    @app.cli.command("migrate")
    def migrate_command():
        """Add missing columns and recompute the student counters."""
        added, synced = run_migration()
        click.echo(f"Migração concluída. Colunas adicionadas: {len(added)}; alunos recontados: {synced}")

    @app.cli.command("sync-counters")
    @click.option("--matricula", default=None, help="Recount only this student.")
    def sync_counters_command(matricula):
        """Recompute qtd_plantoes/qtd_tentativas from the live rows."""
        with db.transaction() as cur:
            synced = booking.sync_counters(cur, matricula)
        click.echo(f"Alunos recontados: {synced}")


# ============================================
# STARTUP + RUN
# ============================================

if __name__ == "__main__":
    app = create_app()
    print(f"Plantão Flexível Admin - {get_config().info()}")
    app.run(debug=app.config["DEBUG"], host="0.0.0.0", port=int(os.environ.get("PORT", 5000)))
