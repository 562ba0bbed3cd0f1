from datetime import date

from flask import Blueprint, jsonify, request

import analytics
from auth import role_required
from db import TABLES, fa, transaction
from errors import ValidationError

analytics_bp = Blueprint("analytics", __name__, url_prefix="/analytics")


def _iso_arg(name):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Data inválida em '{name}'", "Use o formato YYYY-MM-DD")


@analytics_bp.route("")
@role_required("admin")
def get_dashboard():
    start = _iso_arg("start")
    end = _iso_arg("end")
    granularity = request.args.get("granularity", "week")
    if granularity not in ("week", "month"):
        raise ValidationError("Granularidade inválida", "Use 'week' ou 'month'")
    if start and end and start > end:
        raise ValidationError("Data inicial maior que a data final")

    collections = {}
    with transaction() as cur:
        for name, table in (
            ("students", TABLES["ALUNOS"]),
            ("shifts", TABLES["PLANTOES"]),
            ("attempts", TABLES["TENTATIVAS"]),
            ("after_forms", TABLES["AFTER"]),
            ("feedbacks", TABLES["FEEDBACK"]),
        ):
            cur.execute(f"SELECT * FROM {table}")
            collections[name] = fa(cur)

    return jsonify(analytics.dashboard(start=start, end=end, granularity=granularity, **collections))
