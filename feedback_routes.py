from flask import Blueprint, jsonify

from auth import login_required
from db import TABLES, fa, transaction
from formatters import sort_by_br_date

feedback_bp = Blueprint("feedback", __name__, url_prefix="/feedback")


@feedback_bp.route("")
@login_required
def list_feedback():
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {TABLES['FEEDBACK']}")
        rows = fa(cur)
    return jsonify(sort_by_br_date(rows, "data"))
