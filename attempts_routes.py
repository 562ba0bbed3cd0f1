from flask import Blueprint, jsonify, request

import booking
from auth import login_required, role_required
from db import TABLES, build_filters, fa, transaction
from errors import ValidationError
from formatters import normalize_date, sort_by_br_date

attempts_bp = Blueprint("attempts", __name__, url_prefix="/attempts")

TENTATIVAS = TABLES["TENTATIVAS"]


def split_date_pair(rest):
    """``dd-mm-yyyy/dd-mm-yyyy`` or (url-decoded) ``dd/mm/yyyy/dd/mm/yyyy``."""
    parts = [p for p in rest.split("/") if p]
    if len(parts) == 2:
        return normalize_date(parts[0]), normalize_date(parts[1])
    if len(parts) == 6:
        return normalize_date("/".join(parts[:3])), normalize_date("/".join(parts[3:]))
    raise ValidationError("Datas inválidas", "Use dd-mm-yyyy para a data da tentativa e a data possível")


@attempts_bp.route("")
@login_required
def list_attempts():
    matricula = request.args.get("matricula")
    where, params = build_filters([("matricula = %s", matricula)] if matricula else [])
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {TENTATIVAS}{where}", params)
        rows = fa(cur)
    return jsonify(sort_by_br_date(rows, "data_tentativa"))


@attempts_bp.route("/count/<matricula>")
@login_required
def count_attempts(matricula):
    with transaction() as cur:
        count = booking.count_attempts(cur, matricula)
    return jsonify({"count": count})


@attempts_bp.route("", methods=["POST"])
@role_required("admin")
def create_attempt():
    data = request.get_json(silent=True) or {}
    with transaction() as cur:
        tentativa = booking.create_attempt(
            cur,
            data.get("matricula"),
            data.get("data_possivel_plantao"),
            data.get("data_que_conseguiu"),
        )
    return jsonify(tentativa), 201


@attempts_bp.route("/<matricula>/<path:rest>", methods=["DELETE"])
@role_required("admin")
def delete_attempt(matricula, rest):
    data_tentativa, data_possivel = split_date_pair(rest)
    with transaction() as cur:
        tentativa = booking.delete_attempt(cur, matricula, data_tentativa, data_possivel)
    return jsonify({"message": "Tentativa deletada com sucesso", "tentativa": tentativa})
