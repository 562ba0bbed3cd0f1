from flask import Blueprint, current_app, jsonify, request

import booking
from auth import login_required, role_required
from db import TABLES, build_filters, fa, transaction
from formatters import normalize_date, sort_by_br_date

shifts_bp = Blueprint("shifts", __name__, url_prefix="/shifts")

PLANTOES = TABLES["PLANTOES"]


@shifts_bp.route("")
@login_required
def list_shifts():
    status = request.args.get("status")
    matricula = request.args.get("matricula")
    data_plantao = request.args.get("data_plantao")
    filters = []
    if status:
        filters.append(("status = %s", status))
    if matricula:
        filters.append(("matricula = %s", matricula))
    if data_plantao:
        filters.append(("data_plantao = %s", normalize_date(data_plantao)))
    where, params = build_filters(filters)
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {PLANTOES}{where}", params)
        rows = fa(cur)
    return jsonify(sort_by_br_date(rows, "data_plantao"))


@shifts_bp.route("", methods=["POST"])
@role_required("admin")
def create_shift():
    data = request.get_json(silent=True) or {}
    with transaction() as cur:
        plantao = booking.create_shift(
            cur,
            data.get("matricula"),
            data.get("data_plantao"),
            data.get("status"),
        )
    current_app.logger.info(f"Plantão criado: {plantao['matricula']} em {plantao['data_plantao']}")
    return jsonify(plantao), 201


@shifts_bp.route("/<matricula>/<path:data_plantao>", methods=["PUT"])
@role_required("admin")
def update_shift(matricula, data_plantao):
    data = request.get_json(silent=True) or {}
    with transaction() as cur:
        plantao = booking.update_shift_status(cur, matricula, data_plantao, data.get("status"))
    return jsonify(plantao)


@shifts_bp.route("/<matricula>/<path:data_plantao>", methods=["DELETE"])
@role_required("admin")
def delete_shift(matricula, data_plantao):
    with transaction() as cur:
        plantao = booking.delete_shift(cur, matricula, data_plantao)
    return jsonify({"message": "Plantão deletado com sucesso", "plantao": plantao})
