from flask import Blueprint, current_app, jsonify, request

import booking
from auth import login_required, role_required
from db import TABLES, build_filters, fa, fo, transaction
from errors import NotFoundError
from formatters import normalize_date, sort_by_br_date

after_shift_bp = Blueprint("after_shift", __name__, url_prefix="/after-shift")

AFTER = TABLES["AFTER"]


@after_shift_bp.route("")
@login_required
def list_after_shifts():
    matricula = request.args.get("matricula")
    where, params = build_filters([("matricula = %s", matricula)] if matricula else [])
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {AFTER}{where}", params)
        rows = fa(cur)
    return jsonify(sort_by_br_date(rows, "data_plantao"))


@after_shift_bp.route("/<matricula>/<path:data_plantao>")
@login_required
def get_after_shift(matricula, data_plantao):
    with transaction() as cur:
        cur.execute(
            f"SELECT * FROM {AFTER} WHERE matricula = %s AND data_plantao = %s",
            (matricula, normalize_date(data_plantao)),
        )
        after = fo(cur)
    if not after:
        raise NotFoundError("Registro não encontrado")
    return jsonify(after)


@after_shift_bp.route("", methods=["POST"])
@role_required("admin")
def create_after_shift():
    data = request.get_json(silent=True) or {}
    with transaction() as cur:
        after = booking.record_after_shift(cur, data)
    current_app.logger.info(
        f"After registrado: {after['matricula']} em {after['data_plantao']} "
        f"(comparecimento={after.get('comparecimento')})"
    )
    return jsonify(after), 201


@after_shift_bp.route("/<matricula>/<path:data_plantao>", methods=["PUT"])
@role_required("admin")
def update_after_shift(matricula, data_plantao):
    data = request.get_json(silent=True) or {}
    with transaction() as cur:
        after = booking.update_after_shift(cur, matricula, data_plantao, data)
    return jsonify(after)


@after_shift_bp.route("/<matricula>/<path:data_plantao>", methods=["DELETE"])
@role_required("admin")
def delete_after_shift(matricula, data_plantao):
    with transaction() as cur:
        after = booking.delete_after_shift(cur, matricula, data_plantao)
    return jsonify({"message": "Registro deletado com sucesso", "after": after})
