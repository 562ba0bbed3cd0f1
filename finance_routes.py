import uuid
from datetime import datetime

from flask import Blueprint, jsonify, request

from auth import role_required
from db import TABLES, build_filters, fa, fo, transaction
from errors import NotFoundError, ValidationError
from fields import update_field
from formatters import calculate_total, decimal_text, parse_br_date, parse_decimal, sort_by_br_date

finance_bp = Blueprint("finance", __name__, url_prefix="/finance")

FINANCEIRO = TABLES["FINANCEIRO"]

FINANCE_TYPES = ("Entrada", "Saída")


def _check_type(tipo, required=False):
    if required and not tipo:
        raise ValidationError("Tipo é obrigatório", "Use 'Entrada' ou 'Saída'")
    if tipo and tipo not in FINANCE_TYPES:
        raise ValidationError("Tipo inválido", "Use 'Entrada' ou 'Saída'")


def summarize(rows):
    entradas = sum(parse_decimal(r.get("valor_total")) for r in rows if r.get("tipo") == "Entrada")
    saidas = sum(parse_decimal(r.get("valor_total")) for r in rows if r.get("tipo") == "Saída")
    return {"entradas": float(entradas), "saidas": float(saidas), "saldo": float(entradas - saidas)}


@finance_bp.route("")
@role_required("admin")
def list_finance():
    search = request.args.get("search")
    tipo = request.args.get("tipo")
    turma_id = request.args.get("turma_id")
    filters = []
    if search:
        like = f"%{search}%"
        filters.append(("(categoria ILIKE %s OR descricao ILIKE %s)", (like, like)))
    if tipo and tipo != "todos":
        filters.append(("tipo = %s", tipo))
    if turma_id == "sem_turma":
        filters.append(("turma_id IS NULL", None))
    elif turma_id:
        filters.append(("turma_id = %s", turma_id))
    where, params = build_filters(filters)
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {FINANCEIRO}{where}", params)
        rows = fa(cur)
    return jsonify(sort_by_br_date(rows, "data"))


@finance_bp.route("/resumo")
@role_required("admin")
def finance_summary():
    """Entradas/saídas/saldo, optionally per class and within [data_inicio, data_fim]."""
    turma_id = request.args.get("turma_id")
    start = parse_br_date(request.args.get("data_inicio"))
    end = parse_br_date(request.args.get("data_fim"))
    where, params = build_filters([("turma_id = %s", turma_id)] if turma_id else [])
    with transaction() as cur:
        cur.execute(f"SELECT tipo, valor_total, data FROM {FINANCEIRO}{where}", params)
        rows = fa(cur)

    # dates are text, so the range filter runs here
    if start or end:
        def in_range(row):
            d = parse_br_date(row.get("data"))
            return d is not None and (not start or d >= start) and (not end or d <= end)
        rows = [r for r in rows if in_range(r)]
    return jsonify(summarize(rows))


@finance_bp.route("/type/<tipo>")
@role_required("admin")
def list_finance_by_type(tipo):
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {FINANCEIRO} WHERE tipo = %s", (tipo,))
        rows = fa(cur)
    return jsonify(sort_by_br_date(rows, "data"))


@finance_bp.route("/<registro_id>")
@role_required("admin")
def get_finance(registro_id):
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {FINANCEIRO} WHERE id = %s", (registro_id,))
        registro = fo(cur)
    if not registro:
        raise NotFoundError("Registro não encontrado")
    return jsonify(registro)


@finance_bp.route("", methods=["POST"])
@role_required("admin")
def create_finance():
    data = request.get_json(silent=True) or {}
    if not data.get("categoria"):
        raise ValidationError("Categoria é obrigatória")
    _check_type(data.get("tipo"), required=True)

    quantidade = decimal_text(data.get("quantidade")) or "1"
    valor_unitario = decimal_text(data.get("valor_unitario")) or "0"
    valor_total = decimal_text(data.get("valor_total")) or calculate_total(quantidade, valor_unitario)

    with transaction() as cur:
        cur.execute(f"""
            INSERT INTO {FINANCEIRO}
                (id, categoria, descricao, quantidade, valor_unitario, valor_total, tipo, data, turma_id, observacoes, data_registro)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (str(uuid.uuid4()), data.get("categoria"), data.get("descricao") or "", quantidade,
              valor_unitario, valor_total, data.get("tipo"), data.get("data"),
              data.get("turma_id") or None, data.get("observacoes") or "",
              datetime.now().strftime("%Y-%m-%d")))
        registro = fo(cur)
    return jsonify(registro), 201


@finance_bp.route("/<registro_id>", methods=["PUT"])
@role_required("admin")
def update_finance(registro_id):
    data = request.get_json(silent=True) or {}
    _check_type(data.get("tipo"))
    quantidade = decimal_text(data.get("quantidade"))
    valor_unitario = decimal_text(data.get("valor_unitario"))
    valor_total = decimal_text(data.get("valor_total"))
    if valor_total is None and quantidade and valor_unitario:
        valor_total = calculate_total(quantidade, valor_unitario)
    with transaction() as cur:
        cur.execute(f"""
            UPDATE {FINANCEIRO} SET
                categoria = %s, descricao = %s, quantidade = %s, valor_unitario = %s,
                valor_total = %s, tipo = %s, data = %s, turma_id = %s, observacoes = %s
            WHERE id = %s
            RETURNING *
        """, (data.get("categoria"), data.get("descricao"), quantidade, valor_unitario, valor_total,
              data.get("tipo"), data.get("data"), data.get("turma_id") or None, data.get("observacoes"),
              registro_id))
        registro = fo(cur)
    if not registro:
        raise NotFoundError("Registro não encontrado")
    return jsonify(registro)


@finance_bp.route("/<registro_id>", methods=["PATCH"])
@role_required("admin")
def update_finance_field(registro_id):
    data = request.get_json(silent=True) or {}
    if data.get("field") == "tipo":
        _check_type(data.get("value"), required=True)
    with transaction() as cur:
        registro = update_field(cur, "finance", registro_id, data.get("field"), data.get("value"))
    return jsonify(registro)


@finance_bp.route("/<registro_id>", methods=["DELETE"])
@role_required("admin")
def delete_finance(registro_id):
    with transaction() as cur:
        cur.execute(f"DELETE FROM {FINANCEIRO} WHERE id = %s RETURNING *", (registro_id,))
        registro = fo(cur)
    if not registro:
        raise NotFoundError("Registro não encontrado")
    return jsonify({"message": "Registro deletado com sucesso", "registro": registro})
