import uuid

import psycopg2.errors
from flask import Blueprint, jsonify, request

from auth import login_required, role_required
from db import TABLES, build_filters, fa, fo, transaction
from errors import DuplicateError, NotFoundError, ValidationError
from fields import TURMA_RETURNING, update_field
from finance_routes import summarize
from formatters import sort_by_br_date

classes_bp = Blueprint("classes", __name__, url_prefix="/classes")

TURMAS = TABLES["TURMAS"]

CLASS_STATUSES = ("Aberta", "Em Andamento", "Finalizada", "Cancelada")


def _check_status(status):
    if status and status not in CLASS_STATUSES:
        raise ValidationError("Status inválido", f"Use um de: {', '.join(CLASS_STATUSES)}")


@classes_bp.route("")
@login_required
def list_classes():
    search = request.args.get("search")
    status = request.args.get("status")
    filters = []
    if search:
        like = f"%{search}%"
        filters.append(("(nome_turma ILIKE %s OR instrutor ILIKE %s)", (like, like)))
    if status:
        filters.append(("status = %s", status))
    where, params = build_filters(filters)
    with transaction() as cur:
        cur.execute(f"SELECT {TURMA_RETURNING} FROM {TURMAS}{where} ORDER BY data_inicio DESC", params)
        return jsonify(fa(cur))


@classes_bp.route("/<turma_id>")
@login_required
def get_class(turma_id):
    with transaction() as cur:
        cur.execute(f"SELECT {TURMA_RETURNING} FROM {TURMAS} WHERE id = %s", (turma_id,))
        turma = fo(cur)
    if not turma:
        raise NotFoundError("Turma não encontrada")
    return jsonify(turma)


@classes_bp.route("", methods=["POST"])
@role_required("admin")
def create_class():
    data = request.get_json(silent=True) or {}
    if not data.get("nome"):
        raise ValidationError("Nome da turma é obrigatório")
    _check_status(data.get("status"))
    try:
        with transaction() as cur:
            cur.execute(f"""
                INSERT INTO {TURMAS}
                    (id, nome_turma, descricao, data_inicio, data_fim, horario, "local", capacidade, instrutor, status, valor)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {TURMA_RETURNING}
            """, (str(uuid.uuid4()), data.get("nome"), data.get("descricao") or "",
                  data.get("data_inicio"), data.get("data_fim"), data.get("horario") or "",
                  data.get("local") or "", str(data.get("capacidade") or "10"),
                  data.get("instrutor"), data.get("status") or "Aberta", data.get("valor")))
            turma = fo(cur)
    except psycopg2.errors.UniqueViolation:
        raise DuplicateError("Esta turma já existe", "Verifique se todos os dados estão corretos")
    return jsonify(turma), 201


@classes_bp.route("/<turma_id>", methods=["PUT"])
@role_required("admin")
def update_class(turma_id):
    data = request.get_json(silent=True) or {}
    _check_status(data.get("status"))
    with transaction() as cur:
        cur.execute(f"""
            UPDATE {TURMAS} SET
                nome_turma = %s, descricao = %s, data_inicio = %s, data_fim = %s,
                horario = %s, "local" = %s, capacidade = %s, instrutor = %s,
                status = %s, valor = %s
            WHERE id = %s
            RETURNING {TURMA_RETURNING}
        """, (data.get("nome"), data.get("descricao"), data.get("data_inicio"), data.get("data_fim"),
              data.get("horario"), data.get("local"), data.get("capacidade"), data.get("instrutor"),
              data.get("status"), data.get("valor"), turma_id))
        turma = fo(cur)
    if not turma:
        raise NotFoundError("Turma não encontrada")
    return jsonify(turma)


@classes_bp.route("/<turma_id>", methods=["PATCH"])
@role_required("admin")
def update_class_field(turma_id):
    data = request.get_json(silent=True) or {}
    if data.get("field") == "status":
        _check_status(data.get("value"))
    with transaction() as cur:
        turma = update_field(cur, "classes", turma_id, data.get("field"), data.get("value"))
    return jsonify(turma)


@classes_bp.route("/<turma_id>", methods=["DELETE"])
@role_required("admin")
def delete_class(turma_id):
    with transaction() as cur:
        cur.execute(f"DELETE FROM {TURMAS} WHERE id = %s RETURNING *", (turma_id,))
        turma = fo(cur)
    if not turma:
        raise NotFoundError("Turma não encontrada")
    return jsonify({"message": "Turma deletada com sucesso", "turma": turma})


@classes_bp.route("/<turma_id>/students")
@login_required
def get_class_students(turma_id):
    with transaction() as cur:
        cur.execute(f"""
            SELECT a.*, at.id AS inscricao_id, at.data_matricula, at.status AS inscricao_status
            FROM {TABLES['ALUNOS']} a
            JOIN {TABLES['ALUNO_TURMA']} at ON a.matricula = at.aluno_id
            WHERE at.turma_id = %s
            ORDER BY a.nome
        """, (turma_id,))
        return jsonify(fa(cur))


@classes_bp.route("/<turma_id>/finance")
@role_required("admin")
def get_class_finance(turma_id):
    with transaction() as cur:
        cur.execute(
            f"SELECT * FROM {TABLES['FINANCEIRO']} WHERE turma_id = %s",
            (turma_id,),
        )
        registros = sort_by_br_date(fa(cur), "data")
    return jsonify({"registros": registros, "resumo": summarize(registros)})
