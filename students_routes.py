import psycopg2.errors
from flask import Blueprint, jsonify, request

import booking
from auth import login_required, role_required
from db import TABLES, build_filters, fa, fo, transaction
from errors import DuplicateError, NotFoundError, ValidationError
from fields import update_field
from formatters import today_sp


students_bp = Blueprint("students", __name__, url_prefix="/students")

ALUNOS = TABLES["ALUNOS"]

STUDENT_STATUSES = ("Ativo", "Inativo", "Em Onboarding")

# column -> default on insert
CREATE_COLUMNS = {
    "matricula": None, "nome": None, "telefone": None, "email": None,
    "status": "Ativo",
    "qtd_plantoes": 0, "data_ultimo_plantao": None,
    "parcelas_pagas": 0, "parcelas_atraso": 0, "parcelas_aberto": 0,
    "aulas_total_porcentagem": 0.0, "aulas_assistidas": 0,
    "dias_desde_primeira_aula": 0, "dias_desde_ultima_aula": 0,
    "turma": None, "criado_em": None, "status_financeiro": "INDEFINIDO",
    "qtd_tentativas": 0, "cidade": None, "tag": None,
}

UPDATE_COLUMNS = [
    "nome", "telefone", "email", "status",
    "qtd_plantoes", "data_ultimo_plantao",
    "parcelas_pagas", "parcelas_atraso", "parcelas_aberto",
    "aulas_total_porcentagem", "status_financeiro",
    "cidade", "tag",
]


def _check_status(status, required=False):
    if required and not status:
        raise ValidationError("Status é obrigatório", f"Use um de: {', '.join(STUDENT_STATUSES)}")
    if status and status not in STUDENT_STATUSES:
        raise ValidationError("Status inválido", f"Use um de: {', '.join(STUDENT_STATUSES)}")


@students_bp.route("")
@login_required
def list_students():
    search = request.args.get("search")
    status = request.args.get("status")
    filters = []
    if search:
        like = f"%{search}%"
        filters.append(("(nome ILIKE %s OR email ILIKE %s OR matricula ILIKE %s)", (like, like, like)))
    if status:
        filters.append(("status = %s", status))
    where, params = build_filters(filters)
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {ALUNOS}{where} ORDER BY nome ASC", params)
        return jsonify(fa(cur))


@students_bp.route("/<matricula>")
@login_required
def get_student(matricula):
    with transaction() as cur:
        cur.execute(f"SELECT * FROM {ALUNOS} WHERE matricula = %s", (matricula,))
        aluno = fo(cur)
    if not aluno:
        raise NotFoundError("Aluno não encontrado")
    return jsonify(aluno)


@students_bp.route("", methods=["POST"])
@role_required("admin", "comercial")
def create_student():
    data = request.get_json(silent=True) or {}
    if not data.get("matricula"):
        raise ValidationError("Matrícula é obrigatória")
    _check_status(data.get("status"))

    values = {col: (data.get(col) or default) for col, default in CREATE_COLUMNS.items()}
    values["criado_em"] = values["criado_em"] or today_sp()
    columns = list(values)
    try:
        with transaction() as cur:
            cur.execute(
                f"INSERT INTO {ALUNOS} ({', '.join(columns)}) "
                f"VALUES ({', '.join(['%s'] * len(columns))}) RETURNING *",
                [values[c] for c in columns],
            )
            aluno = fo(cur)
    except psycopg2.errors.UniqueViolation:
        raise DuplicateError("Esta matrícula já está cadastrada", "Use uma matrícula diferente")
    return jsonify(aluno), 201


@students_bp.route("/<matricula>", methods=["PUT"])
@role_required("admin")
def update_student(matricula):
    data = request.get_json(silent=True) or {}
    _check_status(data.get("status"), required="status" in data)
    # absent keys keep their stored value
    columns = [c for c in UPDATE_COLUMNS if c in data]
    if not columns:
        raise ValidationError("Nenhum campo para atualizar", f"Campos aceitos: {', '.join(UPDATE_COLUMNS)}")
    with transaction() as cur:
        cur.execute(
            f"UPDATE {ALUNOS} SET {', '.join(c + ' = %s' for c in columns)} "
            f"WHERE matricula = %s RETURNING *",
            [data[c] for c in columns] + [matricula],
        )
        aluno = fo(cur)
    if not aluno:
        raise NotFoundError("Aluno não encontrado")
    return jsonify(aluno)


@students_bp.route("/<matricula>", methods=["PATCH"])
@role_required("admin")
def update_student_field(matricula):
    data = request.get_json(silent=True) or {}
    if data.get("field") == "status":
        _check_status(data.get("value"), required=True)
    with transaction() as cur:
        aluno = update_field(cur, "students", matricula, data.get("field"), data.get("value"))
    return jsonify(aluno)


@students_bp.route("/<matricula>", methods=["DELETE"])
@role_required("admin")
def delete_student(matricula):
    with transaction() as cur:
        cur.execute(f"DELETE FROM {ALUNOS} WHERE matricula = %s RETURNING *", (matricula,))
        aluno = fo(cur)
    if not aluno:
        raise NotFoundError("Aluno não encontrado")
    return jsonify({"message": "Aluno deletado com sucesso", "aluno": aluno})


@students_bp.route("/<matricula>/classes")
@login_required
def get_student_classes(matricula):
    with transaction() as cur:
        cur.execute(f"""
            SELECT at.*, t.nome_turma AS turma_nome, t.data_inicio, t.data_fim,
                   t.horario, t.status AS turma_status, t.valor
            FROM {TABLES['ALUNO_TURMA']} at
            JOIN {TABLES['TURMAS']} t ON at.turma_id = t.id
            WHERE at.aluno_id = %s
            ORDER BY at.data_matricula DESC
        """, (matricula,))
        return jsonify(fa(cur))


@students_bp.route("/<matricula>/recount", methods=["POST"])
@role_required("admin")
def recount_student(matricula):
    with transaction() as cur:
        if not booking.sync_counters(cur, matricula):
            raise NotFoundError("Aluno não encontrado")
        cur.execute(f"SELECT * FROM {ALUNOS} WHERE matricula = %s", (matricula,))
        aluno = fo(cur)
    return jsonify(aluno)
