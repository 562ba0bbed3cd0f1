import uuid

from flask import Blueprint, jsonify, request

from auth import login_required, role_required
from db import TABLES, fa, fo, transaction
from errors import DuplicateError, NotFoundError, ValidationError
from formatters import today_sp

enrollments_bp = Blueprint("enrollments", __name__, url_prefix="/enrollments")

ALUNO_TURMA = TABLES["ALUNO_TURMA"]
ALUNOS = TABLES["ALUNOS"]
TURMAS = TABLES["TURMAS"]

ENROLLMENT_STATUSES = ("Inscrito", "Concluído", "Desistente")

LIST_SQL = f"""
    SELECT at.*, a.nome AS aluno_nome, a.email AS aluno_email, t.nome_turma AS turma_nome
    FROM {ALUNO_TURMA} at
    LEFT JOIN {ALUNOS} a ON at.aluno_id = a.matricula
    LEFT JOIN {TURMAS} t ON at.turma_id = t.id
"""


def _check_status(status):
    if status and status not in ENROLLMENT_STATUSES:
        raise ValidationError("Status inválido", f"Use um de: {', '.join(ENROLLMENT_STATUSES)}")


@enrollments_bp.route("")
@login_required
def list_enrollments():
    with transaction() as cur:
        cur.execute(LIST_SQL + " ORDER BY at.data_matricula DESC")
        return jsonify(fa(cur))


@enrollments_bp.route("/<inscricao_id>")
@login_required
def get_enrollment(inscricao_id):
    with transaction() as cur:
        cur.execute(LIST_SQL + " WHERE at.id = %s", (inscricao_id,))
        inscricao = fo(cur)
    if not inscricao:
        raise NotFoundError("Inscrição não encontrada")
    return jsonify(inscricao)


@enrollments_bp.route("", methods=["POST"])
@role_required("admin")
def create_enrollment():
    data = request.get_json(silent=True) or {}
    aluno_id = data.get("aluno_id")
    turma_id = data.get("turma_id")
    if not aluno_id or not turma_id:
        raise ValidationError("Aluno e turma são obrigatórios")
    _check_status(data.get("status"))

    with transaction() as cur:
        cur.execute(f"SELECT id FROM {ALUNO_TURMA} WHERE aluno_id = %s AND turma_id = %s", (aluno_id, turma_id))
        if fo(cur):
            raise DuplicateError("Aluno já está inscrito nesta turma")
        cur.execute(f"""
            INSERT INTO {ALUNO_TURMA} (id, aluno_id, turma_id, data_matricula, status)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
        """, (str(uuid.uuid4()), aluno_id, turma_id,
              data.get("data_matricula") or today_sp(), data.get("status") or "Inscrito"))
        inscricao = fo(cur)
    return jsonify(inscricao), 201


@enrollments_bp.route("/<inscricao_id>", methods=["PUT"])
@role_required("admin")
def update_enrollment(inscricao_id):
    data = request.get_json(silent=True) or {}
    _check_status(data.get("status"))
    with transaction() as cur:
        cur.execute(f"""
            UPDATE {ALUNO_TURMA} SET aluno_id = %s, turma_id = %s, data_matricula = %s, status = %s
            WHERE id = %s
            RETURNING *
        """, (data.get("aluno_id"), data.get("turma_id"), data.get("data_matricula"),
              data.get("status"), inscricao_id))
        inscricao = fo(cur)
    if not inscricao:
        raise NotFoundError("Inscrição não encontrada")
    return jsonify(inscricao)


@enrollments_bp.route("/<inscricao_id>", methods=["DELETE"])
@role_required("admin")
def delete_enrollment(inscricao_id):
    with transaction() as cur:
        cur.execute(f"DELETE FROM {ALUNO_TURMA} WHERE id = %s RETURNING *", (inscricao_id,))
        inscricao = fo(cur)
    if not inscricao:
        raise NotFoundError("Inscrição não encontrada")
    return jsonify({"message": "Inscrição deletada com sucesso", "inscricao": inscricao})


@enrollments_bp.route("/student/<aluno_id>")
@login_required
def get_student_enrollments(aluno_id):
    with transaction() as cur:
        cur.execute(f"""
            SELECT at.*, t.nome_turma AS turma_nome, t.data_inicio, t.data_fim,
                   t.horario, t.status AS turma_status, t.valor
            FROM {ALUNO_TURMA} at
            JOIN {TURMAS} t ON at.turma_id = t.id
            WHERE at.aluno_id = %s
            ORDER BY at.data_matricula DESC
        """, (aluno_id,))
        return jsonify(fa(cur))


@enrollments_bp.route("/class/<turma_id>")
@login_required
def get_class_enrollments(turma_id):
    with transaction() as cur:
        cur.execute(f"""
            SELECT at.*, a.nome AS aluno_nome, a.email AS aluno_email,
                   a.telefone AS aluno_telefone, a.status AS aluno_status
            FROM {ALUNO_TURMA} at
            JOIN {ALUNOS} a ON at.aluno_id = a.matricula
            WHERE at.turma_id = %s
            ORDER BY a.nome
        """, (turma_id,))
        return jsonify(fa(cur))
