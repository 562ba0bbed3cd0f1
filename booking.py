"""
Shift booking and attempt logging rules.

Every function takes an open dict cursor from ``db.transaction()`` and runs
all of its statements inside that one transaction, so a row and the
student's denormalised counter (``qtd_plantoes`` / ``qtd_tentativas``) are
committed or rolled back together.

Daily capacity is admission-controlled with a transaction-scoped advisory
lock on the shift date: concurrent bookings for the same day queue on the
lock, so the count they see already includes every committed booking.
"""

import logging

import psycopg2.errors

from db import TABLES, PROCEDURE_FLAGS, fo
from errors import (
    CapacityExceededError,
    DuplicateError,
    InvalidFieldError,
    NotFoundError,
    ValidationError,
)
from formatters import normalize_date, today_sp

logger = logging.getLogger(__name__)

DAILY_SHIFT_CAP = 10

STATUS_OPEN = "Em Aberto"
STATUS_DONE = "Realizado"
STATUS_CANCELLED = "Cancelado"
SHIFT_STATUSES = (STATUS_OPEN, STATUS_DONE, STATUS_CANCELLED)

AFTER_EDITABLE_FIELDS = ["uti"] + PROCEDURE_FLAGS

ALUNOS = TABLES["ALUNOS"]
PLANTOES = TABLES["PLANTOES"]
TENTATIVAS = TABLES["TENTATIVAS"]
AFTER = TABLES["AFTER"]


def as_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "sim", "yes", "on")
    return bool(value)


def _student_contact(cur, matricula):
    cur.execute(f"SELECT nome, telefone FROM {ALUNOS} WHERE matricula = %s", (matricula,))
    aluno = fo(cur)
    if not aluno:
        raise NotFoundError("Aluno não encontrado")
    return aluno


# ============================================
# SHIFTS
# ============================================

def create_shift(cur, matricula, data_plantao, status=None):
    data_plantao = normalize_date(data_plantao)
    if not matricula or not data_plantao:
        raise ValidationError("Matrícula e Data do Plantão são obrigatórios")
    status = status or STATUS_OPEN
    if status not in SHIFT_STATUSES:
        raise ValidationError("Status inválido", f"Use um de: {', '.join(SHIFT_STATUSES)}")

    aluno = _student_contact(cur, matricula)

    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"pf_plantoes:{data_plantao}",))
    cur.execute(f"SELECT COUNT(*) AS total FROM {PLANTOES} WHERE data_plantao = %s", (data_plantao,))
    total = int(fo(cur)["total"])
    if total >= DAILY_SHIFT_CAP:
        raise CapacityExceededError(f"Limite de {DAILY_SHIFT_CAP} plantões para este dia já foi atingido.")

    try:
        cur.execute(f"""
            INSERT INTO {PLANTOES} (matricula, nome, telefone, data_plantao, data_marcado, status)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (matricula, aluno["nome"], aluno["telefone"], data_plantao, today_sp(), status))
    except psycopg2.errors.UniqueViolation as e:
        raise DuplicateError(
            "Já existe um plantão marcado para este aluno nesta data",
            getattr(getattr(e, "diag", None), "message_detail", None),
        )
    plantao = fo(cur)

    cur.execute(
        f"UPDATE {ALUNOS} SET qtd_plantoes = COALESCE(qtd_plantoes, 0) + 1 WHERE matricula = %s",
        (matricula,),
    )
    logger.info("plantão marcado: %s em %s (%d/%d)", matricula, data_plantao, total + 1, DAILY_SHIFT_CAP)
    return plantao


def update_shift_status(cur, matricula, data_plantao, status):
    data_plantao = normalize_date(data_plantao)
    if status not in SHIFT_STATUSES:
        raise ValidationError("Status inválido", f"Use um de: {', '.join(SHIFT_STATUSES)}")
    cur.execute(f"""
        UPDATE {PLANTOES} SET status = %s
        WHERE matricula = %s AND data_plantao = %s
        RETURNING *
    """, (status, matricula, data_plantao))
    plantao = fo(cur)
    if not plantao:
        raise NotFoundError("Plantão não encontrado")
    return plantao


def delete_shift(cur, matricula, data_plantao):
    data_plantao = normalize_date(data_plantao)
    cur.execute(
        f"DELETE FROM {PLANTOES} WHERE matricula = %s AND data_plantao = %s RETURNING *",
        (matricula, data_plantao),
    )
    plantao = fo(cur)
    if not plantao:
        raise NotFoundError("Plantão não encontrado")
    cur.execute(
        f"UPDATE {ALUNOS} SET qtd_plantoes = GREATEST(COALESCE(qtd_plantoes, 0) - 1, 0) WHERE matricula = %s",
        (matricula,),
    )
    logger.info("plantão removido: %s em %s", matricula, data_plantao)
    return plantao


# ============================================
# AFTER (post-shift checklist)
# ============================================

def record_after_shift(cur, data):
    matricula = data.get("matricula")
    data_plantao = normalize_date(data.get("data_plantao"))
    if not matricula or not data_plantao:
        raise ValidationError("Matrícula e data do plantão são obrigatórios")

    attended = as_bool(data.get("comparecimento"), default=True)
    columns = ["matricula", "nome", "telefone", "data_plantao", "uti"] + PROCEDURE_FLAGS + ["comparecimento"]
    values = [matricula, data.get("nome"), data.get("telefone"), data_plantao, data.get("uti")]
    values += [as_bool(data.get(flag)) for flag in PROCEDURE_FLAGS]
    values.append(attended)

    try:
        cur.execute(
            f"INSERT INTO {AFTER} ({', '.join(columns)}) "
            f"VALUES ({', '.join(['%s'] * len(columns))}) RETURNING *",
            values,
        )
    except psycopg2.errors.UniqueViolation:
        raise DuplicateError("Registro já existe para este plantão")
    after = fo(cur)

    # overrides whatever status the shift had
    new_status = STATUS_DONE if attended else STATUS_CANCELLED
    cur.execute(
        f"UPDATE {PLANTOES} SET status = %s WHERE matricula = %s AND data_plantao = %s",
        (new_status, matricula, data_plantao),
    )
    logger.info("after registrado: %s em %s -> %s", matricula, data_plantao, new_status)
    return after


def update_after_shift(cur, matricula, data_plantao, changes):
    data_plantao = normalize_date(data_plantao)
    fields = [f for f in AFTER_EDITABLE_FIELDS if f in (changes or {})]
    if not fields:
        raise InvalidFieldError("Nenhum campo válido para atualizar")
    values = [changes[f] if f == "uti" else as_bool(changes[f]) for f in fields]
    values += [matricula, data_plantao]
    cur.execute(
        f"UPDATE {AFTER} SET {', '.join(f + ' = %s' for f in fields)} "
        f"WHERE matricula = %s AND data_plantao = %s RETURNING *",
        values,
    )
    after = fo(cur)
    if not after:
        raise NotFoundError("Registro não encontrado")
    return after


def delete_after_shift(cur, matricula, data_plantao):
    data_plantao = normalize_date(data_plantao)
    cur.execute(
        f"DELETE FROM {AFTER} WHERE matricula = %s AND data_plantao = %s RETURNING *",
        (matricula, data_plantao),
    )
    after = fo(cur)
    if not after:
        raise NotFoundError("Registro não encontrado")
    cur.execute(
        f"UPDATE {PLANTOES} SET status = %s WHERE matricula = %s AND data_plantao = %s",
        (STATUS_OPEN, matricula, data_plantao),
    )
    return after


# ============================================
# ATTEMPTS
# ============================================

def create_attempt(cur, matricula, data_possivel_plantao, data_que_conseguiu=None, now=None):
    data_possivel_plantao = normalize_date(data_possivel_plantao)
    data_que_conseguiu = normalize_date(data_que_conseguiu)
    if not matricula or not data_possivel_plantao:
        raise ValidationError("Matrícula e data possível são obrigatórios")

    aluno = _student_contact(cur, matricula)
    data_tentativa = today_sp(now)

    try:
        cur.execute(f"""
            INSERT INTO {TENTATIVAS}
                (matricula, nome, telefone, data_tentativa, data_possivel_plantao, data_que_conseguiu)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (matricula, aluno["nome"], aluno["telefone"], data_tentativa,
              data_possivel_plantao, data_que_conseguiu or None))
    except psycopg2.errors.UniqueViolation:
        raise DuplicateError("Tentativa já registrada para esta data")
    tentativa = fo(cur)

    cur.execute(
        f"UPDATE {ALUNOS} SET qtd_tentativas = COALESCE(qtd_tentativas, 0) + 1 WHERE matricula = %s",
        (matricula,),
    )
    return tentativa


def delete_attempt(cur, matricula, data_tentativa, data_possivel_plantao):
    data_tentativa = normalize_date(data_tentativa)
    data_possivel_plantao = normalize_date(data_possivel_plantao)
    cur.execute(f"""
        DELETE FROM {TENTATIVAS}
        WHERE matricula = %s AND data_tentativa = %s AND data_possivel_plantao = %s
        RETURNING *
    """, (matricula, data_tentativa, data_possivel_plantao))
    tentativa = fo(cur)
    if not tentativa:
        raise NotFoundError("Tentativa não encontrada")
    cur.execute(
        f"UPDATE {ALUNOS} SET qtd_tentativas = GREATEST(COALESCE(qtd_tentativas, 0) - 1, 0) WHERE matricula = %s",
        (matricula,),
    )
    return tentativa


def count_attempts(cur, matricula):
    cur.execute(f"SELECT COUNT(*) AS count FROM {TENTATIVAS} WHERE matricula = %s", (matricula,))
    return int(fo(cur)["count"])


def sync_counters(cur, matricula=None):
    """Recompute qtd_plantoes/qtd_tentativas from the live rows. Returns rows touched."""
    sql = f"""
        UPDATE {ALUNOS} a SET
            qtd_plantoes   = (SELECT COUNT(*) FROM {PLANTOES} p WHERE p.matricula = a.matricula),
            qtd_tentativas = (SELECT COUNT(*) FROM {TENTATIVAS} t WHERE t.matricula = a.matricula)
    """
    params = ()
    if matricula:
        sql += " WHERE a.matricula = %s"
        params = (matricula,)
    cur.execute(sql, params)
    return cur.rowcount
