"""
PostgreSQL access: one connection per operation, committed once.
"""

import logging
import time
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from flask import current_app

logger = logging.getLogger(__name__)

TABLES = {
    "ALUNOS": "lovable.pf_alunos",
    "PLANTOES": "lovable.pf_plantoes",
    "TENTATIVAS": "lovable.pf_tentativas",
    "AFTER": "lovable.pf_after",
    "FEEDBACK": "lovable.pf_feedback",
    "TURMAS": "ci_turmas_tratamentos",
    "ALUNO_TURMA": "ci_aluno_turma",
    "FINANCEIRO": "ci_financeiro",
}

PROCEDURE_FLAGS = [
    "cvc", "pai", "cardioversao", "iot", "dreno",
    "sne_svd", "protocolos_avc", "paracentese", "prona", "marca_passo",
    "extubacao", "decanulacao", "retirada_dreno", "toracocentese",
    "traqueostomia", "puncao_liquorica", "cateter_hemodialise",
    "protocolo_me",
]


def get_db_connection():
    conn = psycopg2.connect(current_app.config["DATABASE_URL"])
    conn.autocommit = False
    return conn


def fa(cursor):
    """fetchall as list of dicts"""
    return [dict(row) for row in cursor.fetchall()]


def fo(cursor):
    """fetchone as dict or None"""
    row = cursor.fetchone()
    return dict(row) if row else None


@contextmanager
def transaction():
    """Yield a dict cursor; commit when the block finishes, roll back on any error."""
    conn = get_db_connection()
    start = time.monotonic()
    try:
        with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
            yield cur
        conn.commit()
        logger.debug("transaction committed in %.0fms", (time.monotonic() - start) * 1000)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def build_filters(filters):
    """Turn ``[(sql_fragment, value), ...]`` into a WHERE clause and params.

    A fragment without a placeholder (value ``None``) is added as-is.
    """
    clauses, params = [], []
    for fragment, value in filters:
        clauses.append(fragment)
        if value is not None:
            params.extend(value if isinstance(value, tuple) else (value,))
    where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
    return where, params


# ============================================
# SCHEMA (create tables if missing)
# ============================================

def _flag_columns():
    return ",\n".join(f"    {flag} BOOLEAN DEFAULT FALSE" for flag in PROCEDURE_FLAGS)


SCHEMA = [
    "CREATE SCHEMA IF NOT EXISTS lovable",
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['ALUNOS']} (
        matricula                TEXT PRIMARY KEY,
        nome                     TEXT,
        telefone                 TEXT,
        email                    TEXT,
        status                   TEXT DEFAULT 'Ativo',
        qtd_plantoes             INTEGER DEFAULT 0,
        data_ultimo_plantao      TEXT,
        parcelas_pagas           INTEGER DEFAULT 0,
        parcelas_atraso          INTEGER DEFAULT 0,
        parcelas_aberto          INTEGER DEFAULT 0,
        aulas_total_porcentagem  NUMERIC DEFAULT 0,
        aulas_assistidas         INTEGER DEFAULT 0,
        dias_desde_primeira_aula INTEGER DEFAULT 0,
        dias_desde_ultima_aula   INTEGER DEFAULT 0,
        turma                    TEXT,
        criado_em                TEXT,
        status_financeiro        TEXT DEFAULT 'INDEFINIDO',
        qtd_tentativas           INTEGER DEFAULT 0,
        cidade                   TEXT,
        tag                      TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['PLANTOES']} (
        matricula    TEXT NOT NULL,
        nome         TEXT,
        telefone     TEXT,
        data_plantao TEXT NOT NULL,
        data_marcado TEXT,
        status       TEXT DEFAULT 'Em Aberto',
        CONSTRAINT pf_plantoes_unique UNIQUE (matricula, data_plantao)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['TENTATIVAS']} (
        matricula             TEXT NOT NULL,
        nome                  TEXT,
        telefone              TEXT,
        data_tentativa        TEXT NOT NULL,
        data_possivel_plantao TEXT NOT NULL,
        data_que_conseguiu    VARCHAR(20),
        CONSTRAINT pf_tentativas_unique UNIQUE (matricula, data_tentativa, data_possivel_plantao)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['AFTER']} (
        matricula      TEXT NOT NULL,
        nome           TEXT,
        telefone       TEXT,
        data_plantao   TEXT NOT NULL,
        uti            TEXT,
    {_flag_columns()},
        comparecimento BOOLEAN DEFAULT TRUE,
        CONSTRAINT pf_after_unique UNIQUE (matricula, data_plantao)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['FEEDBACK']} (
        id   SERIAL PRIMARY KEY,
        data TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['TURMAS']} (
        id          TEXT PRIMARY KEY,
        nome_turma  TEXT NOT NULL,
        descricao   TEXT DEFAULT '',
        data_inicio TEXT,
        data_fim    TEXT,
        horario     TEXT DEFAULT '',
        "local"     TEXT DEFAULT '',
        capacidade  TEXT DEFAULT '10',
        instrutor   TEXT,
        status      TEXT DEFAULT 'Aberta',
        valor       TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['ALUNO_TURMA']} (
        id             TEXT PRIMARY KEY,
        aluno_id       TEXT NOT NULL,
        turma_id       TEXT NOT NULL,
        data_matricula TEXT,
        status         TEXT DEFAULT 'Inscrito',
        UNIQUE (aluno_id, turma_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {TABLES['FINANCEIRO']} (
        id             TEXT PRIMARY KEY,
        categoria      TEXT NOT NULL,
        descricao      TEXT DEFAULT '',
        quantidade     TEXT DEFAULT '1',
        valor_unitario TEXT,
        valor_total    TEXT,
        tipo           TEXT NOT NULL,
        data           TEXT,
        turma_id       TEXT,
        observacoes    TEXT DEFAULT '',
        data_registro  TEXT
    )
    """,
]


def init_db():
    conn = get_db_connection()
    try:
        with conn.cursor() as cur:
            for statement in SCHEMA:
                cur.execute(statement)
        conn.commit()
        logger.info("DB init OK")
    except psycopg2.Error as e:
        conn.rollback()
        logger.error("DB init error: %s", e)
        raise
    finally:
        conn.close()
