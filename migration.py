"""
Column migration script.
Safe to run more than once: each column is only added when missing, then the
per-student shift/attempt counters are recomputed from the live rows.

    flask --app app migrate
    python migration.py
"""
import logging

import booking
from db import fo, transaction

logger = logging.getLogger(__name__)

# (schema, table, column, type)
COLUMNS_TO_ADD = [
    ("lovable", "pf_tentativas", "data_que_conseguiu", "VARCHAR(20)"),
    ("lovable", "pf_alunos", "qtd_tentativas", "INTEGER DEFAULT 0"),
    ("lovable", "pf_alunos", "status", "TEXT DEFAULT 'Ativo'"),
    ("lovable", "pf_alunos", "cidade", "TEXT"),
    ("lovable", "pf_alunos", "tag", "TEXT"),
    ("lovable", "pf_after", "comparecimento", "BOOLEAN DEFAULT TRUE"),
]


def column_exists(cur, schema, table, column):
    cur.execute("""
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = %s AND table_name = %s AND column_name = %s
    """, (schema, table, column))
    return fo(cur) is not None


def add_missing_columns(cur, columns=COLUMNS_TO_ADD):
    """Returns the ``schema.table.column`` names that were added."""
    added = []
    for schema, table, column, col_type in columns:
        if column_exists(cur, schema, table, column):
            logger.info("Coluna já existe: %s.%s.%s", schema, table, column)
            continue
        cur.execute(f"ALTER TABLE {schema}.{table} ADD COLUMN {column} {col_type}")
        logger.info("Coluna adicionada: %s.%s.%s", schema, table, column)
        added.append(f"{schema}.{table}.{column}")
    return added


def run_migration():
    with transaction() as cur:
        added = add_missing_columns(cur)
        synced = booking.sync_counters(cur)
    logger.info("Migração concluída: %d colunas adicionadas, %d alunos recontados", len(added), synced)
    return added, synced


if __name__ == "__main__":
    from app import create_app

    with create_app().app_context():
        run_migration()
