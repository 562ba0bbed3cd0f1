"""
Single-column updates (``PATCH /<entity>/<id>`` with ``{"field", "value"}``).

Only columns named in an entity's allow-list can be written, so the field
name never reaches the SQL text unchecked.
"""

from db import TABLES, fo
from errors import InvalidFieldError, NotFoundError, ValidationError
from formatters import calculate_total, decimal_text

TURMA_RETURNING = """id, nome_turma AS nome, descricao, data_inicio, data_fim, horario,
                     "local", capacidade, instrutor, status, valor"""

# entity -> table, key column, {api field: column}, RETURNING list, not-found message
ENTITIES = {
    "students": {
        "table": TABLES["ALUNOS"],
        "key": "matricula",
        "fields": {f: f for f in (
            "nome", "telefone", "email", "status",
            "qtd_plantoes", "data_ultimo_plantao",
            "parcelas_pagas", "parcelas_atraso", "parcelas_aberto",
            "aulas_total_porcentagem", "status_financeiro",
            "cidade", "tag",
        )},
        "returning": "*",
        "not_found": "Aluno não encontrado",
    },
    "classes": {
        "table": TABLES["TURMAS"],
        "key": "id",
        "fields": {
            "nome": "nome_turma",
            "descricao": "descricao",
            "data_inicio": "data_inicio",
            "data_fim": "data_fim",
            "horario": "horario",
            "local": '"local"',
            "capacidade": "capacidade",
            "instrutor": "instrutor",
            "status": "status",
            "valor": "valor",
        },
        "returning": TURMA_RETURNING,
        "not_found": "Turma não encontrada",
    },
    "finance": {
        "table": TABLES["FINANCEIRO"],
        "key": "id",
        "fields": {f: f for f in (
            "categoria", "descricao", "quantidade", "valor_unitario",
            "valor_total", "tipo", "data", "turma_id", "observacoes",
        )},
        "returning": "*",
        "not_found": "Registro não encontrado",
    },
}

TOTAL_FACTORS = ("quantidade", "valor_unitario")
NUMERIC_FINANCE_FIELDS = TOTAL_FACTORS + ("valor_total",)


def allowed_fields(entity):
    return sorted(ENTITIES[entity]["fields"])


def _finance_factor_update(cur, target, key, field, value):
    """Write one factor and the recomputed total: new x the other stored factor.

    The row is locked first so two factor edits on the same entry can't each
    compute a total from the other's stale value.
    """
    new_value = decimal_text(value)
    if new_value is None:
        raise ValidationError(f"{field} é obrigatório")
    cur.execute(
        f"SELECT quantidade, valor_unitario FROM {target['table']} WHERE {target['key']} = %s FOR UPDATE",
        (key,),
    )
    stored = fo(cur)
    if not stored:
        raise NotFoundError(target["not_found"])

    factors = dict(stored, **{field: new_value})
    params = {
        "value": factors[field],
        "total": calculate_total(factors["quantidade"], factors["valor_unitario"]),
        "key": key,
    }
    cur.execute(
        f"UPDATE {target['table']} SET {field} = %(value)s, valor_total = %(total)s "
        f"WHERE {target['key']} = %(key)s RETURNING {target['returning']}",
        params,
    )
    return fo(cur)


def update_field(cur, entity, key, field, value):
    target = ENTITIES[entity]
    column = target["fields"].get(field)
    if column is None:
        raise InvalidFieldError(details=f"Campos permitidos: {', '.join(allowed_fields(entity))}")

    if entity == "finance" and field in TOTAL_FACTORS:
        row = _finance_factor_update(cur, target, key, field, value)
    else:
        if entity == "finance" and field in NUMERIC_FINANCE_FIELDS:
            value = decimal_text(value)
        cur.execute(
            f"UPDATE {target['table']} SET {column} = %(value)s "
            f"WHERE {target['key']} = %(key)s RETURNING {target['returning']}",
            {"value": value, "key": key},
        )
        row = fo(cur)
    if not row:
        raise NotFoundError(target["not_found"])
    return row
