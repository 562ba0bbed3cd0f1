import pytest

from errors import InvalidFieldError, NotFoundError, ValidationError
from fields import ENTITIES, allowed_fields, update_field
from formatters import calculate_total


@pytest.mark.parametrize("entity", sorted(ENTITIES))
@pytest.mark.parametrize("field", ["id", "matricula", "nome; DROP TABLE x", "", None])
def test_fields_outside_allow_list_are_rejected(cur, entity, field):
    with pytest.raises(InvalidFieldError) as exc:
        update_field(cur, entity, "k1", field, "x")

    assert exc.value.status_code == 400
    assert exc.value.message == "Campo não permitido para atualização"
    assert cur.executed == []


def test_allowed_fields_are_listed_in_error_details(cur):
    with pytest.raises(InvalidFieldError) as exc:
        update_field(cur, "finance", "f1", "id", "x")
    for field in allowed_fields("finance"):
        assert field in exc.value.details


def test_student_field_update(cur):
    cur.on("UPDATE lovable.pf_alunos SET", [{"matricula": "S1", "telefone": "11988887777"}])

    aluno = update_field(cur, "students", "S1", "telefone", "11988887777")

    assert aluno["telefone"] == "11988887777"
    sql, params = cur.executed[0]
    assert "SET telefone = %(value)s WHERE matricula = %(key)s" in sql
    assert params == {"value": "11988887777", "key": "S1"}


def test_class_fields_map_to_columns(cur):
    cur.on("UPDATE ci_turmas_tratamentos", [{"id": "t1", "nome": "Turma A"}])
    cur.on("UPDATE ci_turmas_tratamentos", [{"id": "t1", "local": "Sala 2"}])

    update_field(cur, "classes", "t1", "nome", "Turma A")
    update_field(cur, "classes", "t1", "local", "Sala 2")

    assert "SET nome_turma = %(value)s" in cur.executed[0][0]
    assert 'SET "local" = %(value)s' in cur.executed[1][0]
    assert "nome_turma AS nome" in cur.executed[0][0]


def test_update_missing_row(cur):
    with pytest.raises(NotFoundError) as exc:
        update_field(cur, "classes", "missing", "status", "Aberta")
    assert exc.value.message == "Turma não encontrada"


def stored_entry(cur, quantidade, valor_unitario):
    cur.on("FOR UPDATE", [{"quantidade": quantidade, "valor_unitario": valor_unitario}])
    cur.on("UPDATE ci_financeiro", [{"id": "f1"}])


@pytest.mark.parametrize("field,value,expected", [
    ("quantidade", 3, {"value": "3", "total": "30.75", "key": "f1"}),
    ("valor_unitario", "7,50", {"value": "7.50", "total": "15.00", "key": "f1"}),
])
def test_finance_factor_update_recomputes_total_from_stored_factor(cur, field, value, expected):
    stored_entry(cur, "2", "10.25")

    update_field(cur, "finance", "f1", field, value)

    lock_sql, lock_params = cur.executed[0]
    assert lock_sql.endswith("WHERE id = %s FOR UPDATE")
    assert lock_params == ("f1",)
    sql, params = cur.executed[1]
    assert f"SET {field} = %(value)s, valor_total = %(total)s" in sql
    assert params == expected


def test_finance_total_is_computed_from_legacy_comma_factors(cur):
    stored_entry(cur, "2", "10,25")

    update_field(cur, "finance", "f1", "quantidade", "4")

    assert cur.statements("UPDATE ci_financeiro")[0][1]["total"] == "41.00"


def test_finance_factor_round_trip_matches_direct_product(cur):
    # quantity first, then unit price; each update reads the row the previous one wrote
    stored_entry(cur, "1", "10.00")
    update_field(cur, "finance", "f1", "quantidade", "3")
    stored_entry(cur, "3", "10.00")
    update_field(cur, "finance", "f1", "valor_unitario", "12,5")

    first, second = [params for _, params in cur.statements("UPDATE ci_financeiro")]
    assert first["total"] == "30.00"
    assert second == {"value": "12.5", "total": "37.50", "key": "f1"}
    assert second["total"] == calculate_total("3", "12.5")


def test_finance_factor_update_missing_entry(cur):
    with pytest.raises(NotFoundError):
        update_field(cur, "finance", "missing", "quantidade", "2")
    assert cur.statements("UPDATE ci_financeiro") == []


@pytest.mark.parametrize("value", ["", None, "dois"])
def test_finance_factor_update_needs_a_number(cur, value):
    with pytest.raises(ValidationError):
        update_field(cur, "finance", "f1", "quantidade", value)
    assert cur.statements("UPDATE ci_financeiro") == []


def test_finance_other_fields_leave_total_alone(cur):
    cur.on("UPDATE ci_financeiro", [{"id": "f1"}])

    update_field(cur, "finance", "f1", "descricao", "Luvas")

    assert "valor_total" not in cur.executed[0][0]
    assert cur.statements("FOR UPDATE") == []


def test_finance_total_edit_is_stored_as_plain_decimal(cur):
    cur.on("UPDATE ci_financeiro", [{"id": "f1"}])

    update_field(cur, "finance", "f1", "valor_total", "R$ 1.234,50")

    assert cur.executed[0][1] == {"value": "1234.50", "key": "f1"}
