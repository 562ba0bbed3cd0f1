import psycopg2.errors
import pytest

ALUNO = {"matricula": "S1", "nome": "Ana Souza", "email": "ana@example.com", "status": "Ativo"}


# ── students ──

def test_list_students_search(admin_client, fake_db):
    fake_db.on("SELECT * FROM lovable.pf_alunos", [ALUNO])

    res = admin_client.get("/api/students", query_string={"search": "ana"})

    assert res.status_code == 200
    assert res.get_json() == [ALUNO]
    sql, params = fake_db.statements("SELECT * FROM lovable.pf_alunos")[0]
    assert "nome ILIKE %s OR email ILIKE %s OR matricula ILIKE %s" in sql
    assert params == ["%ana%", "%ana%", "%ana%"]


def test_get_missing_student(admin_client, fake_db):
    res = admin_client.get("/api/students/NOPE")
    assert res.status_code == 404
    assert res.get_json()["error"] == "Aluno não encontrado"


def test_create_student_duplicate_matricula(admin_client, fake_db):
    fake_db.on("INSERT INTO lovable.pf_alunos", psycopg2.errors.UniqueViolation("duplicate key"))

    res = admin_client.post("/api/students", json=ALUNO)

    assert res.status_code == 409
    assert res.get_json()["error"] == "Esta matrícula já está cadastrada"


def test_comercial_can_register_students(comercial_client, fake_db):
    fake_db.on("INSERT INTO lovable.pf_alunos", [ALUNO])

    res = comercial_client.post("/api/students", json={"matricula": "S1", "nome": "Ana Souza"})

    assert res.status_code == 201
    sql, params = fake_db.statements("INSERT INTO lovable.pf_alunos")[0]
    row = dict(zip(sql.split("(", 1)[1].split(")", 1)[0].split(", "), params))
    assert row["status"] == "Ativo"
    assert row["status_financeiro"] == "INDEFINIDO"
    assert row["qtd_plantoes"] == 0


def test_create_student_requires_matricula(admin_client, fake_db):
    res = admin_client.post("/api/students", json={"nome": "Sem Matrícula"})
    assert res.status_code == 400


def test_patch_student_rejects_unknown_field(admin_client, fake_db):
    res = admin_client.patch("/api/students/S1", json={"field": "matricula", "value": "S2"})

    assert res.status_code == 400
    body = res.get_json()
    assert body["error"] == "Campo não permitido para atualização"
    assert "telefone" in body["details"]
    assert fake_db.statements() == []


def test_patch_student_field(admin_client, fake_db):
    fake_db.on("UPDATE lovable.pf_alunos SET", [dict(ALUNO, cidade="Recife")])

    res = admin_client.patch("/api/students/S1", json={"field": "cidade", "value": "Recife"})

    assert res.status_code == 200
    assert res.get_json()["cidade"] == "Recife"
    assert fake_db.commits == 1


def test_partial_put_keeps_unsent_columns(admin_client, fake_db):
    fake_db.on("UPDATE lovable.pf_alunos SET", [dict(ALUNO, nome="Ana Lima")])

    res = admin_client.put("/api/students/S1", json={"nome": "Ana Lima", "matricula": "HACK"})

    assert res.status_code == 200
    sql, params = fake_db.statements("UPDATE lovable.pf_alunos SET")[0]
    assert "SET nome = %s WHERE matricula = %s" in sql
    for column in ("status", "status_financeiro", "qtd_plantoes"):
        assert column not in sql
    assert params == ["Ana Lima", "S1"]


def test_put_without_known_columns(admin_client, fake_db):
    res = admin_client.put("/api/students/S1", json={"matricula": "S2"})
    assert res.status_code == 400
    assert fake_db.statements() == []


@pytest.mark.parametrize("payload", [{"status": None}, {"status": "Sumido"}])
def test_put_rejects_bad_status(admin_client, fake_db, payload):
    res = admin_client.put("/api/students/S1", json=dict(payload, nome="Ana"))
    assert res.status_code == 400
    assert fake_db.statements() == []


@pytest.mark.parametrize("value", ["Sumido", "", None])
def test_patch_student_status_is_checked(admin_client, fake_db, value):
    res = admin_client.patch("/api/students/S1", json={"field": "status", "value": value})

    assert res.status_code == 400
    assert "Em Onboarding" in res.get_json()["details"]
    assert fake_db.statements() == []


def test_patch_student_status(admin_client, fake_db):
    fake_db.on("UPDATE lovable.pf_alunos SET", [dict(ALUNO, status="Inativo")])

    res = admin_client.patch("/api/students/S1", json={"field": "status", "value": "Inativo"})

    assert res.status_code == 200
    assert res.get_json()["status"] == "Inativo"


def test_recount_student(admin_client, fake_db):
    fake_db.on("UPDATE lovable.pf_alunos a SET", 1)
    fake_db.on("SELECT * FROM lovable.pf_alunos", [dict(ALUNO, qtd_plantoes=2)])

    res = admin_client.post("/api/students/S1/recount")

    assert res.status_code == 200
    assert res.get_json()["qtd_plantoes"] == 2


def test_comercial_cannot_delete_students(comercial_client, fake_db):
    assert comercial_client.delete("/api/students/S1").status_code == 403


# ── classes / enrollments ──

def test_create_class(admin_client, fake_db):
    fake_db.on("INSERT INTO ci_turmas_tratamentos", [{"id": "t1", "nome": "Turma A", "status": "Aberta"}])

    res = admin_client.post("/api/classes", json={"nome": "Turma A", "instrutor": "Dr. Leia"})

    assert res.status_code == 201
    params = fake_db.statements("INSERT INTO ci_turmas_tratamentos")[0][1]
    assert params[1] == "Turma A"
    assert params[9] == "Aberta"


def test_create_class_invalid_status(admin_client, fake_db):
    res = admin_client.post("/api/classes", json={"nome": "Turma A", "status": "Talvez"})
    assert res.status_code == 400


def test_class_finance_summary(admin_client, fake_db):
    fake_db.on("SELECT * FROM ci_financeiro WHERE turma_id", [
        {"id": "f1", "tipo": "Entrada", "valor_total": "1500.00", "data": "01/03/2025"},
        {"id": "f2", "tipo": "Saída", "valor_total": "200,50", "data": "05/03/2025"},
    ])

    res = admin_client.get("/api/classes/t1/finance")

    body = res.get_json()
    assert [r["id"] for r in body["registros"]] == ["f2", "f1"]
    assert body["resumo"] == {"entradas": 1500.0, "saidas": 200.5, "saldo": 1299.5}


def test_enrollment_duplicate(admin_client, fake_db):
    fake_db.on("SELECT id FROM ci_aluno_turma", [{"id": "e1"}])

    res = admin_client.post("/api/enrollments", json={"aluno_id": "S1", "turma_id": "t1"})

    assert res.status_code == 409
    assert res.get_json()["error"] == "Aluno já está inscrito nesta turma"
    assert fake_db.statements("INSERT") == []


def test_enrollment_defaults(admin_client, fake_db):
    fake_db.on("INSERT INTO ci_aluno_turma", [{"id": "e1", "aluno_id": "S1", "turma_id": "t1", "status": "Inscrito"}])

    res = admin_client.post("/api/enrollments", json={"aluno_id": "S1", "turma_id": "t1"})

    assert res.status_code == 201
    params = fake_db.statements("INSERT INTO ci_aluno_turma")[0][1]
    assert params[1:3] == ("S1", "t1")
    assert params[4] == "Inscrito"


def test_enrollment_requires_both_ids(admin_client, fake_db):
    assert admin_client.post("/api/enrollments", json={"aluno_id": "S1"}).status_code == 400


# ── finance ──

def test_create_finance_entry_computes_total(admin_client, fake_db):
    fake_db.on("INSERT INTO ci_financeiro", [{"id": "f1", "valor_total": "37.50"}])

    res = admin_client.post("/api/finance", json={
        "categoria": "Material", "tipo": "Saída", "quantidade": "3", "valor_unitario": "12.5",
    })

    assert res.status_code == 201
    params = fake_db.statements("INSERT INTO ci_financeiro")[0][1]
    assert params[3:7] == ("3", "12.5", "37.50", "Saída")


def test_finance_entry_type_is_checked(admin_client, fake_db):
    res = admin_client.post("/api/finance", json={"categoria": "Material", "tipo": "Outro"})
    assert res.status_code == 400


def test_patch_finance_quantity_recomputes_total(admin_client, fake_db):
    fake_db.on("FOR UPDATE", [{"quantidade": "2", "valor_unitario": "12.50"}])
    fake_db.on("UPDATE ci_financeiro", [{"id": "f1", "quantidade": "4", "valor_total": "50.00"}])

    res = admin_client.patch("/api/finance/f1", json={"field": "quantidade", "value": 4})

    assert res.status_code == 200
    sql, params = fake_db.statements("UPDATE ci_financeiro")[0]
    assert "valor_total = %(total)s" in sql
    assert params == {"value": "4", "total": "50.00", "key": "f1"}
    assert fake_db.commits == 1


def test_finance_round_trip_through_the_api(admin_client, fake_db):
    fake_db.on("INSERT INTO ci_financeiro", [{"id": "f1"}])
    admin_client.post("/api/finance", json={
        "categoria": "Material", "tipo": "Saída", "quantidade": "1", "valor_unitario": "10,25",
    })
    stored = fake_db.statements("INSERT INTO ci_financeiro")[0][1]
    assert stored[3:6] == ("1", "10.25", "10.25")

    # each PATCH sees the factors the previous write stored
    fake_db.on("FOR UPDATE", [{"quantidade": stored[3], "valor_unitario": stored[4]}])
    fake_db.on("UPDATE ci_financeiro", [{"id": "f1"}])
    admin_client.patch("/api/finance/f1", json={"field": "quantidade", "value": "2"})
    fake_db.on("FOR UPDATE", [{"quantidade": "2", "valor_unitario": stored[4]}])
    fake_db.on("UPDATE ci_financeiro", [{"id": "f1"}])
    admin_client.patch("/api/finance/f1", json={"field": "valor_unitario", "value": "3,5"})

    totals = [params["total"] for _, params in fake_db.statements("UPDATE ci_financeiro")]
    assert totals == ["20.50", "7.00"]


def test_finance_put_stores_plain_decimals_and_derives_total(admin_client, fake_db):
    fake_db.on("UPDATE ci_financeiro", [{"id": "f1"}])

    res = admin_client.put("/api/finance/f1", json={
        "categoria": "Material", "tipo": "Entrada", "quantidade": "2", "valor_unitario": "1.000,50",
    })

    assert res.status_code == 200
    params = fake_db.statements("UPDATE ci_financeiro")[0][1]
    assert params[2:5] == ("2", "1000.50", "2001.00")


def test_finance_rejects_non_numeric_amounts(admin_client, fake_db):
    res = admin_client.post("/api/finance", json={
        "categoria": "Material", "tipo": "Saída", "quantidade": "três", "valor_unitario": "1",
    })
    assert res.status_code == 400
    assert fake_db.statements("INSERT") == []


def test_finance_summary_with_date_range(admin_client, fake_db):
    fake_db.on("SELECT tipo, valor_total, data FROM ci_financeiro", [
        {"tipo": "Entrada", "valor_total": "100", "data": "01/03/2025"},
        {"tipo": "Entrada", "valor_total": "999", "data": "01/01/2025"},
        {"tipo": "Saída", "valor_total": "40", "data": "10/03/2025"},
        {"tipo": "Saída", "valor_total": "5", "data": None},
    ])

    res = admin_client.get("/api/finance/resumo", query_string={
        "data_inicio": "01/03/2025", "data_fim": "31/03/2025",
    })

    assert res.get_json() == {"entradas": 100.0, "saidas": 40.0, "saldo": 60.0}


def test_finance_list_filters(admin_client, fake_db):
    fake_db.on("SELECT * FROM ci_financeiro", [])

    admin_client.get("/api/finance", query_string={"tipo": "todos", "turma_id": "sem_turma"})

    sql, params = fake_db.statements("SELECT * FROM ci_financeiro")[0]
    assert "turma_id IS NULL" in sql
    assert "tipo =" not in sql
    assert params == []


def test_finance_is_admin_only(comercial_client, fake_db):
    assert comercial_client.get("/api/finance").status_code == 403


# ── feedback / analytics ──

def test_feedback_sorted_newest_first(admin_client, fake_db):
    fake_db.on("SELECT * FROM lovable.pf_feedback", [
        {"id": 1, "data": "01/02/2025"},
        {"id": 2, "data": "15/03/2025"},
    ])

    res = admin_client.get("/api/feedback")

    assert [f["id"] for f in res.get_json()] == [2, 1]


def test_analytics_dashboard(admin_client, fake_db):
    fake_db.on("SELECT * FROM lovable.pf_alunos", [ALUNO])
    fake_db.on("SELECT * FROM lovable.pf_plantoes", [
        {"matricula": "S1", "data_plantao": "10/03/2025", "status": "Realizado"},
    ])

    res = admin_client.get("/api/analytics", query_string={
        "start": "2025-03-01", "end": "2025-03-31", "granularity": "month",
    })

    assert res.status_code == 200
    body = res.get_json()
    assert [s["value"] for s in body["funnel"]] == [1, 1, 1, 0]
    assert body["scheduling_trend"][0]["name"] == "03/2025"
    assert body["range"]["start"] == "01/03/2025"


def test_analytics_rejects_bad_params(admin_client, fake_db):
    assert admin_client.get("/api/analytics?granularity=day").status_code == 400
    assert admin_client.get("/api/analytics?start=10/03/2025").status_code == 400
    assert admin_client.get("/api/analytics?start=2025-03-10&end=2025-03-01").status_code == 400
