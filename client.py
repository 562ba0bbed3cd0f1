"""
HTTP client for the admin API.

``ApiClient`` wraps one ``requests.Session`` and exposes one method per
endpoint. Lists are kept in per-entity ``EntityCache`` objects owned by the
client. A write first applies an optimistic overlay to the cached lists; if
the server rejects it the overlay is rolled back, and if it succeeds the
affected caches are invalidated so the next read refetches.
"""

import logging
import time

import requests

import analytics

logger = logging.getLogger(__name__)

CONNECTION_ERROR = "Não foi possível conectar ao servidor. Verifique sua conexão."

ENTITIES = ("students", "classes", "enrollments", "finance", "shifts", "attempts", "after", "feedback")


class ApiError(Exception):
    def __init__(self, message, status=None, details=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


def path_date(value):
    """dd/mm/yyyy -> dd-mm-yyyy so it fits in one URL segment."""
    return (value or "").replace("/", "-")


class EntityCache:
    """Fetched lists of one entity, keyed by the query params used to fetch them."""

    def __init__(self, name):
        self.name = name
        self._entries = {}

    @staticmethod
    def _key(params):
        return tuple(sorted((k, v) for k, v in (params or {}).items() if v not in (None, "")))

    def get(self, params=None):
        return self._entries.get(self._key(params))

    def set(self, params, rows):
        self._entries[self._key(params)] = rows

    def __contains__(self, params):
        return self._key(params) in self._entries

    def __len__(self):
        return len(self._entries)

    def invalidate(self):
        self._entries = {}

    def apply_overlay(self, apply):
        """Replace every cached list with ``apply(list)``; returns a snapshot for ``restore``."""
        snapshot = dict(self._entries)
        self._entries = {key: apply(list(rows)) for key, rows in self._entries.items()}
        return snapshot

    def restore(self, snapshot):
        self._entries = snapshot


# overlay builders; they never modify the cached row dicts in place

def _append(row):
    return lambda rows: rows + [dict(row)]


def _remove(match):
    return lambda rows: [r for r in rows if not match(r)]


def _patch(match, changes):
    return lambda rows: [dict(r, **changes) if match(r) else r for r in rows]


def _by(**fields):
    return lambda row: all(row.get(k) == v for k, v in fields.items())


class ApiClient:
    def __init__(self, base_url, session=None, timeout=10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.caches = {name: EntityCache(name) for name in ENTITIES}

    # ── transport ──

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("%s %s falhou: %s", method, url, e)
            raise ApiError(CONNECTION_ERROR) from e

        logger.debug("%s %s -> %s (%.0fms)", method, url, response.status_code, (time.monotonic() - start) * 1000)
        if not response.ok:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("error") if isinstance(body, dict) else None
            details = body.get("details") if isinstance(body, dict) else None
            raise ApiError(message or f"HTTP error! status: {response.status_code}", response.status_code, details)
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("Resposta inválida do servidor", response.status_code) from e

    def _list(self, entity, path, params=None):
        cache = self.caches[entity]
        if params in cache:
            return cache.get(params)
        rows = self._request("GET", path, params={k: v for k, v in (params or {}).items() if v not in (None, "")})
        cache.set(params, rows)
        return rows

    def _mutate(self, method, path, invalidate, overlay=None, **kwargs):
        snapshots = {name: self.caches[name].apply_overlay(apply) for name, apply in (overlay or {}).items()}
        try:
            result = self._request(method, path, **kwargs)
        except Exception as e:
            for name, snapshot in snapshots.items():
                self.caches[name].restore(snapshot)
            # the server accepted the write but its reply was unreadable
            if isinstance(e, ApiError) and e.status is not None and e.status < 400:
                self._invalidate(invalidate)
            raise
        self._invalidate(invalidate)
        return result

    def _invalidate(self, names):
        for name in names:
            self.caches[name].invalidate()

    # ── auth / health ──

    def health(self):
        return self._request("GET", "/health")

    def login(self, username, password):
        return self._request("POST", "/auth/login", json={"username": username, "password": password})

    def logout(self):
        return self._request("POST", "/auth/logout")

    def session_info(self):
        return self._request("GET", "/session")

    # ── students ──

    def list_students(self, search=None, status=None):
        return self._list("students", "/students", {"search": search, "status": status})

    def get_student(self, matricula):
        return self._request("GET", f"/students/{matricula}")

    def create_student(self, data):
        return self._mutate("POST", "/students", ["students"], {"students": _append(data)}, json=data)

    def update_student(self, matricula, data):
        return self._mutate("PUT", f"/students/{matricula}", ["students"],
                            {"students": _patch(_by(matricula=matricula), data)}, json=data)

    def update_student_field(self, matricula, field, value):
        return self._mutate("PATCH", f"/students/{matricula}", ["students"],
                            {"students": _patch(_by(matricula=matricula), {field: value})},
                            json={"field": field, "value": value})

    def delete_student(self, matricula):
        return self._mutate("DELETE", f"/students/{matricula}", ["students", "enrollments"],
                            {"students": _remove(_by(matricula=matricula))})

    def student_classes(self, matricula):
        return self._request("GET", f"/students/{matricula}/classes")

    # ── classes ──

    def list_classes(self, search=None, status=None):
        return self._list("classes", "/classes", {"search": search, "status": status})

    def get_class(self, turma_id):
        return self._request("GET", f"/classes/{turma_id}")

    def create_class(self, data):
        return self._mutate("POST", "/classes", ["classes"], json=data)

    def update_class(self, turma_id, data):
        return self._mutate("PUT", f"/classes/{turma_id}", ["classes"],
                            {"classes": _patch(_by(id=turma_id), data)}, json=data)

    def update_class_field(self, turma_id, field, value):
        return self._mutate("PATCH", f"/classes/{turma_id}", ["classes"],
                            {"classes": _patch(_by(id=turma_id), {field: value})},
                            json={"field": field, "value": value})

    def delete_class(self, turma_id):
        return self._mutate("DELETE", f"/classes/{turma_id}", ["classes", "enrollments"],
                            {"classes": _remove(_by(id=turma_id))})

    def class_students(self, turma_id):
        return self._request("GET", f"/classes/{turma_id}/students")

    def class_finance(self, turma_id):
        return self._request("GET", f"/classes/{turma_id}/finance")

    # ── enrollments ──

    def list_enrollments(self):
        return self._list("enrollments", "/enrollments")

    def get_enrollment(self, inscricao_id):
        return self._request("GET", f"/enrollments/{inscricao_id}")

    def create_enrollment(self, aluno_id, turma_id, **extra):
        data = {"aluno_id": aluno_id, "turma_id": turma_id, **extra}
        return self._mutate("POST", "/enrollments", ["enrollments"], json=data)

    def update_enrollment(self, inscricao_id, data):
        return self._mutate("PUT", f"/enrollments/{inscricao_id}", ["enrollments"],
                            {"enrollments": _patch(_by(id=inscricao_id), data)}, json=data)

    def delete_enrollment(self, inscricao_id):
        return self._mutate("DELETE", f"/enrollments/{inscricao_id}", ["enrollments"],
                            {"enrollments": _remove(_by(id=inscricao_id))})

    def student_enrollments(self, aluno_id):
        return self._request("GET", f"/enrollments/student/{aluno_id}")

    def class_enrollments(self, turma_id):
        return self._request("GET", f"/enrollments/class/{turma_id}")

    # ── finance ──

    def list_finance(self, search=None, tipo=None, turma_id=None):
        return self._list("finance", "/finance", {"search": search, "tipo": tipo, "turma_id": turma_id})

    def finance_summary(self, turma_id=None, data_inicio=None, data_fim=None):
        params = {"turma_id": turma_id, "data_inicio": data_inicio, "data_fim": data_fim}
        return self._request("GET", "/finance/resumo", params={k: v for k, v in params.items() if v})

    def finance_by_type(self, tipo):
        return self._request("GET", f"/finance/type/{tipo}")

    def get_finance(self, registro_id):
        return self._request("GET", f"/finance/{registro_id}")

    def create_finance(self, data):
        return self._mutate("POST", "/finance", ["finance"], json=data)

    def update_finance(self, registro_id, data):
        return self._mutate("PUT", f"/finance/{registro_id}", ["finance"],
                            {"finance": _patch(_by(id=registro_id), data)}, json=data)

    def update_finance_field(self, registro_id, field, value):
        return self._mutate("PATCH", f"/finance/{registro_id}", ["finance"],
                            {"finance": _patch(_by(id=registro_id), {field: value})},
                            json={"field": field, "value": value})

    def delete_finance(self, registro_id):
        return self._mutate("DELETE", f"/finance/{registro_id}", ["finance"],
                            {"finance": _remove(_by(id=registro_id))})

    # ── shifts ──

    def list_shifts(self, status=None, matricula=None, data_plantao=None):
        return self._list("shifts", "/shifts", {"status": status, "matricula": matricula, "data_plantao": data_plantao})

    def create_shift(self, matricula, data_plantao, status=None):
        data = {"matricula": matricula, "data_plantao": data_plantao}
        if status:
            data["status"] = status
        pending = dict(data, status=status or "Em Aberto")
        return self._mutate("POST", "/shifts", ["shifts", "students"], {"shifts": _append(pending)}, json=data)

    def update_shift_status(self, matricula, data_plantao, status):
        return self._mutate("PUT", f"/shifts/{matricula}/{path_date(data_plantao)}", ["shifts"],
                            {"shifts": _patch(_by(matricula=matricula, data_plantao=data_plantao), {"status": status})},
                            json={"status": status})

    def delete_shift(self, matricula, data_plantao):
        return self._mutate("DELETE", f"/shifts/{matricula}/{path_date(data_plantao)}", ["shifts", "students"],
                            {"shifts": _remove(_by(matricula=matricula, data_plantao=data_plantao))})

    # ── attempts ──

    def list_attempts(self, matricula=None):
        return self._list("attempts", "/attempts", {"matricula": matricula})

    def count_attempts(self, matricula):
        return self._request("GET", f"/attempts/count/{matricula}")["count"]

    def create_attempt(self, matricula, data_possivel_plantao, data_que_conseguiu=None):
        data = {"matricula": matricula, "data_possivel_plantao": data_possivel_plantao}
        if data_que_conseguiu:
            data["data_que_conseguiu"] = data_que_conseguiu
        return self._mutate("POST", "/attempts", ["attempts", "students"], {"attempts": _append(data)}, json=data)

    def delete_attempt(self, matricula, data_tentativa, data_possivel_plantao):
        path = f"/attempts/{matricula}/{path_date(data_tentativa)}/{path_date(data_possivel_plantao)}"
        match = _by(matricula=matricula, data_tentativa=data_tentativa, data_possivel_plantao=data_possivel_plantao)
        return self._mutate("DELETE", path, ["attempts", "students"], {"attempts": _remove(match)})

    # ── after-shift ──

    def list_after(self, matricula=None):
        return self._list("after", "/after-shift", {"matricula": matricula})

    def get_after(self, matricula, data_plantao):
        return self._request("GET", f"/after-shift/{matricula}/{path_date(data_plantao)}")

    def create_after(self, data):
        match = _by(matricula=data.get("matricula"), data_plantao=data.get("data_plantao"))
        attended = data.get("comparecimento", True) is not False
        overlay = {
            "after": _append(data),
            "shifts": _patch(match, {"status": "Realizado" if attended else "Cancelado"}),
        }
        return self._mutate("POST", "/after-shift", ["after", "shifts"], overlay, json=data)

    def update_after(self, matricula, data_plantao, data):
        return self._mutate("PUT", f"/after-shift/{matricula}/{path_date(data_plantao)}", ["after"],
                            {"after": _patch(_by(matricula=matricula, data_plantao=data_plantao), data)}, json=data)

    def delete_after(self, matricula, data_plantao):
        match = _by(matricula=matricula, data_plantao=data_plantao)
        overlay = {"after": _remove(match), "shifts": _patch(match, {"status": "Em Aberto"})}
        return self._mutate("DELETE", f"/after-shift/{matricula}/{path_date(data_plantao)}",
                            ["after", "shifts"], overlay)

    # ── feedback / analytics ──

    def list_feedback(self):
        return self._list("feedback", "/feedback")

    def dashboard(self, start=None, end=None, granularity="week"):
        """Fetch every collection (cached where possible) and aggregate locally."""
        return analytics.dashboard(
            self.list_students(),
            self.list_shifts(),
            self.list_attempts(),
            self.list_after(),
            self.list_feedback(),
            start=start,
            end=end,
            granularity=granularity,
        )
