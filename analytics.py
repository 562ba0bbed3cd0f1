"""
Dashboard aggregations.

Every function takes plain lists of row dicts, as returned by the API, and
returns new structures; the input rows are never modified. Dates on the
rows are dd/mm/yyyy text and are parsed here.
"""

import calendar
from datetime import date
from decimal import Decimal

from db import PROCEDURE_FLAGS
from formatters import format_br_date, month_key, month_label, parse_br_date, week_start

UNITS = ["1", "2", "3", "4", "5", "PA"]

PRECEPTORS = [
    "gutemberque", "candido", "joaopaulo", "anabeatriz", "leia", "caiobarros",
    "ianny", "brenner", "ian", "cleto", "humberto", "lucas", "joaopedro",
    "arthur", "walter", "fernando",
]

FINANCIAL_STATUSES = ("Adimplente", "Inadimplente", "Indefinido")


def _pct(part, whole):
    return round(part / whole * 100, 1) if whole else 0.0


def _count_status(shifts, status):
    return sum(1 for s in shifts if s.get("status") == status)


# ============================================
# KPIs
# ============================================

def funnel(students, shifts, after_forms):
    """Four stages shown as one funnel.

    Stage 1 counts students while stages 2-4 count rows, so consecutive
    stages are not the same unit.
    """
    return [
        {"name": "Cadastrados", "value": len(students)},
        {"name": "Total de Plantões Marcados", "value": len(shifts)},
        {"name": "Realizaram Plantão", "value": _count_status(shifts, "Realizado")},
        {"name": "Preencheram After", "value": len(after_forms)},
    ]


def occupancy_rate(shifts):
    realized = _count_status(shifts, "Realizado")
    return _pct(realized, realized + _count_status(shifts, "Em Aberto"))


def cancellation_rate(shifts):
    return _pct(_count_status(shifts, "Cancelado"), len(shifts))


def absenteeism_rate(after_forms):
    no_shows = sum(1 for r in after_forms if r.get("comparecimento") is False)
    return _pct(no_shows, len(after_forms))


def average_wait_days(attempts):
    """Mean |achieved - desired| in days over attempts that have both dates."""
    gaps = []
    for t in attempts:
        desired = parse_br_date(t.get("data_possivel_plantao"))
        achieved = parse_br_date(t.get("data_que_conseguiu"))
        if desired and achieved:
            gaps.append(abs((achieved - desired).days))
    return round(sum(gaps) / len(gaps), 1) if gaps else 0.0


def summary(students, shifts, attempts, after_forms):
    financial = financial_distribution(students)
    counts = {row["name"]: row["value"] for row in financial}
    top = sorted(students, key=lambda a: a.get("qtd_plantoes") or 0, reverse=True)[:5]
    return {
        "total_alunos": len(students),
        "adimplentes": counts["Adimplente"],
        "inadimplentes": counts["Inadimplente"],
        "indefinidos": counts["Indefinido"],
        "total_plantoes": len(shifts),
        "plantoes_realizados": _count_status(shifts, "Realizado"),
        "plantoes_cancelados": _count_status(shifts, "Cancelado"),
        "plantoes_abertos": _count_status(shifts, "Em Aberto"),
        "occupancy_rate": occupancy_rate(shifts),
        "cancellation_rate": cancellation_rate(shifts),
        "absenteeism_rate": absenteeism_rate(after_forms),
        "total_tentativas": len(attempts),
        "avg_wait_days": average_wait_days(attempts),
        "top_alunos": [
            {"matricula": a.get("matricula"), "nome": a.get("nome"), "qtd_plantoes": a.get("qtd_plantoes") or 0}
            for a in top
        ],
    }


# ============================================
# SERIES
# ============================================

def demand_supply_series(shifts, attempts):
    """Realized shifts by shift month vs attempts by desired month."""
    series = {}
    for s in shifts:
        if s.get("status") != "Realizado":
            continue
        key = month_key(s.get("data_plantao"))
        if key:
            series.setdefault(key, {"month": key, "realizados": 0, "tentativas": 0})["realizados"] += 1
    for t in attempts:
        key = month_key(t.get("data_possivel_plantao"))
        if key:
            series.setdefault(key, {"month": key, "realizados": 0, "tentativas": 0})["tentativas"] += 1
    return [dict(series[k], name=month_label(k)) for k in sorted(series)]


def procedure_heatmap(after_forms):
    heatmap = {flag: {unit: 0 for unit in UNITS} for flag in PROCEDURE_FLAGS}
    for record in after_forms:
        unit = record.get("uti")
        if unit not in UNITS:
            continue
        for flag in PROCEDURE_FLAGS:
            if record.get(flag) is True:
                heatmap[flag][unit] += 1
    return heatmap


def procedure_totals(after_forms):
    totals = [
        {
            "name": flag.upper().replace("_", "/", 1),
            "value": sum(1 for r in after_forms if r.get(flag) is True),
        }
        for flag in PROCEDURE_FLAGS
    ]
    return sorted(totals, key=lambda t: t["value"], reverse=True)


def _bucket(d, granularity):
    if granularity == "month":
        return d.strftime("%Y-%m")
    return week_start(d).isoformat()


def _bucket_label(key, granularity):
    if granularity == "month":
        return month_label(key)
    return "Sem " + date.fromisoformat(key).strftime("%d/%m")


def scheduling_trend(shifts, start, end, granularity="week"):
    """Scheduled and cancelled shifts per week (Sunday start) or month, within [start, end]."""
    if granularity not in ("week", "month"):
        raise ValueError(f"granularity must be 'week' or 'month', got {granularity!r}")
    buckets = {}
    for s in shifts:
        d = parse_br_date(s.get("data_plantao"))
        if not d or d < start or d > end:
            continue
        row = buckets.setdefault(_bucket(d, granularity), {"marcados": 0, "cancelamentos": 0})
        row["marcados"] += 1
        if s.get("status") == "Cancelado":
            row["cancelamentos"] += 1
    return [
        {"name": _bucket_label(k, granularity), "key": k, **buckets[k]}
        for k in sorted(buckets)
    ]


def first_shift_cohort(shifts):
    """Students bucketed by the month of their earliest realized shift."""
    first = {}
    for s in shifts:
        if s.get("status") != "Realizado":
            continue
        d = parse_br_date(s.get("data_plantao"))
        if not d:
            continue
        matricula = s.get("matricula")
        if matricula not in first or d < first[matricula]:
            first[matricula] = d

    counts = {}
    for d in first.values():
        key = d.strftime("%Y-%m")
        counts[key] = counts.get(key, 0) + 1
    return [{"name": month_label(k), "value": counts[k]} for k in sorted(counts)]


def financial_distribution(students):
    counts = dict.fromkeys(FINANCIAL_STATUSES, 0)
    for a in students:
        status = (a.get("status_financeiro") or "").upper()
        if status == "ADIMPLENTE":
            counts["Adimplente"] += 1
        elif status == "INADIMPLENTE":
            counts["Inadimplente"] += 1
        else:
            counts["Indefinido"] += 1
    return [{"name": name, "value": value} for name, value in counts.items()]


def class_activity(students):
    """Per class, students with at least one shift vs none."""
    classes = {}
    for a in students:
        row = classes.setdefault(a.get("turma") or "Sem Turma", {"Ativos": 0, "Inativos": 0})
        if (a.get("qtd_plantoes") or 0) > 0:
            row["Ativos"] += 1
        else:
            row["Inativos"] += 1
    return [{"name": name, **row} for name, row in classes.items()]


# ============================================
# FEEDBACK
# ============================================

def _is_score(value):
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool) and value > 0


def average(rows, key):
    """Mean of the positive numeric values of ``key``; zeros and blanks don't count."""
    values = [float(r.get(key)) for r in rows if _is_score(r.get(key))]
    return round(sum(values) / len(values), 1) if values else 0.0


def _preceptor_name(key):
    return key[0].upper() + key[1:].replace("paul", " Paul", 1)


def feedback_averages(feedbacks):
    preceptor_ratings = [
        {"name": _preceptor_name(p), "nota": average(feedbacks, f"{p}_nota")}
        for p in PRECEPTORS
    ]
    preceptor_counts = [
        {"name": _preceptor_name(p), "count": sum(1 for f in feedbacks if _is_score(f.get(f"{p}_nota")))}
        for p in PRECEPTORS
    ]
    return {
        "infra": [
            {"name": "Recepção", "nota": average(feedbacks, "recepcao_nota")},
            {"name": "Estacionamento", "nota": average(feedbacks, "estacionamento_nota")},
            {"name": "Rotina", "nota": average(feedbacks, "rotina_nota")},
            {"name": "Estrutura Local", "nota": average(feedbacks, "estrutura_local")},
        ],
        "satisfaction": [
            # 0-5 shown on a 0-10 scale
            {"name": "Avaliação Geral", "nota": round(average(feedbacks, "avaliacao_geral") * 2, 1)},
            {"name": "Objetivo Atingido", "nota": average(feedbacks, "objetivo_atingido")},
        ],
        "evolution": [
            {"name": "Técnicas e Proc.", "nota": average(feedbacks, "desenvolvimento_tecnico")},
            {"name": "Raciocínio Clínico", "nota": average(feedbacks, "raciocinio_clinico")},
            # 0-100% shown on a 0-5 scale
            {"name": "Tempo Ocioso", "nota": round(average(feedbacks, "tempo_ocioso_porcentagem") / 20, 1)},
        ],
        "opinion": [
            {"name": "Estrutura Física", "nota": average(feedbacks, "estrutura_local")},
            {"name": "Relação Time", "nota": average(feedbacks, "relacao_time")},
        ],
        "preceptor_ratings": sorted(
            [p for p in preceptor_ratings if p["nota"] > 0], key=lambda p: p["nota"], reverse=True
        ),
        "preceptor_counts": sorted(
            [p for p in preceptor_counts if p["count"] > 0], key=lambda p: p["count"], reverse=True
        ),
        "learning": [
            {"name": "Sim", "value": sum(1 for f in feedbacks if f.get("aprendeu_algo_novo") is True)},
            {"name": "Não", "value": sum(1 for f in feedbacks if f.get("aprendeu_algo_novo") is False)},
        ],
    }


def feedback_trend(feedbacks, start, end, granularity="week"):
    """Average overall rating (0-10) and objective reached per bucket within [start, end]."""
    if granularity not in ("week", "month"):
        raise ValueError(f"granularity must be 'week' or 'month', got {granularity!r}")
    buckets = {}
    for f in feedbacks:
        d = parse_br_date(f.get("data"))
        if not d or d < start or d > end:
            continue
        row = buckets.setdefault(_bucket(d, granularity), {"ratings": [], "objectives": []})
        if f.get("avaliacao_geral"):
            row["ratings"].append(float(f["avaliacao_geral"]) * 2)
        if f.get("objetivo_atingido"):
            row["objectives"].append(float(f["objetivo_atingido"]))

    def mean(values):
        return round(sum(values) / len(values), 1) if values else 0

    return [
        {
            "name": _bucket_label(k, granularity),
            "key": k,
            "Avaliação Geral": mean(buckets[k]["ratings"]),
            "Objetivo Atingido": mean(buckets[k]["objectives"]),
        }
        for k in sorted(buckets)
    ]


# ============================================
# DASHBOARD
# ============================================

def months_before(d, months):
    month = d.month - months
    year = d.year + (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def default_range(today=None):
    """Last six months up to today."""
    today = today or date.today()
    return months_before(today, 6), today


def dashboard(students, shifts, attempts, after_forms, feedbacks, start=None, end=None, granularity="week"):
    if start is None or end is None:
        default_start, default_end = default_range()
        start = start or default_start
        end = end or default_end
    return {
        "range": {"start": format_br_date(start), "end": format_br_date(end), "granularity": granularity},
        "summary": summary(students, shifts, attempts, after_forms),
        "funnel": funnel(students, shifts, after_forms),
        "demand_supply": demand_supply_series(shifts, attempts),
        "procedures": {
            "totals": procedure_totals(after_forms),
            "heatmap": procedure_heatmap(after_forms),
            "units": list(UNITS),
        },
        "scheduling_trend": scheduling_trend(shifts, start, end, granularity),
        "first_shift_cohort": first_shift_cohort(shifts),
        "financial_distribution": financial_distribution(students),
        "class_activity": class_activity(students),
        "feedback": feedback_averages(feedbacks),
        "feedback_trend": feedback_trend(feedbacks, start, end, granularity),
        "total_feedbacks": len(feedbacks),
    }
