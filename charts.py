"""
Chart series for report payloads.

Pure reshaping: every chart is ``{"labels": [...], "datasets": [{"label", "data"}]}``
built from numbers the report already computed.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping

import config
from metrics import parse_percent


def _series(labels, *datasets) -> Dict[str, Any]:
    return {
        "labels": [str(label) for label in labels],
        "datasets": [{"label": label, "data": list(data)} for label, data in datasets],
    }


def _money_label(name: str) -> str:
    return f"{name} ({config.CURRENCY})"


def _month_label(month: str) -> str:
    return datetime.strptime(month, "%Y-%m").strftime("%b %Y")


def _sum(values) -> float:
    return round(sum(values), 2)


def overview_charts(payload: Mapping[str, Any]) -> Dict[str, Any]:
    stats = payload["repair_statistics"]
    other = stats["total"] - stats["completed"] - stats["in_progress"] - stats["pending"]
    fin = payload["financial_metrics"]
    return {
        "repair_status": _series(
            ["Completed", "In Progress", "Pending", "Other"],
            ("Repair Status", [stats["completed"], stats["in_progress"], stats["pending"], other]),
        ),
        "top_repairs": _series(
            [r["repair_description"] for r in payload["top_repairs"]],
            ("Repair Count", [r["count"] for r in payload["top_repairs"]]),
        ),
        "top_technicians": _series(
            [t["technician_name"] for t in payload["top_technicians"]],
            ("Completed Jobs", [t["completed_jobs"] for t in payload["top_technicians"]]),
        ),
        "revenue_comparison": _series(
            ["Previous Month", "Current Month"],
            (_money_label("Revenue"), [fin["previous_month_revenue"], fin["monthly_revenue"]]),
        ),
    }


def financial_charts(payload: Mapping[str, Any]) -> Dict[str, Any]:
    summary = payload["summary"]
    expenses = payload["expense_breakdown"]
    return {
        "revenue_by_service": _series(
            [r["repair_description"] for r in payload["revenue_by_service"]],
            (_money_label("Revenue"), [r["total_revenue"] for r in payload["revenue_by_service"]]),
        ),
        "monthly_trends": _series(
            [_month_label(m["month"]) for m in payload["monthly_trends"]],
            (_money_label("Monthly Revenue"), [m["monthly_revenue"] for m in payload["monthly_trends"]]),
        ),
        "expense_breakdown": _series(
            ["Inventory", "Salaries"],
            (_money_label("Expenses"), [expenses["inventory"], expenses["salaries"]]),
        ),
        "profit": _series(
            ["Revenue", "Expenses", "Profit"],
            (_money_label("Amount"), [summary["total_revenue"], summary["total_expenses"], summary["profit"]]),
        ),
    }


def inventory_charts(payload: Mapping[str, Any]) -> Dict[str, Any]:
    summary = payload["summary"]
    items = payload["inventory_status"]
    by_status = {"In Stock": 0, "Buy Items": 0, "Out of Stock": 0}
    for item in items:
        by_status[item["stock_status"]] += 1
    purchases = payload["purchase_summary"]
    return {
        "stock_levels": _series(
            ["Low Stock", "Adequate Stock"],
            ("Items", [summary["low_stock_count"], summary["total_items"] - summary["low_stock_count"]]),
        ),
        "stock_status": _series(by_status.keys(), ("Items", by_status.values())),
        "most_used_parts": _series(
            [p["product_name"] for p in payload["most_used_parts"]],
            ("Used in Jobs", [p["used_in_jobs"] for p in payload["most_used_parts"]]),
        ),
        "purchase_summary": _series(
            [_month_label(p["month"]) for p in purchases],
            ("Units Purchased", [p["total_purchased"] for p in purchases]),
            (_money_label("Purchase Cost"), [p["total_cost"] for p in purchases]),
        ),
    }


def performance_charts(payload: Mapping[str, Any]) -> Dict[str, Any]:
    rows = payload["employee_performance"]
    by_rate = sorted(rows, key=lambda r: parse_percent(r["completion_rate"]))
    team_rate = parse_percent(payload["team_averages"]["avg_completion_rate"])
    return {
        "completion_rate": _series(
            [r["employee_name"] for r in by_rate],
            ("Completion Rate (%)", [parse_percent(r["completion_rate"]) for r in by_rate]),
            ("Team Average (%)", [team_rate for _ in by_rate]),
        ),
        "revenue": _series(
            [r["employee_name"] for r in rows],
            (_money_label("Revenue Generated"), [r["revenue_generated"] for r in rows]),
        ),
        "efficiency": _series(
            [r["employee_name"] for r in rows],
            ("Efficiency Score", [r["efficiency_score"] for r in rows]),
        ),
    }


def customer_charts(payload: Mapping[str, Any]) -> Dict[str, Any]:
    stats = payload["customer_statistics"]
    return {
        "retention": _series(
            ["Returning Customers", "One-time Customers"],
            ("Customers", [stats["returning_customers"], stats["total_customers"] - stats["returning_customers"]]),
        ),
        "common_repairs": _series(
            [r["repair_description"] for r in payload["common_repairs"]],
            ("Repair Count", [r["count"] for r in payload["common_repairs"]]),
        ),
        "top_customers": _series(
            [c["customer_name"] for c in payload["top_customers"]],
            (_money_label("Total Spent"), [c["total_spent"] for c in payload["top_customers"]]),
        ),
    }


MAPPERS = {
    "overview": overview_charts,
    "financial": financial_charts,
    "inventory": inventory_charts,
    "performance": performance_charts,
    "customer": customer_charts,
}


def chart_series(kind: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        mapper = MAPPERS[kind]
    except KeyError:
        raise ValueError(f"No charts for report kind {kind!r}")
    return mapper(payload)


def is_empty(kind: str, payload: Mapping[str, Any]) -> bool:
    """True when the report covers zero records, which is not an error."""
    if kind == "overview":
        return (payload["repair_statistics"]["total"] == 0
                and payload["financial_metrics"]["invoice_count"] == 0)
    if kind == "financial":
        return (not payload["revenue_by_service"]
                and payload["summary"]["total_expenses"] == 0)
    if kind == "inventory":
        return payload["summary"]["total_items"] == 0
    if kind == "performance":
        return all(r["assigned_jobs"] == 0 for r in payload["employee_performance"])
    if kind == "customer":
        return payload["customer_statistics"]["total_customers"] == 0
    raise ValueError(f"Unknown report kind {kind!r}")


def _data(series: Mapping[str, Any], chart: str, index: int = 0) -> List[float]:
    return series[chart]["datasets"][index]["data"]


def extract_totals(kind: str, series: Mapping[str, Any]) -> Dict[str, float]:
    """Read the summary figures back out of mapped chart series."""
    if kind == "overview":
        return {
            "total_jobs": _sum(_data(series, "repair_status")),
            "monthly_revenue": _data(series, "revenue_comparison")[1],
        }
    if kind == "financial":
        return {
            "total_revenue": _sum(_data(series, "monthly_trends")),
            "total_expenses": _sum(_data(series, "expense_breakdown")),
        }
    if kind == "inventory":
        return {
            "total_items": _sum(_data(series, "stock_levels")),
            "low_stock_count": _data(series, "stock_levels")[0],
        }
    if kind == "performance":
        return {"revenue_generated": _sum(_data(series, "revenue"))}
    if kind == "customer":
        return {
            "total_customers": _sum(_data(series, "retention")),
            "returning_customers": _data(series, "retention")[0],
        }
    raise ValueError(f"No charts for report kind {kind!r}")


def summary_totals(kind: str, payload: Mapping[str, Any]) -> Dict[str, float]:
    """The payload figures that :func:`extract_totals` must reproduce."""
    if kind == "overview":
        return {
            "total_jobs": payload["repair_statistics"]["total"],
            "monthly_revenue": payload["financial_metrics"]["monthly_revenue"],
        }
    if kind == "financial":
        return {
            "total_revenue": payload["summary"]["total_revenue"],
            "total_expenses": payload["summary"]["total_expenses"],
        }
    if kind == "inventory":
        return {
            "total_items": payload["summary"]["total_items"],
            "low_stock_count": payload["summary"]["low_stock_count"],
        }
    if kind == "performance":
        return {"revenue_generated": _sum(r["revenue_generated"] for r in payload["employee_performance"])}
    if kind == "customer":
        return {
            "total_customers": payload["customer_statistics"]["total_customers"],
            "returning_customers": payload["customer_statistics"]["returning_customers"],
        }
    raise ValueError(f"No charts for report kind {kind!r}")
