"""
Report assembly.

Each ``build_*`` function pulls the record sets for one report, runs them
through :mod:`metrics` and returns a fixed-shape, JSON-ready payload.
Database failures surface as :class:`DataUnavailableError` for the report
being built; a payload is never returned half populated.
"""

import calendar
import logging
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

import metrics
from metrics import D, money
from models import (
    Customer, Employee, Invoice, InventoryBatch, InventoryItem,
    Job, JobUsedInventory, Salary,
)

logger = logging.getLogger(__name__)

REPORT_KINDS = ("overview", "financial", "inventory", "performance", "customer")
PERIODS = ("month", "quarter", "year", "custom")

TOP_REPAIRS = 5
TOP_TECHNICIANS = 5
TOP_PARTS = 5
TOP_CUSTOMERS = 10


# ---------- Errors ----------
class ReportError(Exception):
    status_code = 500

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind

    def to_dict(self) -> Dict[str, str]:
        return {"error": str(self), "report": self.kind}


class InvalidPeriodError(ReportError):
    status_code = 400


class UnknownReportError(ReportError):
    status_code = 404

    def __init__(self, kind: str):
        super().__init__(kind, f"Unknown report: {kind}")


class DataUnavailableError(ReportError):
    status_code = 503

    def __init__(self, kind: str):
        super().__init__(kind, f"Failed to fetch {kind} report data")


@contextmanager
def fetching(kind: str):
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Record fetch failed for {kind} report: {e}")
        raise DataUnavailableError(kind) from e


# ---------- Report windows ----------
@dataclass(frozen=True)
class ReportWindow:
    period: str
    start: date
    end: date

    @property
    def start_dt(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_dt(self) -> datetime:
        # exclusive upper bound, so the end date itself is included
        return datetime.combine(self.end + timedelta(days=1), time.min)

    def as_dict(self) -> Dict[str, str]:
        return {
            "period": self.period,
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
        }


def _last_day(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _parse_date(value, kind: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise InvalidPeriodError(kind, f"Invalid date: {value!r}. Expected YYYY-MM-DD.")


def resolve_window(
    period: Optional[str] = None,
    start_date=None,
    end_date=None,
    today: Optional[date] = None,
    kind: str = "report",
) -> ReportWindow:
    today = today or date.today()
    if not period:
        period = "custom" if (start_date and end_date) else "month"
    period = period.strip().lower()

    if period == "month":
        return ReportWindow(period, today.replace(day=1), _last_day(today.year, today.month))
    if period == "quarter":
        first_month = (today.month - 1) // 3 * 3 + 1
        return ReportWindow(period, date(today.year, first_month, 1), _last_day(today.year, first_month + 2))
    if period == "year":
        return ReportWindow(period, date(today.year, 1, 1), date(today.year, 12, 31))
    if period == "custom":
        if not start_date or not end_date:
            raise InvalidPeriodError(kind, "A custom period needs both startDate and endDate.")
        start = _parse_date(start_date, kind)
        end = _parse_date(end_date, kind)
        if start > end:
            raise InvalidPeriodError(kind, "startDate must not be after endDate.")
        return ReportWindow(period, start, end)
    raise InvalidPeriodError(kind, f"Unknown period: {period!r}. Expected one of {', '.join(PERIODS)}.")


def previous_month(window: ReportWindow) -> ReportWindow:
    end = window.start - timedelta(days=1)
    return ReportWindow("month", end.replace(day=1), end)


# ---------- Queries ----------
def _jobs_between(window: ReportWindow) -> List[Job]:
    return Job.query.filter(
        Job.handover_date >= window.start_dt,
        Job.handover_date < window.end_dt,
    ).order_by(Job.handover_date.asc(), Job.id.asc()).all()


def _invoices_between(window: ReportWindow) -> List[Invoice]:
    return Invoice.query.filter(
        Invoice.created_at >= window.start_dt,
        Invoice.created_at < window.end_dt,
    ).order_by(Invoice.created_at.asc(), Invoice.id.asc()).all()


def _total(invoices) -> float:
    return float(money(sum((D(i.total_amount) for i in invoices), start=D(0))))


def _description(job: Optional[Job]) -> str:
    return ((job.repair_description if job else None) or "Unspecified").strip() or "Unspecified"


def _count_repairs(jobs, n: int) -> List[Dict[str, Any]]:
    counts = Counter(_description(j) for j in jobs)
    ranked = metrics.top_n(counts.items(), key=lambda kv: kv[1], n=n)
    return [{"repair_description": desc, "count": count} for desc, count in ranked]


# ---------- Overview ----------
def build_overview(today: Optional[date] = None) -> Dict[str, Any]:
    window = resolve_window("month", today=today, kind="overview")
    prev = previous_month(window)

    with fetching("overview"):
        jobs = _jobs_between(window)
        invoices = _invoices_between(window)
        prev_invoices = _invoices_between(prev)
        names = {e.id: e.name for e in Employee.query.all()}

    statuses = Counter(j.status for j in jobs)
    monthly_revenue = _total(invoices)
    previous_revenue = _total(prev_invoices)

    completed_by_tech = Counter(
        j.assigned_employee_id for j in jobs
        if j.status == metrics.COMPLETED and j.assigned_employee_id is not None
    )
    top_technicians = metrics.top_n(completed_by_tech.items(), key=lambda kv: kv[1], n=TOP_TECHNICIANS)

    return {
        "report_period": {
            "month": window.start.strftime("%B %Y"),
            "start_date": window.start.isoformat(),
            "end_date": window.end.isoformat(),
        },
        "repair_statistics": {
            "total": len(jobs),
            "completed": statuses["Completed"],
            "in_progress": statuses["In Progress"],
            "pending": statuses["Pending"],
            "completion_rate": metrics.format_percent(metrics.completion_rate(jobs)),
        },
        "financial_metrics": {
            "monthly_revenue": monthly_revenue,
            "invoice_count": len(invoices),
            "average_invoice": metrics.average(monthly_revenue, len(invoices)),
            "revenue_growth_percentage": metrics.revenue_growth(monthly_revenue, previous_revenue),
            "previous_month_revenue": previous_revenue,
        },
        "top_repairs": _count_repairs(jobs, TOP_REPAIRS),
        "top_technicians": [
            {"technician_name": names.get(emp_id, f"Employee {emp_id}"), "completed_jobs": count}
            for emp_id, count in top_technicians
        ],
    }


# ---------- Financial ----------
def build_financial(window: ReportWindow) -> Dict[str, Any]:
    with fetching("financial"):
        invoices = _invoices_between(window)
        descriptions = {i.id: _description(i.job) for i in invoices}
        batches = InventoryBatch.query.filter(
            InventoryBatch.purchase_date >= window.start_dt,
            InventoryBatch.purchase_date < window.end_dt,
        ).all()
        salaries = Salary.query.filter(
            Salary.payment_date >= window.start_dt,
            Salary.payment_date < window.end_dt,
        ).all()

    total_revenue = money(sum((D(i.total_amount) for i in invoices), start=D(0)))
    inventory_cost = money(sum((b.total_amount for b in batches), start=D(0)))
    salary_cost = money(sum((D(s.total_salary) for s in salaries), start=D(0)))
    total_expenses = inventory_cost + salary_cost
    profit = total_revenue - total_expenses

    by_service = defaultdict(lambda: {"invoice_count": 0, "total_revenue": D(0)})
    by_month = defaultdict(lambda: {"invoice_count": 0, "monthly_revenue": D(0)})
    for inv in invoices:
        svc = by_service[descriptions[inv.id]]
        svc["invoice_count"] += 1
        svc["total_revenue"] += D(inv.total_amount)
        month = by_month[inv.created_at.strftime("%Y-%m")]
        month["invoice_count"] += 1
        month["monthly_revenue"] += D(inv.total_amount)

    revenue_by_service = metrics.top_n(
        [
            {"repair_description": desc, "invoice_count": v["invoice_count"],
             "total_revenue": float(money(v["total_revenue"]))}
            for desc, v in by_service.items()
        ],
        key=lambda row: row["total_revenue"],
        n=len(by_service),
    )

    return {
        "report_period": window.as_dict(),
        "summary": {
            "total_revenue": float(total_revenue),
            "total_expenses": float(total_expenses),
            "profit": float(profit),
            "profit_margin": metrics.format_percent(metrics.percentage(profit, total_revenue)),
        },
        "expense_breakdown": {
            "inventory": float(inventory_cost),
            "salaries": float(salary_cost),
        },
        "revenue_by_service": revenue_by_service,
        "monthly_trends": [
            {"month": month, "invoice_count": v["invoice_count"],
             "monthly_revenue": float(money(v["monthly_revenue"]))}
            for month, v in sorted(by_month.items())
        ],
    }


# ---------- Inventory ----------
def _item_row(item: InventoryItem) -> Dict[str, Any]:
    total_purchased = sum(b.quantity or 0 for b in item.batches)
    total_cost = sum((b.total_amount for b in item.batches), start=D(0))
    current = item.current_quantity
    return {
        "inventory_id": str(item.id),
        "product_name": item.product_name,
        "description": item.description or "",
        "current_stock": current,
        "stock_limit": item.stock_limit or 0,
        "avg_unit_cost": metrics.average(total_cost, total_purchased),
        "total_purchased": total_purchased,
        "stock_status": metrics.stock_status(current, item.stock_limit),
    }


def build_inventory(today: Optional[date] = None) -> Dict[str, Any]:
    with fetching("inventory"):
        items = InventoryItem.query.order_by(InventoryItem.id.asc()).all()
        rows = [_item_row(item) for item in items]
        names = {item.id: item.product_name for item in items}
        last_updated = max((item.last_updated for item in items if item.last_updated), default=None)
        usages = JobUsedInventory.query.order_by(JobUsedInventory.id.asc()).all()
        batches = InventoryBatch.query.order_by(InventoryBatch.purchase_date.asc()).all()

    low_stock = [row for row in rows if row["stock_status"] != metrics.IN_STOCK]
    total_value = sum(
        (money(D(row["avg_unit_cost"]) * max(row["current_stock"], 0)) for row in rows),
        start=D(0),
    )

    usage_jobs = defaultdict(set)
    usage_qty = Counter()
    for u in usages:
        usage_jobs[u.inventory_id].add(u.job_id)
        usage_qty[u.inventory_id] += u.quantity_used or 0
    most_used = metrics.top_n(usage_jobs.items(), key=lambda kv: len(kv[1]), n=TOP_PARTS)

    purchases = defaultdict(lambda: {"total_purchased": 0, "total_cost": D(0)})
    for b in batches:
        month = purchases[b.purchase_date.strftime("%Y-%m")]
        month["total_purchased"] += b.quantity or 0
        month["total_cost"] += b.total_amount

    if last_updated is None:
        last_updated = datetime.combine(today or date.today(), time.min)

    return {
        "summary": {
            "total_inventory_value": float(money(total_value)),
            "total_items": len(rows),
            "low_stock_count": len(low_stock),
            "last_updated": last_updated.isoformat(),
        },
        "low_stock_items": low_stock,
        "inventory_status": rows,
        "most_used_parts": [
            {"product_name": names.get(inv_id, f"Item {inv_id}"), "used_in_jobs": len(job_ids),
             "quantity_used": usage_qty[inv_id]}
            for inv_id, job_ids in most_used
        ],
        "purchase_summary": [
            {"month": month, "total_purchased": v["total_purchased"], "total_cost": float(money(v["total_cost"]))}
            for month, v in sorted(purchases.items())
        ],
    }


# ---------- Performance ----------
def _completion_days(job: Job) -> Optional[float]:
    if not job.completion_date or not job.handover_date:
        return None
    return max((job.completion_date - job.handover_date).total_seconds(), 0) / 86400


def build_performance(window: ReportWindow) -> Dict[str, Any]:
    with fetching("performance"):
        technicians = Employee.query.filter_by(role="technician").order_by(Employee.id.asc()).all()
        jobs = _jobs_between(window)
        job_ids = [j.id for j in jobs]
        invoices = Invoice.query.filter(Invoice.job_id.in_(job_ids)).all() if job_ids else []

    jobs_by_emp = defaultdict(list)
    for j in jobs:
        jobs_by_emp[j.assigned_employee_id].append(j)
    invoices_by_job = defaultdict(list)
    for inv in invoices:
        invoices_by_job[inv.job_id].append(inv)

    rows = []
    for emp in technicians:
        assigned = jobs_by_emp.get(emp.id, [])
        completed = [j for j in assigned if j.status == metrics.COMPLETED]
        days = [d for d in (_completion_days(j) for j in completed) if d is not None]
        avg_days = (sum(days) / len(days)) if days else None
        emp_invoices = [inv for j in assigned for inv in invoices_by_job.get(j.id, [])]
        revenue = _total(emp_invoices)
        rate = metrics.completion_rate(assigned)
        rows.append({
            "employee_id": str(emp.id),
            "employee_name": emp.name,
            "role": emp.role,
            "assigned_jobs": len(assigned),
            "completed_jobs": len(completed),
            "completion_rate": metrics.format_percent(rate),
            "avg_completion_days": round(avg_days, 1) if avg_days is not None else 0.0,
            "invoices_generated": len(emp_invoices),
            "revenue_generated": revenue,
            "avg_revenue_per_job": metrics.average(revenue, len(assigned)),
            "efficiency_score": metrics.efficiency_score(rate, avg_days),
        })

    rates = [metrics.parse_percent(r["completion_rate"]) for r in rows]
    revenue_total = sum(r["revenue_generated"] for r in rows)

    return {
        "report_period": {"start_date": window.start.isoformat(), "end_date": window.end.isoformat()},
        "employee_performance": metrics.top_n(rows, key=lambda r: r["efficiency_score"], n=len(rows)),
        "team_averages": {
            "avg_completion_rate": metrics.format_percent(metrics.average(sum(rates), len(rates))),
            "avg_revenue_per_employee": metrics.average(revenue_total, len(rows)),
        },
    }


# ---------- Customer ----------
def build_customer(today: Optional[date] = None) -> Dict[str, Any]:
    with fetching("customer"):
        customers = Customer.query.order_by(Customer.id.asc()).all()
        jobs = Job.query.order_by(Job.handover_date.asc(), Job.id.asc()).all()
        invoices = Invoice.query.all()

    jobs_by_customer = defaultdict(list)
    for j in jobs:
        jobs_by_customer[j.customer_id].append(j)
    spent = defaultdict(lambda: D(0))
    for inv in invoices:
        spent[inv.customer_id] += D(inv.total_amount)

    returning = sum(1 for c in customers if len(jobs_by_customer.get(c.id, [])) > 1)

    rows = []
    for c in customers:
        visits = [j.handover_date for j in jobs_by_customer.get(c.id, []) if j.handover_date]
        rows.append({
            "id": str(c.id),
            "customer_name": c.name,
            "email": c.email or "",
            "total_jobs": len(jobs_by_customer.get(c.id, [])),
            "total_spent": float(money(spent[c.id])),
            "last_visit": max(visits).date().isoformat() if visits else None,
        })

    return {
        "customer_statistics": {
            "total_customers": len(customers),
            "returning_customers": returning,
            "retention_rate": metrics.format_percent(metrics.retention_rate(len(customers), returning)),
        },
        "top_customers": metrics.top_n(rows, key=lambda r: r["total_spent"], n=TOP_CUSTOMERS),
        "common_repairs": _count_repairs(jobs, TOP_REPAIRS),
    }


# ---------- Dispatch ----------
def assemble(kind: str, params: Optional[Mapping[str, Any]] = None, today: Optional[date] = None) -> Dict[str, Any]:
    params = params or {}
    if kind not in REPORT_KINDS:
        raise UnknownReportError(kind)

    logger.debug(f"Assembling {kind} report with {dict(params)}")
    if kind == "overview":
        return build_overview(today)
    if kind == "inventory":
        return build_inventory(today)
    if kind == "customer":
        return build_customer(today)

    window = resolve_window(
        params.get("period"),
        params.get("startDate"),
        params.get("endDate"),
        today=today,
        kind=kind,
    )
    if kind == "financial":
        return build_financial(window)
    return build_performance(window)


# ---------- Dashboard ----------
ACTIVE_EXCLUDED = ("Completed", "Paid", "Booking Cancelled")


def dashboard_stats() -> Dict[str, int]:
    with fetching("dashboard"):
        return {
            "totalCustomers": Customer.query.count(),
            "activeRepairs": Job.query.filter(Job.status.notin_(ACTIVE_EXCLUDED)).count(),
            "totalEmployees": Employee.query.count(),
            "totalInventoryItems": InventoryItem.query.count(),
        }


def repair_status_distribution() -> List[Dict[str, Any]]:
    with fetching("dashboard"):
        statuses = [j.status for j in Job.query.order_by(Job.id.asc()).all()]
    return [{"name": name, "value": count} for name, count in Counter(statuses).items()]


def revenue_summary(year: Optional[int] = None) -> Dict[str, Any]:
    year = year or date.today().year
    window = ReportWindow("year", date(year, 1, 1), date(year, 12, 31))
    with fetching("dashboard"):
        year_invoices = _invoices_between(window)
        all_invoices = Invoice.query.all()

    by_month = defaultdict(lambda: D(0))
    for inv in year_invoices:
        by_month[inv.created_at.month] += D(inv.total_amount)
    total = _total(all_invoices)
    return {
        "monthlyRevenue": [
            {"month": month, "revenue": float(money(amount))}
            for month, amount in sorted(by_month.items())
        ],
        "totalRevenue": total,
        "averageInvoice": metrics.average(total, len(all_invoices)),
    }
