from datetime import datetime
from decimal import Decimal

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()

JOB_STATUSES = (
    "Pending",
    "In Progress",
    "Completed",
    "Cannot Repair",
    "Booking Cancelled",
    "Paid",
)

EMPLOYEE_ROLES = ("owner", "technician")


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False, default="")
    email = db.Column(db.String(100))
    phone = db.Column(db.String(20))

    jobs = db.relationship("Job", backref="customer", lazy=True)

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False, default="")
    username = db.Column(db.String(50), unique=True)
    role = db.Column(db.Enum(*EMPLOYEE_ROLES, name="employee_role"), nullable=False, default="technician")
    employment_type = db.Column(db.String(20), default="Full-Time")

    jobs = db.relationship("Job", backref="employee", lazy=True)

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Job(db.Model):
    __tablename__ = "jobs"

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    assigned_employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True)
    repair_description = db.Column(db.Text, default="")
    status = db.Column(db.Enum(*JOB_STATUSES, name="job_status"), nullable=False, default="Pending")
    handover_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completion_date = db.Column(db.DateTime, nullable=True)

    invoice = db.relationship("Invoice", backref="job", uselist=False, lazy=True)


class Invoice(db.Model):
    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("jobs.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True)
    parts_cost = db.Column(db.Numeric(10, 2), default=Decimal("0.00"))
    labour_cost = db.Column(db.Numeric(10, 2), default=Decimal("0.00"))
    advance_amount = db.Column(db.Numeric(10, 2), default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(10, 2), default=Decimal("0.00"))
    warranty_eligible = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class InventoryItem(db.Model):
    __tablename__ = "inventory"

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    stock_limit = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    batches = db.relationship("InventoryBatch", backref="item", lazy=True)
    usages = db.relationship("JobUsedInventory", backref="item", lazy=True)

    @property
    def current_quantity(self) -> int:
        purchased = sum(b.quantity or 0 for b in self.batches)
        used = sum(u.quantity_used or 0 for u in self.usages)
        return purchased - used


class InventoryBatch(db.Model):
    __tablename__ = "inventory_batches"

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    cost_per_item = db.Column(db.Numeric(10, 2), nullable=False)
    purchase_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def total_amount(self) -> Decimal:
        return Decimal(str(self.cost_per_item or 0)) * (self.quantity or 0)


class JobUsedInventory(db.Model):
    __tablename__ = "job_used_inventory"

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey("jobs.id"), nullable=False)
    inventory_id = db.Column(db.Integer, db.ForeignKey("inventory.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("inventory_batches.id"), nullable=False)
    quantity_used = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Numeric(15, 2))


class Salary(db.Model):
    __tablename__ = "salaries"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False)
    payment_date = db.Column(db.DateTime, nullable=False)
    total_salary = db.Column(db.Numeric(10, 2), nullable=False)


@event.listens_for(Invoice, "before_insert")
@event.listens_for(Invoice, "before_update")
def _invoice_total(mapper, connection, target):
    # advance is a partial payment, not part of the total
    parts = Decimal(str(target.parts_cost or 0))
    labour = Decimal(str(target.labour_cost or 0))
    target.total_amount = (parts + labour).quantize(Decimal("0.01"))
