from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app import create_app
from models import (
    db,
    Customer, Employee, Invoice, InventoryBatch, InventoryItem,
    Job, JobUsedInventory, Salary,
)

TODAY = date(2026, 10, 18)


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SECRET_KEY": "test",
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def owner_client(client):
    r = client.post("/api/login", json={"username": "admin", "password": "password"})
    assert r.status_code == 200
    return client


@pytest.fixture
def shop(app):
    """A small shop: three customers, two technicians, October 2026 trading."""
    nimal = Customer(first_name="Nimal", last_name="Perera", email="nimal@example.com")
    kamal = Customer(first_name="Kamal", last_name="Silva", email="kamal@example.com")
    sunil = Customer(first_name="Sunil", last_name="Fernando")
    owner = Employee(first_name="Anura", last_name="Jayasinghe", username="anura", role="owner")
    ruwan = Employee(first_name="Ruwan", last_name="Kumara", username="ruwan", role="technician")
    saman = Employee(first_name="Saman", last_name="Dias", username="saman", role="technician")
    db.session.add_all([nimal, kamal, sunil, owner, ruwan, saman])
    db.session.flush()

    j1 = Job(customer_id=nimal.id, assigned_employee_id=ruwan.id, repair_description="Screen replacement",
             status="Completed", handover_date=datetime(2026, 10, 2, 9), completion_date=datetime(2026, 10, 4, 9))
    j2 = Job(customer_id=nimal.id, assigned_employee_id=ruwan.id, repair_description="Battery replacement",
             status="Completed", handover_date=datetime(2026, 10, 5, 9), completion_date=datetime(2026, 10, 11, 9))
    j3 = Job(customer_id=kamal.id, assigned_employee_id=saman.id, repair_description="Screen replacement",
             status="Pending", handover_date=datetime(2026, 10, 7, 9))
    j4 = Job(customer_id=nimal.id, assigned_employee_id=saman.id, repair_description="Charging port",
             status="In Progress", handover_date=datetime(2026, 10, 9, 9))
    j5 = Job(customer_id=nimal.id, assigned_employee_id=ruwan.id, repair_description="Screen replacement",
             status="Completed", handover_date=datetime(2026, 9, 10, 9), completion_date=datetime(2026, 9, 12, 9))
    db.session.add_all([j1, j2, j3, j4, j5])
    db.session.flush()

    db.session.add_all([
        Invoice(job_id=j1.id, customer_id=nimal.id, owner_id=owner.id, parts_cost=Decimal("1000.00"),
                labour_cost=Decimal("500.00"), advance_amount=Decimal("200.00"), created_at=datetime(2026, 10, 4, 12)),
        Invoice(job_id=j2.id, customer_id=nimal.id, owner_id=owner.id, parts_cost=Decimal("2000.00"),
                labour_cost=Decimal("1000.00"), created_at=datetime(2026, 10, 11, 12)),
        Invoice(job_id=j5.id, customer_id=nimal.id, owner_id=owner.id, parts_cost=Decimal("1500.00"),
                labour_cost=Decimal("500.00"), created_at=datetime(2026, 9, 12, 12)),
    ])

    lcd = InventoryItem(product_name="LCD Panel", description="6.1 inch", stock_limit=5)
    battery = InventoryItem(product_name="Battery", description="3000mAh", stock_limit=2)
    port = InventoryItem(product_name="Charging Port", description="USB-C", stock_limit=2)
    db.session.add_all([lcd, battery, port])
    db.session.flush()

    lcd_batch = InventoryBatch(inventory_id=lcd.id, quantity=10, cost_per_item=Decimal("200.00"),
                               purchase_date=datetime(2026, 10, 1, 10))
    battery_batch = InventoryBatch(inventory_id=battery.id, quantity=4, cost_per_item=Decimal("500.00"),
                                   purchase_date=datetime(2026, 9, 20, 10))
    port_batch = InventoryBatch(inventory_id=port.id, quantity=10, cost_per_item=Decimal("50.00"),
                                purchase_date=datetime(2026, 10, 3, 10))
    db.session.add_all([lcd_batch, battery_batch, port_batch])
    db.session.flush()

    db.session.add_all([
        JobUsedInventory(job_id=j1.id, inventory_id=lcd.id, batch_id=lcd_batch.id, quantity_used=7),
        JobUsedInventory(job_id=j2.id, inventory_id=battery.id, batch_id=battery_batch.id, quantity_used=2),
        JobUsedInventory(job_id=j5.id, inventory_id=battery.id, batch_id=battery_batch.id, quantity_used=2),
        Salary(employee_id=ruwan.id, payment_date=datetime(2026, 10, 25), total_salary=Decimal("1000.00")),
        Salary(employee_id=ruwan.id, payment_date=datetime(2026, 9, 25), total_salary=Decimal("900.00")),
    ])
    db.session.commit()

    return SimpleNamespace(
        customers=(nimal, kamal, sunil),
        owner=owner, ruwan=ruwan, saman=saman,
        jobs=(j1, j2, j3, j4, j5),
        items=(lcd, battery, port),
    )
