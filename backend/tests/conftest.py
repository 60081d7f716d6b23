"""
Pytest 配置和共享 fixtures
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import json
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from villa.database import Base, configure_sqlite, get_db
from villa.models import ontology  # noqa
from villa.models.ontology import Employee, EmployeeRole
from villa.models.schemas import CustomerCreate
from villa.security.auth import get_password_hash, create_access_token
from villa.services.customer_service import CustomerService
from villa.services.event_bus import event_bus
from villa.services.event_handlers import event_handlers
from villa.main import app


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    configure_sqlite(engine, wal=False)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clean_event_bus():
    """每个测试使用干净的事件总线"""
    event_bus.clear_subscribers()
    event_bus.clear_history()
    yield
    event_handlers.unregister_handlers()
    event_bus.clear_subscribers()
    event_bus.clear_history()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ============== 认证相关 Fixtures ==============

def _create_employee(db_session, username, role, permissions=None):
    employee = Employee(
        username=username,
        password_hash=get_password_hash("123456"),
        name=username.title(),
        email=f"{username}@example.com",
        role=role,
        permissions=json.dumps(permissions) if permissions is not None else None,
        is_active=True
    )
    db_session.add(employee)
    db_session.commit()
    db_session.refresh(employee)
    return employee


@pytest.fixture
def admin_user(db_session):
    return _create_employee(db_session, "admin", EmployeeRole.ADMIN)


@pytest.fixture
def admin_token(admin_user):
    return create_access_token(admin_user.id, admin_user.role)


@pytest.fixture
def staff_token(db_session):
    """前台员工：只有查看权限"""
    staff = _create_employee(db_session, "front1", EmployeeRole.STAFF)
    return create_access_token(staff.id, staff.role)


@pytest.fixture
def manager_token(db_session):
    manager = _create_employee(db_session, "manager", EmployeeRole.MANAGER)
    return create_access_token(manager.id, manager.role)


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def staff_headers(staff_token):
    return {"Authorization": f"Bearer {staff_token}"}


@pytest.fixture
def manager_headers(manager_token):
    return {"Authorization": f"Bearer {manager_token}"}


# ============== 实体相关 Fixtures ==============

def customer_payload(**overrides) -> dict:
    data = {
        "name": "Asha Patel",
        "phone": "9876543210",
        "email": "asha@example.com",
        "id_type": "Aadhar",
        "id_value": "1234-5678-9012",
        "check_in": date(2024, 5, 10),
        "check_out": date(2024, 5, 15),
        "stay_charges": Decimal("10000"),
    }
    data.update(overrides)
    return data


@pytest.fixture
def customer_service(db_session):
    return CustomerService(db_session)


@pytest.fixture
def booked_customer(customer_service):
    """2024-05-10..15 的住宿，住宿费 10000"""
    return customer_service.create_customer(CustomerCreate(**customer_payload()))


@pytest.fixture
def make_customer_data():
    """返回构造客户创建数据的函数"""
    return customer_payload


@pytest.fixture
def make_customer_json():
    """返回构造 JSON 请求体的函数（日期、金额转为字符串）"""
    def _make(**overrides):
        return {
            key: value.isoformat() if isinstance(value, date) else str(value) if isinstance(value, Decimal) else value
            for key, value in customer_payload(**overrides).items()
        }
    return _make


@pytest.fixture
def employee_headers(db_session):
    """按角色或显式权限列表创建员工并返回认证头"""
    def _make(username, role=EmployeeRole.STAFF, permissions=None):
        employee = _create_employee(db_session, username, role, permissions)
        token = create_access_token(employee.id, employee.role)
        return {"Authorization": f"Bearer {token}"}
    return _make
