import os

# Override env vars before the package reads its settings
os.environ["ERP_DATABASE_URL"] = "sqlite://"
os.environ["ERP_JWT_SECRET"] = "test-secret"
os.environ["ERP_ENFORCE_TENANT_SCOPE"] = "true"
os.environ["SMTP_EMAIL"] = ""
os.environ["SMTP_PASSWORD"] = ""
os.environ["ERP_SEED_ADMIN_EMAIL"] = ""
os.environ["ERP_SEED_ADMIN_PASSWORD"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from erp_core.app import app
from erp_core.config import Settings, get_settings
from erp_core.database import Base, get_db_session
from erp_core.models import Account, AccountRole, Branch, Institution, RecordStatus, Student
from erp_core.security import hash_password

PASSWORD = "Secret@123"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", enforce_tenant_scope=True, smtp_username="", smtp_password="")


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db, settings):
    def override_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = override_db
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def tenant(db):
    """One institution with two branches."""
    institution = Institution(name="Green Valley Schools")
    db.add(institution)
    db.commit()
    main = Branch(institution_id=institution.id, name="Main Campus")
    east = Branch(institution_id=institution.id, name="East Campus")
    db.add_all([main, east])
    db.commit()
    return {"institution": institution, "branch": main, "other_branch": east}


@pytest.fixture
def make_account(db):
    def _make(
        email,
        role=AccountRole.STAFF,
        password=PASSWORD,
        status=RecordStatus.ACTIVE,
        institution_id=None,
        branch_id=None,
        name=None,
    ):
        account = Account(
            name=name or email.split("@")[0].title(),
            email=email,
            password_hash=hash_password(password),
            role=role,
            status=status,
            institution_id=institution_id,
            branch_id=branch_id,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def make_student(db):
    def _make(
        registration_number,
        phone="9000000000",
        class_name="5",
        status=RecordStatus.ACTIVE,
        institution_id=None,
        branch_id=None,
        parent_id=None,
        user_id=None,
        name=None,
    ):
        student = Student(
            name=name or f"Student {registration_number}",
            registration_number=registration_number,
            phone=phone,
            class_name=class_name,
            status=status,
            institution_id=institution_id,
            branch_id=branch_id,
            parent_id=parent_id,
            user_id=user_id,
        )
        db.add(student)
        db.commit()
        db.refresh(student)
        return student

    return _make


@pytest.fixture
def login(client):
    """Log in through the API and return ready-to-use request headers."""

    def _login(**payload):
        resp = client.post("/auth/login", json=payload)
        assert resp.status_code == 200, resp.json()
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    return _login
