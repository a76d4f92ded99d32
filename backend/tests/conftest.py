import json
import os
import tempfile
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "phrames-test-logs"))

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from phrames.config import Settings, get_settings
from phrames.database import get_db, init_db
from phrames.models.audit import AuditLog
from phrames.models.campaign import Campaign, STATUS_ACTIVE, STATUS_INACTIVE
from phrames.models.payment import PaymentRecord, PAYMENT_PENDING
from phrames.models.user import User
from phrames.services.gateway import CashfreeClient
from phrames.services.container import ServiceContainer

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ─── Database ────────────────────────────────────────────────────────

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()


@pytest.fixture
def now():
    return NOW


# ─── Factories ───────────────────────────────────────────────────────

@pytest.fixture
def make_user(db):
    def _make(uid="user-1", **fields):
        user = User(uid=uid, email=f"{uid}@example.com", created_at=NOW, **fields)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def make_campaign(db):
    counter = {"n": 0}

    def _make(owner="user-1", active=False, **fields):
        counter["n"] += 1
        values = {
            "owner_user_id": owner,
            "campaign_name": f"Campaign {counter['n']}",
            "slug": f"campaign-{counter['n']}",
            "is_active": active,
            "status": STATUS_ACTIVE if active else STATUS_INACTIVE,
            "created_at": NOW - timedelta(days=10) + timedelta(minutes=counter["n"]),
        }
        values.update(fields)
        campaign = Campaign(**values)
        db.add(campaign)
        db.commit()
        return campaign
    return _make


@pytest.fixture
def make_payment(db):
    counter = {"n": 0}

    def _make(campaign, payer=None, plan_type="week", amount=49, status=PAYMENT_PENDING, **fields):
        counter["n"] += 1
        values = {
            "order_id": f"order_{counter['n']}",
            "campaign_id": campaign.id if isinstance(campaign, Campaign) else campaign,
            "payer_user_id": payer or (campaign.owner_user_id if isinstance(campaign, Campaign) else "user-1"),
            "plan_type": plan_type,
            "amount": amount,
            "original_amount": amount,
            "status": status,
            "created_at": NOW,
        }
        values.update(fields)
        values.setdefault("gateway_order_id", values["order_id"])
        record = PaymentRecord(**values)
        db.add(record)
        db.commit()
        return record
    return _make


@pytest.fixture
def audit_count(db):
    def _count(event_type):
        return db.query(AuditLog).filter(AuditLog.event_type == event_type).count()
    return _count


def webhook_payload(order_id, status="SUCCESS", payment_id="cf_pay_1", webhook_type=None, amount=49, message=None):
    if webhook_type is None:
        webhook_type = "PAYMENT_SUCCESS_WEBHOOK" if status == "SUCCESS" else "PAYMENT_FAILED_WEBHOOK"
    return {
        "type": webhook_type,
        "data": {
            "order": {"order_id": order_id, "order_amount": amount},
            "payment": {
                "cf_payment_id": payment_id,
                "payment_status": status,
                "payment_amount": amount,
                "payment_message": message,
            },
        },
    }


# ─── Gateway ─────────────────────────────────────────────────────────

@pytest.fixture
def gateway_requests():
    return []


@pytest.fixture
def gateway(gateway_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        gateway_requests.append(request)
        body = json.loads(request.content)
        return httpx.Response(200, json={
            "cf_order_id": f"cf_{body['order_id']}",
            "order_id": body["order_id"],
            "payment_session_id": f"session_{body['order_id']}",
            "order_status": "ACTIVE",
        })

    client = CashfreeClient(
        client_id="test-client",
        client_secret="test-secret",
        base_url="https://sandbox.cashfree.com",
        transport=httpx.MockTransport(handler),
    )
    yield client
    client.close()


# ─── API ─────────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def container(settings, gateway):
    return ServiceContainer(settings=settings, gateway=gateway)


@pytest.fixture
def client(db, container):
    from phrames.main import create_app

    app = create_app(container)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def signed_settings():
    return Settings(WEBHOOK_VERIFY_SIGNATURE=True, CASHFREE_CLIENT_SECRET="webhook-secret")
