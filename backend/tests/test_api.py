import asyncio
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import webhook_payload
from phrames.database import get_db
from phrames.models.campaign import Campaign
from phrames.models.payment import PaymentRecord, PAYMENT_SUCCESS
from phrames.services.container import ServiceContainer
from phrames.utils.hashing import sign_webhook
from phrames.utils.timeutil import utcnow


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["gateway"] == "configured"


class TestPayments:
    def test_initiate_requires_caller(self, client, make_campaign):
        campaign = make_campaign()
        response = client.post("/api/payments/initiate", json={"campaignId": campaign.id, "planType": "week"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}

    def test_initiate_then_webhook_activates(self, client, db, make_campaign):
        campaign = make_campaign()

        initiated = client.post(
            "/api/payments/initiate",
            json={"campaignId": campaign.id, "planType": "week"},
            headers={"user-id": "user-1"},
        )
        assert initiated.status_code == 200
        order_id = initiated.json()["orderId"]
        assert initiated.json()["paymentSessionId"] == f"session_{order_id}"

        delivered = client.post("/api/payments/webhook", json=webhook_payload(order_id))
        assert delivered.status_code == 200
        assert delivered.json()["outcome"] == "applied"
        assert delivered.json()["activated"] is True

        replay = client.post("/api/payments/webhook", json=webhook_payload(order_id))
        assert replay.status_code == 200
        assert replay.json()["outcome"] == "already_processed"

        visibility = client.get(f"/api/campaigns/{campaign.id}/visibility").json()
        assert visibility["visible"] is True
        assert visibility["planType"] == "week"

    def test_initiate_validation_error(self, client, make_campaign):
        campaign = make_campaign()
        response = client.post(
            "/api/payments/initiate",
            json={"campaignId": campaign.id, "planType": "forever"},
            headers={"user-id": "user-1"},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_initiate_is_rate_limited(self, client, make_campaign):
        campaigns = [make_campaign() for _ in range(6)]
        statuses = [
            client.post(
                "/api/payments/initiate",
                json={"campaignId": campaign.id, "planType": "week"},
                headers={"user-id": "user-1"},
            ).status_code
            for campaign in campaigns
        ]
        assert statuses[:5] == [200] * 5
        assert statuses[5] == 429

    def test_webhook_ledger_work_runs_off_the_event_loop(self, client, container, monkeypatch):
        seen = {}
        apply_webhook = container.ledger.apply_webhook

        def recording_apply(db, payload):
            try:
                asyncio.get_running_loop()
                seen["on_loop"] = True
            except RuntimeError:
                seen["on_loop"] = False
            return apply_webhook(db, payload)

        monkeypatch.setattr(container.ledger, "apply_webhook", recording_apply)

        response = client.post("/api/payments/webhook", json=webhook_payload("order_nobody"))

        assert response.status_code == 200
        assert seen == {"on_loop": False}

    def test_orphan_webhook_is_acknowledged(self, client):
        response = client.post("/api/payments/webhook", json=webhook_payload("order_nobody"))
        assert response.status_code == 200
        assert response.json()["outcome"] == "orphan"

    def test_webhook_without_order_id(self, client):
        response = client.post("/api/payments/webhook", json={"type": "PAYMENT_SUCCESS_WEBHOOK", "data": {}})
        assert response.status_code == 400

    def test_webhook_with_invalid_json(self, client):
        response = client.post(
            "/api/payments/webhook", content=b"{not json", headers={"content-type": "application/json"},
        )
        assert response.status_code == 400


class TestSignedWebhooks:
    @pytest.fixture
    def signed_client(self, db, signed_settings, gateway):
        from phrames.main import create_app

        app = create_app(ServiceContainer(settings=signed_settings, gateway=gateway))

        def override_get_db():
            yield db

        app.dependency_overrides[get_db] = override_get_db
        return TestClient(app)

    def test_valid_signature_is_accepted(self, signed_client, db, make_campaign, make_payment):
        record = make_payment(make_campaign())
        body = json.dumps(webhook_payload(record.order_id))
        timestamp = "1767225600"

        response = signed_client.post(
            "/api/payments/webhook",
            content=body,
            headers={
                "content-type": "application/json",
                "x-webhook-timestamp": timestamp,
                "x-webhook-signature": sign_webhook(body, timestamp, "webhook-secret"),
            },
        )

        assert response.status_code == 200
        assert db.get(PaymentRecord, record.id).status == PAYMENT_SUCCESS

    def test_bad_signature_is_rejected(self, signed_client, db, make_campaign, make_payment):
        record = make_payment(make_campaign())

        response = signed_client.post(
            "/api/payments/webhook",
            json=webhook_payload(record.order_id),
            headers={"x-webhook-timestamp": "1767225600", "x-webhook-signature": "forged"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid signature"
        assert db.get(PaymentRecord, record.id).status == "pending"


class TestCampaigns:
    def test_activate_free(self, client, db, make_campaign):
        campaign = make_campaign()

        response = client.post(
            "/api/campaigns/activate-free", json={"campaignId": campaign.id}, headers={"user-id": "user-1"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert db.get(Campaign, campaign.id).is_active

        again = client.post(
            "/api/campaigns/activate-free", json={"campaignId": make_campaign().id}, headers={"user-id": "user-1"},
        )
        assert again.status_code == 403

    def test_visibility_of_expired_active_campaign(self, client, make_campaign):
        campaign = make_campaign(active=True, expires_at=utcnow() - timedelta(minutes=1))

        body = client.get(f"/api/campaigns/{campaign.id}/visibility").json()

        assert body["isActive"] is True
        assert body["isExpired"] is True
        assert body["visible"] is False

    def test_visibility_of_missing_campaign(self, client):
        response = client.get("/api/campaigns/missing/visibility")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Campaign not found"}


class TestAdmin:
    def test_invalid_action(self, client):
        response = client.post("/api/admin/actions", json={"action": "explode", "actorId": "admin-1"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid action"}

    def test_deactivate(self, client, db, make_campaign):
        campaign = make_campaign(active=True)

        response = client.post(
            "/api/admin/actions", json={"action": "deactivate", "actorId": "admin-1", "campaignId": campaign.id},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert not db.get(Campaign, campaign.id).is_active

    def test_actor_from_header(self, client, make_campaign):
        campaign = make_campaign(active=True)
        response = client.post(
            "/api/admin/actions",
            json={"action": "deactivate", "campaignId": campaign.id},
            headers={"user-id": "admin-1"},
        )
        assert response.status_code == 200

    def test_export_is_csv_attachment(self, client, make_campaign):
        make_campaign()

        response = client.post("/api/admin/actions", json={"action": "exportCampaigns", "actorId": "admin-1"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=" in response.headers["content-disposition"]
        assert response.text.startswith("id,campaignName,slug,createdBy,")

    def test_logs_filtered_by_event_type(self, client, make_campaign):
        campaign = make_campaign(active=True)
        client.post("/api/admin/actions", json={"action": "deactivate", "actorId": "admin-1", "campaignId": campaign.id})
        client.post("/api/admin/actions", json={"action": "exportPayments", "actorId": "admin-1"})

        entries = client.get("/api/admin/logs", params={"eventType": "campaign_deactivated"}).json()

        assert len(entries) == 1
        assert entries[0]["actor_id"] == "admin-1"
        assert entries[0]["metadata"]["campaign_id"] == campaign.id

    def test_stuck_campaigns_listing_changes_nothing(self, client, db, make_campaign, make_payment):
        campaign = make_campaign()
        make_payment(campaign, status=PAYMENT_SUCCESS)

        body = client.get("/api/admin/stuck-campaigns").json()

        assert body["count"] == 1
        assert body["campaigns"][0]["campaign_id"] == campaign.id
        assert body["campaigns"][0]["kind"] == "paid"
        assert not db.get(Campaign, campaign.id).is_active

    def test_logs_reject_unknown_event_type(self, client):
        response = client.get("/api/admin/logs", params={"eventType": "campaign_exploded"})
        assert response.status_code == 400
        assert response.json()["success"] is False
