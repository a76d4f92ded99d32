import logging
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from conftest import NOW
from phrames.errors import InvalidAction, NotFoundError, ValidationError
from phrames.models.campaign import Campaign
from phrames.models.payment import PAYMENT_SUCCESS
from phrames.schemas.schemas import AdminActionRequest
from phrames.services.admin_dispatcher import AdminActionDispatcher, AdminResult, CsvExport
from phrames.services.audit_service import AuditService
from phrames.services.expiry_sweep import ExpirySweep
from phrames.services.exports import format_field
from phrames.services.reconciliation import ReconciliationEngine


@pytest.fixture
def dispatcher():
    return AdminActionDispatcher(
        sweep=ExpirySweep(chunk_size=250, batch_limit=500),
        reconciliation=ReconciliationEngine(batch_limit=500),
        page_size=2,
    )


def request(**fields):
    fields.setdefault("actorId", "admin-1")
    return AdminActionRequest.model_validate(fields)


class TestValidation:
    def test_unknown_action(self, db, dispatcher):
        with pytest.raises(InvalidAction):
            dispatcher.dispatch(db, request(action="explode"))

    def test_missing_actor(self, db, dispatcher):
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, AdminActionRequest.model_validate({"action": "deactivate", "campaignId": "x"}))

    def test_missing_campaign_id(self, db, dispatcher):
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action="deactivate"))

    def test_unknown_campaign(self, db, dispatcher):
        with pytest.raises(NotFoundError):
            dispatcher.dispatch(db, request(action="deactivate", campaignId="missing"))

    def test_admin_id_alias_is_accepted(self, db, dispatcher, make_campaign):
        campaign = make_campaign(active=True)
        payload = AdminActionRequest.model_validate({"action": "deactivate", "adminId": "admin-2", "campaignId": campaign.id})
        assert dispatcher.dispatch(db, payload).success


class TestCampaignActions:
    def test_extend_defaults_to_thirty_days(self, db, dispatcher, make_campaign):
        old = NOW + timedelta(days=2)
        campaign = make_campaign(active=True, expires_at=old)

        result = dispatcher.dispatch(db, request(action="extend", campaignId=campaign.id))

        assert isinstance(result, AdminResult)
        assert result.success
        assert db.get(Campaign, campaign.id).expires_at == old + timedelta(days=30)

    def test_set_expiry_accepts_iso_string(self, db, dispatcher, make_campaign):
        campaign = make_campaign(active=True)

        dispatcher.dispatch(db, request(action="setExpiry", campaignId=campaign.id, expiresAt="2026-06-01T00:00:00Z"))

        assert db.get(Campaign, campaign.id).expires_at.isoformat() == "2026-06-01T00:00:00+00:00"

    def test_set_expiry_accepts_timestamp_object(self, db, dispatcher, make_campaign):
        campaign = make_campaign(active=True)
        target = NOW + timedelta(days=10)

        dispatcher.dispatch(
            db, request(action="setExpiry", campaignId=campaign.id, expiresAt={"_seconds": int(target.timestamp())}),
        )

        assert db.get(Campaign, campaign.id).expires_at == target

    def test_set_expiry_requires_date(self, db, dispatcher, make_campaign):
        campaign = make_campaign()
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action="setExpiry", campaignId=campaign.id))

    def test_set_expiry_rejects_garbage(self, db, dispatcher, make_campaign):
        campaign = make_campaign()
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action="setExpiry", campaignId=campaign.id, expiresAt="next tuesday"))

    @pytest.mark.parametrize("action", ["setExpiry", "reactivate"])
    def test_out_of_range_expiry_is_rejected(self, db, dispatcher, make_campaign, action):
        campaign = make_campaign()
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action=action, campaignId=campaign.id, expiresAt=10**30))
        assert not db.get(Campaign, campaign.id).is_active

    def test_extend_past_the_calendar_is_rejected(self, db, dispatcher, make_campaign):
        old = NOW + timedelta(days=2)
        campaign = make_campaign(active=True, expires_at=old)
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action="extend", campaignId=campaign.id, days=10**10))
        assert db.get(Campaign, campaign.id).expires_at == old

    def test_reactivate_and_delete(self, db, dispatcher, make_campaign):
        campaign = make_campaign()
        campaign_id = campaign.id

        dispatcher.dispatch(db, request(action="reactivate", campaignId=campaign_id))
        assert db.get(Campaign, campaign_id).is_active

        dispatcher.dispatch(db, request(action="delete", campaignId=campaign_id))
        assert db.get(Campaign, campaign_id) is None

    def test_failed_audit_write_does_not_undo_the_change(self, db, dispatcher, make_campaign, monkeypatch, caplog):
        campaign = make_campaign(active=True)

        def broken_log(*args, **kwargs):
            raise OperationalError("INSERT INTO logs", {}, Exception("disk full"))

        monkeypatch.setattr(AuditService, "log", staticmethod(broken_log))

        with caplog.at_level(logging.ERROR, logger="phrames.services.audit_service"):
            result = dispatcher.dispatch(db, request(action="deactivate", campaignId=campaign.id))

        assert result.success
        assert not db.get(Campaign, campaign.id).is_active
        assert "Audit write failed" in caplog.text


class TestBatchActions:
    def test_trigger_expiry_cron(self, db, dispatcher, make_campaign, audit_count):
        campaign = make_campaign(active=True, expires_at=NOW - timedelta(days=1))

        result = dispatcher.dispatch(db, request(action="triggerExpiryCron"))

        assert result.data["processed"] == 1
        assert result.data["batch_id"].endswith("_manual")
        assert not db.get(Campaign, campaign.id).is_active
        assert audit_count("manual_cron_trigger") == 1

    def test_fix_stuck_all(self, db, dispatcher, make_campaign, make_payment):
        campaign = make_campaign()
        make_payment(campaign, status=PAYMENT_SUCCESS)

        result = dispatcher.dispatch(db, request(action="fixStuckCampaigns"))

        assert result.data["fixed"] == 1
        assert db.get(Campaign, campaign.id).is_active

    def test_fix_stuck_dry_run(self, db, dispatcher, make_campaign, make_payment):
        campaign = make_campaign()
        make_payment(campaign, status=PAYMENT_SUCCESS)

        result = dispatcher.dispatch(db, request(action="fixStuckCampaigns", dryRun=True))

        assert result.data["dryRun"]
        assert result.message.startswith("Would fix 1")
        assert not db.get(Campaign, campaign.id).is_active

    def test_fix_stuck_single_requires_campaign(self, db, dispatcher):
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action="fixStuckCampaigns", mode="single"))

    def test_fix_stuck_invalid_mode(self, db, dispatcher):
        with pytest.raises(ValidationError):
            dispatcher.dispatch(db, request(action="fixStuckCampaigns", mode="everything"))

    def test_cleanup_orphaned(self, db, dispatcher, make_payment):
        make_payment("deleted-campaign")
        result = dispatcher.dispatch(db, request(action="fixStuckCampaigns", mode="cleanup-orphaned"))
        assert result.data["deleted_payments"] == 1


class TestExports:
    def test_campaign_export(self, db, dispatcher, make_campaign, audit_count):
        make_campaign(campaign_name="Summer, Sale", slug="summer", is_free_campaign=True, amount_paid=0)
        make_campaign(campaign_name="Plain", slug="plain", active=True, plan_type="week", amount_paid=49,
                      expires_at=NOW)
        make_campaign(campaign_name="Third", slug="third")

        result = dispatcher.dispatch(db, request(action="exportCampaigns"))

        assert isinstance(result, CsvExport)
        assert result.filename.startswith("campaigns-") and result.filename.endswith(".csv")
        assert result.record_count == 3
        lines = result.content.split("\n")
        assert lines[0] == "id,campaignName,slug,createdBy,isActive,isFreeCampaign,planType,amountPaid,createdAt,expiresAt"
        assert len(lines) == 4
        assert ',"Summer, Sale",summer,user-1,false,true,,0,' in lines[1]
        assert lines[2].endswith(",Plain,plain,user-1,true,false,week,49,2026-02-19T12:02:00+00:00,2026-03-01T12:00:00+00:00")
        assert lines[3].endswith(",Third,third,user-1,false,false,,0,2026-02-19T12:03:00+00:00,")
        assert audit_count("data_export") == 1

    def test_payment_export(self, db, dispatcher, make_campaign, make_payment):
        campaign = make_campaign()
        make_payment(campaign, status=PAYMENT_SUCCESS)

        result = dispatcher.dispatch(db, request(action="exportPayments"))

        lines = result.content.split("\n")
        assert lines[0] == "id,orderId,userId,campaignId,amount,currency,planType,status,createdAt,completedAt"
        assert f",order_1,user-1,{campaign.id},49,INR,week,success," in lines[1]

    @pytest.mark.parametrize("value,expected", [
        (None, ""),
        (True, "true"),
        (49, "49"),
        ("plain", "plain"),
        ("a,b", '"a,b"'),
        ('say "hi", ok', '"say ""hi"", ok"'),
        ('only "quotes"', 'only "quotes"'),
    ])
    def test_field_quoting(self, value, expected):
        assert format_field(value) == expected
