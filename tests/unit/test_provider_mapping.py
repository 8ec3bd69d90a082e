"""Tests for provider payload mappers and the shared field helpers."""
import pytest

from crmsync.models.sync import SyncAction, SyncKind
from crmsync.providers.errors import UnsupportedKind
from crmsync.providers.hubspot import HubSpotAdapter
from crmsync.providers.mapping import (
    call_description,
    epoch_millis,
    iso_date,
    minutes_seconds,
    parse_datetime,
)
from crmsync.providers.pipedrive import PipedriveAdapter
from crmsync.providers.salesforce import SalesforceAdapter
from crmsync.providers.zoho import ZohoAdapter

CALL_LOG = {
    "id": "call-1",
    "leadId": "lead-123",
    "leadName": "John Doe",
    "phoneNumber": "+1234567890",
    "initiatedAt": "2025-01-15T09:30:00Z",
    "duration": 305,
    "outcome": "connected",
    "disposition": "interested",
    "callNotes": {"summary": "Productive conversation about IT services"},
    "priority": "High",
}

LEAD = {
    "id": "lead-123",
    "firstName": "John",
    "lastName": "Doe",
    "company": "Acme",
    "phone": "+1234567890",
    "email": "john@acme.test",
}

OPPORTUNITY = {
    "id": "opp-1",
    "name": "Acme renewal",
    "amount": 12000,
    "stage": "Negotiation",
    "closeDate": "2025-03-31",
}


class TestHelpers:
    def test_minutes_seconds_pads(self):
        assert minutes_seconds(305) == "5:05"
        assert minutes_seconds(None) == "0:00"

    def test_iso_date_from_zulu(self):
        assert iso_date("2025-01-15T09:30:00Z") == "2025-01-15"

    def test_epoch_millis(self):
        assert epoch_millis("1970-01-01T00:00:01Z") == 1000

    def test_parse_datetime_empty(self):
        assert parse_datetime(None) is None
        assert parse_datetime("") is None

    def test_call_description_default(self):
        assert call_description({}) == "Cold call activity"


class TestSalesforceMapping:
    adapter = SalesforceAdapter()

    def test_call_log_to_task(self):
        req = self.adapter.map_payload(SyncKind.CALL_LOG, CALL_LOG)
        assert req.path == "/services/data/v52.0/sobjects/Task"
        assert req.json["Subject"] == "Call: John Doe"
        assert req.json["ActivityDate"] == "2025-01-15"
        assert req.json["Status"] == "Completed"
        assert req.json["WhoId"] == "lead-123"
        assert req.json["CallDurationInSeconds"] == 305

    def test_lead_default_status(self):
        req = self.adapter.map_payload(SyncKind.LEAD, LEAD)
        assert req.path.endswith("/Lead")
        assert req.json["Status"] == "Open - Not Contacted"

    def test_opportunity(self):
        req = self.adapter.map_payload(SyncKind.OPPORTUNITY, OPPORTUNITY)
        assert req.path.endswith("/Opportunity")
        assert req.json["StageName"] == "Negotiation"
        assert req.json["CloseDate"] == "2025-03-31"

    def test_unset_fields_dropped(self):
        req = self.adapter.map_payload(SyncKind.LEAD, {"lastName": "Doe"})
        assert "Email" not in req.json


class TestHubSpotMapping:
    adapter = HubSpotAdapter(access_token="t")

    def test_call_duration_in_millis(self):
        req = self.adapter.map_payload(SyncKind.CALL_LOG, CALL_LOG)
        assert req.path == "/crm/v3/objects/calls"
        props = req.json["properties"]
        assert props["hs_call_duration"] == 305000
        assert props["hs_call_body"] == "Productive conversation about IT services"
        assert props["hs_timestamp"] == epoch_millis("2025-01-15T09:30:00Z")

    def test_lead_to_contact(self):
        req = self.adapter.map_payload(SyncKind.LEAD, LEAD)
        assert req.path == "/crm/v3/objects/contacts"
        assert req.json["properties"]["lifecyclestage"] == "lead"

    def test_opportunity_to_deal(self):
        req = self.adapter.map_payload(SyncKind.OPPORTUNITY, OPPORTUNITY)
        assert req.path == "/crm/v3/objects/deals"
        assert req.json["properties"]["amount"] == "12000"


class TestPipedriveMapping:
    adapter = PipedriveAdapter(base_url="https://acme.pipedrive.com/api", api_token="t")

    def test_call_duration_mm_ss(self):
        req = self.adapter.map_payload(SyncKind.CALL_LOG, CALL_LOG)
        assert req.path == "/v1/activities"
        assert req.json["duration"] == "5:05"
        assert req.json["due_date"] == "2025-01-15"

    def test_lead_to_person(self):
        req = self.adapter.map_payload(SyncKind.LEAD, LEAD)
        assert req.json["name"] == "John Doe"
        assert req.json["phone"] == [{"value": "+1234567890", "primary": True}]
        assert req.json["org_name"] == "Acme"

    def test_opportunity_to_deal(self):
        req = self.adapter.map_payload(SyncKind.OPPORTUNITY, OPPORTUNITY)
        assert req.path == "/v1/deals"
        assert req.json["title"] == "Acme renewal"


class TestZohoMapping:
    adapter = ZohoAdapter(client_id="c", client_secret="s", refresh_token="r")

    def test_call_log_module(self):
        req = self.adapter.map_payload(SyncKind.CALL_LOG, CALL_LOG)
        assert req.path == "/Calls"
        record = req.json["data"][0]
        assert record["Call_Duration"] == "5:05"
        assert record["Call_Start_Time"] == "2025-01-15T09:30:00+00:00"

    def test_lead_module(self):
        req = self.adapter.map_payload(SyncKind.LEAD, LEAD)
        assert req.path == "/Leads"
        assert req.json["data"][0]["Lead_Status"] == "Not Contacted"


class TestUnsupported:
    @pytest.mark.parametrize("adapter", [
        SalesforceAdapter(), HubSpotAdapter(), PipedriveAdapter(), ZohoAdapter(),
    ])
    def test_delete_is_unsupported(self, adapter):
        with pytest.raises(UnsupportedKind):
            adapter.map_payload(SyncKind.LEAD, LEAD, SyncAction.DELETE)

    def test_kind_missing_from_supported_set(self):
        adapter = HubSpotAdapter()
        adapter.supported_kinds = frozenset({SyncKind.LEAD})
        with pytest.raises(UnsupportedKind):
            adapter.map_payload(SyncKind.OPPORTUNITY, OPPORTUNITY)
