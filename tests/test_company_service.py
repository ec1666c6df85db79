"""Tests for CompanyService over in-memory stores.

Covers:
- List with filters and lastActivity
- Create with normalized-name duplicate detection
- Update by any spelling of the name, with a system interaction
- Delete blocked by related opportunities
- Details view and the empty shell
"""

from __future__ import annotations

import pytest

from src.crm.convergence.errors import BusinessRuleViolation, NotFoundError
from src.crm.convergence.schemas import CompanyFilter
from src.crm.services.companies import COMPANY_EXISTS_MESSAGE
from src.crm.services.interactions import SYSTEM_EVENT_TYPE
from tests.fakes import build_fake_services


@pytest.fixture
def wired(company_rows, opportunity_rows):
    companies = company_rows + [{"companyId": "COMP_3", "companyName": "南方貿易"}]
    return build_fake_services(
        companies=companies,
        opportunities=opportunity_rows,
        contacts=[
            {"contactId": "C1", "name": "王小明", "companyId": "COMP_1"},
            {"contactId": "C2", "name": "李大華", "companyId": "COMP_2"},
        ],
        potential=[
            {"name": "張三", "company": "台灣科技有限公司", "createdTime": "2026-01-01"},
            {"name": "李四", "company": "北方電機"},
        ],
        interactions=[
            {"interactionId": "IL1", "companyId": "COMP_1", "interactionTime": "2026-01-02T00:00:00Z"},
            {"interactionId": "IL2", "opportunityId": "OPP_1", "interactionTime": "2026-02-01T00:00:00Z"},
            {"interactionId": "IL3", "companyId": "COMP_2", "interactionTime": "2026-01-15T00:00:00Z"},
        ],
        events={
            "general": [{"eventId": "E1", "companyId": "COMP_1", "createdTime": "2026-01-20T00:00:00Z"}],
            "iot": [{"eventId": "E2", "opportunityId": "OPP_1", "createdTime": "2026-01-25T00:00:00Z"}],
        },
    )


class TestList:
    async def test_last_activity_order(self, wired):
        services, _ = wired
        items = await services.companies.get_all()

        assert [c.company_id for c in items] == ["COMP_1", "COMP_2", "COMP_3"]
        assert items[0].last_activity == "2026-02-01T00:00:00.000Z"
        assert items[1].last_activity == "2026-01-15T00:00:00.000Z"
        assert items[2].last_activity is None

    async def test_filters(self, wired):
        services, _ = wired
        items = await services.companies.get_all(CompanyFilter(q="新竹", type="all"))
        assert [c.company_id for c in items] == ["COMP_2"]


class TestCreate:
    async def test_existing_company_found_by_other_spelling(self, wired):
        services, stores = wired

        result = await services.companies.create("台灣科技(Taiwan)", {"phone": "02"}, "amy")

        assert result["existed"] is True
        assert result["id"] == "COMP_1"
        assert result["message"] == COMPANY_EXISTS_MESSAGE
        assert stores.companies.writes == []

    async def test_new_company_gets_generated_id(self, wired):
        services, stores = wired

        result = await services.companies.create("  東方精密  ", {"county": "台南市"}, "amy")

        assert result["existed"] is False
        assert result["success"] is True
        assert result["name"] == "東方精密"
        created = stores.companies.writes[0][2]
        assert created["companyName"] == "東方精密"
        assert created["companyId"].startswith("COMP_")
        assert stores.companies.invalidated == ["company"]

        found = await services.companies.get_by_name("東方精密股份有限公司")
        assert found is not None and found.county == "台南市"

    async def test_blank_name_rejected(self, wired):
        services, stores = wired
        with pytest.raises(BusinessRuleViolation):
            await services.companies.create("   ", {}, "amy")
        assert stores.companies.writes == []


class TestUpdate:
    async def test_update_by_alternate_spelling_logs_interaction(self, wired):
        services, stores = wired

        result = await services.companies.update("台灣科技", {"phone": "02-9999"}, "amy")

        assert result["success"] is True
        assert stores.companies.writes == [("update", 2, {"phone": "02-9999"})]
        log = stores.interactions.writes[-1][2]
        assert log["eventType"] == SYSTEM_EVENT_TYPE
        assert log["companyId"] == "COMP_1"
        assert "phone" in log["contentSummary"]

    async def test_unknown_company(self, wired):
        services, stores = wired
        with pytest.raises(NotFoundError):
            await services.companies.update("不存在", {"phone": "1"}, "amy")
        assert stores.companies.writes == []

    async def test_interaction_failure_does_not_fail_update(self, wired):
        services, stores = wired
        stores.interactions.fail_with = RuntimeError("quota exceeded")

        result = await services.companies.update("南方貿易", {"phone": "07"}, "amy")

        assert result["success"] is True
        assert stores.companies.writes[-1][1] == 4


class TestDelete:
    async def test_blocked_by_related_opportunities(self, wired):
        services, stores = wired

        with pytest.raises(BusinessRuleViolation) as exc_info:
            await services.companies.delete("台灣科技股份有限公司", "amy")

        assert exc_info.value.blocking_count == 1
        assert exc_info.value.example == "產線監控導入"
        assert stores.companies.writes == []

    async def test_archived_opportunities_still_block(self, wired):
        services, _ = wired
        with pytest.raises(BusinessRuleViolation):
            await services.companies.delete("北方電機", "amy")

    async def test_delete_without_dependents(self, wired):
        services, stores = wired
        await services.companies.delete("南方貿易", "amy")
        assert stores.companies.writes == [("delete", 4, {})]
        assert await services.companies.get_by_name("南方貿易") is None

    async def test_numeric_name_is_never_a_row_index(self, wired):
        services, stores = wired

        with pytest.raises(NotFoundError):
            await services.companies.delete("3", "amy")
        assert stores.companies.writes == []

        await services.companies.create("3", {}, "amy")
        await services.companies.delete("3", "amy")

        assert stores.companies.writes[-1] == ("delete", 5, {})
        assert [r["companyName"] for r in stores.companies.rows][-1] == "南方貿易"


class TestDetails:
    async def test_joined_view(self, wired):
        services, _ = wired

        details = await services.companies.get_details("台灣科技")

        assert details.company_info.company_id == "COMP_1"
        assert [c.contact_id for c in details.contacts] == ["C1"]
        assert [o.opportunity_id for o in details.opportunities] == ["OPP_1"]
        assert [p.name for p in details.potential_contacts] == ["張三"]
        assert [i.interaction_id for i in details.interactions] == ["IL2", "IL1"]
        assert [e.event_id for e in details.event_logs] == ["E2", "E1"]

    async def test_empty_shell(self, wired):
        services, _ = wired
        details = await services.companies.get_details("不存在的公司")
        record = details.to_record()
        assert record["companyInfo"] is None
        assert record["contacts"] == []
        assert record["eventLogs"] == []
