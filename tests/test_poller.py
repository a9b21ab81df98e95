import pytest

from usage_relay.client import RelayUnreachable, UpstreamError
from usage_relay.models import OrganizationCandidate
from usage_relay.poller import PollError, PollResult, UsagePollCycle, UsagePoller
from usage_relay.resolver import OrganizationCache

USAGE = {
    "five_hour": {"utilization": 45, "resets_at": "2025-01-01T10:00:00Z"},
    "seven_day": {"utilization": 12.5, "resets_at": "2025-01-05T10:00:00Z"},
}


class FakeClient:
    def __init__(self, orgs=None, usage=None, list_error=None, usage_error=None):
        self.orgs = orgs if orgs is not None else [OrganizationCandidate("org-1", billing_type="stripe")]
        self.usage = usage if usage is not None else USAGE
        self.list_error = list_error
        self.usage_error = usage_error
        self.list_calls = 0
        self.usage_calls = []

    def list_organizations(self):
        self.list_calls += 1
        if self.list_error:
            raise self.list_error
        return self.orgs

    def fetch_usage(self, organization_id):
        self.usage_calls.append(organization_id)
        if self.usage_error:
            raise self.usage_error
        return self.usage


@pytest.fixture
def pushed():
    return []


class TestUsagePollCycle:
    def test_success_resolves_caches_and_emits(self, pushed):
        client = FakeClient()
        cache = OrganizationCache()
        cycle = UsagePollCycle(client, cache, [pushed.append])

        result = cycle.run()

        assert result.ok
        assert result.error is None
        assert result.snapshot.five_hour.utilization == 45
        assert result.snapshot.seven_day.utilization == 12.5
        assert cache.get() == "org-1"
        assert pushed == [result.snapshot]
        assert cycle.last_result is result

    def test_cached_id_skips_listing(self):
        client = FakeClient()
        cycle = UsagePollCycle(client, OrganizationCache("cached-org"))
        cycle.run()
        cycle.run()
        assert client.list_calls == 0
        assert client.usage_calls == ["cached-org", "cached-org"]

    def test_listing_failure_is_not_authenticated(self, pushed):
        client = FakeClient(list_error=UpstreamError("HTTP 403"))
        cycle = UsagePollCycle(client, emitters=[pushed.append])
        result = cycle.run()
        assert result.error is PollError.NOT_AUTHENTICATED
        assert result.snapshot is None
        assert client.usage_calls == []
        assert pushed == []

    def test_no_organizations_is_not_authenticated(self):
        cycle = UsagePollCycle(FakeClient(orgs=[]))
        result = cycle.run()
        assert result.error is PollError.NOT_AUTHENTICATED
        assert cycle.cache.get() is None

    def test_fetch_failure_clears_cached_id(self, pushed):
        client = FakeClient(usage_error=UpstreamError("HTTP 404"))
        cache = OrganizationCache("stale-org")
        result = UsagePollCycle(client, cache, [pushed.append]).run()
        assert result.error is PollError.FETCH_FAILED
        assert cache.get() is None
        assert pushed == []

    def test_next_cycle_re_resolves_after_fetch_failure(self):
        client = FakeClient(usage_error=UpstreamError("HTTP 404"))
        cycle = UsagePollCycle(client, OrganizationCache("stale-org"))
        cycle.run()
        client.usage_error = None
        result = cycle.run()
        assert result.ok
        assert client.list_calls == 1
        assert client.usage_calls == ["stale-org", "org-1"]

    def test_malformed_keeps_cached_id_and_emits_nothing(self, pushed):
        client = FakeClient(usage={"seven_day": {"utilization": 3}})
        cache = OrganizationCache("org-1")
        result = UsagePollCycle(client, cache, [pushed.append]).run()
        assert result.error is PollError.MALFORMED_RESPONSE
        assert cache.get() == "org-1"
        assert pushed == []

    def test_empty_five_hour_is_normalized(self, pushed):
        client = FakeClient(usage={"five_hour": {}, "seven_day": {}})
        result = UsagePollCycle(client, emitters=[pushed.append]).run()
        assert result.ok
        assert result.snapshot.to_dict()["fiveHour"] == {"utilization": 0.0, "resetsAt": ""}
        assert result.snapshot.to_dict()["sevenDay"] == {"utilization": 0.0, "resetsAt": ""}
        assert pushed == [result.snapshot]

    def test_malformed_organization_entry_is_not_authenticated(self):
        client = FakeClient(list_error=UpstreamError("GET /organizations: malformed entry"))
        result = UsagePollCycle(client).run()
        assert result.error is PollError.NOT_AUTHENTICATED
        assert result.snapshot is None

    def test_relay_unreachable_is_not_an_error(self, pushed):
        def unreachable(snapshot):
            raise RelayUnreachable("connection refused")

        result = UsagePollCycle(FakeClient(), emitters=[unreachable, pushed.append]).run()
        assert result.ok
        assert pushed == [result.snapshot]

    def test_free_tier_has_no_seven_day(self):
        client = FakeClient(usage={"five_hour": {"utilization": 45, "resets_at": "2025-01-01T10:00:00Z"}})
        result = UsagePollCycle(client).run()
        assert result.snapshot.seven_day is None
        assert result.snapshot.to_dict()["sevenDay"] is None

    def test_clear_organization(self):
        cycle = UsagePollCycle(FakeClient(), OrganizationCache("org-1"))
        cycle.clear_organization()
        assert cycle.cache.get() is None


class TestPollResult:
    def test_badge_rounds_halves_up(self):
        result = UsagePollCycle(FakeClient(usage={"five_hour": {"utilization": 79.5}})).run()
        assert result.badge == ("80", "#FF6600")

    def test_badge(self):
        ok = UsagePollCycle(FakeClient()).run()
        assert ok.badge == ("45", "#4CAF50")
        hot = UsagePollCycle(FakeClient(usage={"five_hour": {"utilization": 80}})).run()
        assert hot.badge == ("80", "#FF6600")
        assert PollResult(error=PollError.FETCH_FAILED).badge == ("!", "#FF0000")

    def test_error_messages(self):
        assert PollError.NOT_AUTHENTICATED.message == "Not logged in to claude.ai"
        assert PollError.FETCH_FAILED.message == "Failed to fetch usage"
        assert PollError.MALFORMED_RESPONSE.message == "Invalid API response structure"


class TestUsagePoller:
    def test_refresh_emits_result(self, qtbot):
        poller = UsagePoller(UsagePollCycle(FakeClient()))
        with qtbot.waitSignal(poller.polled, timeout=5000) as blocker:
            assert poller.refresh()
        result = blocker.args[0]
        assert isinstance(result, PollResult)
        assert result.ok
        poller.stop()

    def test_start_polls_after_initial_delay(self, qtbot):
        client = FakeClient(usage_error=UpstreamError("down"))
        poller = UsagePoller(UsagePollCycle(client), interval_s=60, initial_delay_s=0.05)
        with qtbot.waitSignal(poller.polled, timeout=5000) as blocker:
            poller.start()
        assert blocker.args[0].error is PollError.FETCH_FAILED
        poller.stop()

    def test_clear_organization(self, qtbot):
        cycle = UsagePollCycle(FakeClient(), OrganizationCache("org-1"))
        poller = UsagePoller(cycle)
        poller.clear_organization()
        assert cycle.cache.get() is None
