"""
Tests for the matter batch loop and Clio token handling.

Run with: uv run pytest tests/test_batch_sync.py -v
"""
from datetime import datetime, timedelta

import pytest

from api_client import ClioClient
from auth import ClioAuth, EnvSecretStore, TokenCache
from batch_sync import BatchResult, MatterSyncManager
from errors import AuthError
from field_updater import MatterSyncOutcome
from progress import CompleteEvent, ErrorEvent, MatterCompleteEvent, MatterStartEvent, ProgressEvent
from tests.fakes import FakeClio, StaticSecrets


def make_manager(config, clio, secrets=None, sleep=None):
    http = clio.http_client()
    auth = ClioAuth(config, secrets=secrets or StaticSecrets(), http_client=http)
    client = ClioClient(config, http_client=http)
    if sleep is None:
        return MatterSyncManager(config, auth, client)
    return MatterSyncManager(config, auth, client, sleep=sleep)


async def collect(run):
    return [event async for event in run.events()]


# ============================================================================
# BatchResult
# ============================================================================

class TestBatchResult:

    def test_record_counts_each_outcome(self):
        result = BatchResult(total=3)
        result.record("A", MatterSyncOutcome(success=True))
        result.record("B", MatterSyncOutcome(success=True, skipped=True))
        result.record("C", MatterSyncOutcome(success=False, error="500: boom"))

        assert result.to_dict() == {
            "success": 1, "failed": 1, "skipped": 1, "errors": ["C: 500: boom"],
        }

    def test_structured_errors(self):
        result = BatchResult(total=1)
        result.record("ABC-1", MatterSyncOutcome(success=False, error="timeout"))

        assert result.to_dict(structured=True)["errors"] == [
            {"display_number": "ABC-1", "error": "timeout"}
        ]

    def test_fail_all(self):
        result = BatchResult(total=4)
        result.record("A", MatterSyncOutcome(success=True))
        result.fail_all("no token")

        assert result.failed == 4
        assert result.success == 0
        assert result.errors == [("Auth error", "no token")]

    def test_fail_remaining_keeps_finished_matters(self):
        result = BatchResult(total=4)
        result.record("A", MatterSyncOutcome(success=True))
        result.record("B", MatterSyncOutcome(success=True, skipped=True))
        result.fail_remaining("token endpoint down")

        assert result.to_dict() == {
            "success": 1, "failed": 2, "skipped": 1, "errors": ["Clio error: token endpoint down"],
        }

    def test_cleared_summary_counts_skips_as_succeeded(self):
        result = BatchResult(total=3)
        result.record("A", MatterSyncOutcome(success=True))
        result.record("B", MatterSyncOutcome(success=True, skipped=True))
        result.record("C", MatterSyncOutcome(success=False, error="500: boom"))

        assert result.cleared_summary() == {
            "succeeded": 2, "failed": 1, "errors": [{"display_number": "C", "error": "500: boom"}],
        }


# ============================================================================
# Batch runs
# ============================================================================

class TestBatchRun:

    @pytest.mark.asyncio
    async def test_not_found_matter_does_not_stop_batch(self, engine_config):
        clio = FakeClio(matters={"102": []})
        manager = make_manager(engine_config, clio)

        result = await manager.sync_matters(["101", "102"], ["X-1", "X-2"], "2026-01-15")

        assert result.to_dict() == {"success": 1, "failed": 0, "skipped": 1, "errors": []}
        assert clio.field_value("102") == "2026-01-15"

    @pytest.mark.asyncio
    async def test_failed_matter_does_not_stop_batch(self, engine_config):
        clio = FakeClio(matters={"101": [], "102": [], "103": []}, fail_matters=["102"])
        manager = make_manager(engine_config, clio)

        result = await manager.sync_matters(["101", "102", "103"], ["A", "B", "C"], "2026-01-15")

        assert result.success == 2
        assert result.failed == 1
        assert result.errors[0][0] == "B"
        assert clio.field_value("103") == "2026-01-15"

    @pytest.mark.asyncio
    async def test_matters_processed_in_input_order(self, engine_config):
        clio = FakeClio(matters={"103": [], "101": [], "102": []})
        manager = make_manager(engine_config, clio)

        await manager.sync_matters(["103", "101", "102"], [], "2026-01-15")

        patched = [r.url.path for r in clio.calls("PATCH")]
        assert patched == ["/api/v4/matters/103.json", "/api/v4/matters/101.json", "/api/v4/matters/102.json"]

    @pytest.mark.asyncio
    async def test_auth_failure_fails_every_matter(self, engine_config):
        clio = FakeClio(matters={"101": [], "102": []}, token_status=401)
        manager = make_manager(engine_config, clio)
        run = manager.update_run(["101", "102"], ["A", "B"], "2026-01-15")

        events = await collect(run)

        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].message.startswith("Clio auth failed:")
        assert run.result.failed == 2
        assert run.result.success == 0
        assert clio.calls("PATCH") == []

    @pytest.mark.asyncio
    async def test_rejected_token_is_refreshed_for_next_matter(self, engine_config):
        clio = FakeClio(matters={"101": [], "102": []}, unauthorized_matters=["101"])
        manager = make_manager(engine_config, clio)

        result = await manager.sync_matters(["101", "102"], ["A", "B"], "2026-01-15")

        assert result.success == 1
        assert result.failed == 1
        assert result.errors[0][1].startswith("401: ")
        assert clio.tokens_issued == 2
        patches = clio.calls("PATCH")
        assert [r.headers["Authorization"] for r in patches] == ["Bearer access-1", "Bearer access-2"]
        assert clio.field_value("102") == "2026-01-15"

    @pytest.mark.asyncio
    async def test_rejected_token_is_dropped_from_cache(self, engine_config):
        clio = FakeClio(matters={"101": []}, unauthorized_matters=["101"])
        manager = make_manager(engine_config, clio)

        await manager.sync_matters(["101"], ["A"], "2026-01-15")

        assert manager.auth.cache.access_token is None
        assert manager.auth.cache.is_access_token_expired() is True

    @pytest.mark.asyncio
    async def test_auth_failure_mid_batch_fails_the_rest(self, engine_config):
        clio = FakeClio(
            matters={"101": [], "102": [], "103": []},
            unauthorized_matters=["101"],
            token_statuses=[200, 503],
        )
        manager = make_manager(engine_config, clio)

        result = await manager.sync_matters(["101", "102", "103"], ["A", "B", "C"], "2026-01-15")

        assert result.success == 0
        assert result.failed == 3
        assert result.errors[-1] == ("Clio error", "Failed to get Clio access token (503)")
        assert len(clio.calls("PATCH")) == 1

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_calls(self, engine_config):
        clio = FakeClio()
        manager = make_manager(engine_config, clio)
        run = manager.update_run([], [], "2026-01-15")

        events = await collect(run)

        assert events == []
        assert clio.requests == []
        assert run.result.to_dict() == {"success": 0, "failed": 0, "skipped": 0, "errors": []}

    @pytest.mark.asyncio
    async def test_event_sequence(self, engine_config):
        clio = FakeClio(matters={"101": [], "102": []})
        manager = make_manager(engine_config, clio)
        run = manager.update_run(["101", "102"], ["A", None], "2026-01-15")

        events = await collect(run)

        kinds = [type(e) for e in events]
        assert kinds == [
            ProgressEvent, ProgressEvent,
            MatterStartEvent, MatterCompleteEvent,
            MatterStartEvent, MatterCompleteEvent,
        ]
        assert events[1].total == 2
        assert events[3].display_number == "A"
        # Falls back to the matter id when no display number is given
        assert events[5].display_number == "102"
        assert events[5].progress.success == 2
        assert events[5].progress.total == 2
        assert not any(isinstance(e, CompleteEvent) for e in events)

    @pytest.mark.asyncio
    async def test_pause_between_matters_only(self, engine_config):
        pauses = []

        async def fake_sleep(seconds):
            pauses.append(seconds)

        clio = FakeClio(matters={"101": [], "102": [], "103": []})
        manager = make_manager(engine_config, clio, sleep=fake_sleep)

        await manager.sync_matters(["101", "102", "103"], [], "2026-01-15")

        assert pauses == [engine_config.inter_item_delay] * 2

    @pytest.mark.asyncio
    async def test_should_stop_ends_run_early(self, engine_config):
        clio = FakeClio(matters={"101": [], "102": [], "103": []})
        manager = make_manager(engine_config, clio)
        checks = []

        async def should_stop():
            checks.append(True)
            return len(checks) > 1

        run = manager.update_run(["101", "102", "103"], [], "2026-01-15", should_stop=should_stop)
        await collect(run)

        assert run.cancelled is True
        assert len(clio.calls("PATCH")) == 1
        assert run.result.success == 1

    @pytest.mark.asyncio
    async def test_clear_run_skips_matters_without_value(self, engine_config):
        clio = FakeClio(matters={"101": [{"id": 5, "custom_field": {"id": engine_config.crm_field_id}, "value": "x"}]})
        manager = make_manager(engine_config, clio)

        result = await manager.clear_matters([
            {"matter_id": "101", "display_number": "ABC-1"},
            {"matter_id": "999", "display_number": "ABC-9"},
        ])

        # Nothing stored on 999, so there is nothing to clear
        assert result.success == 2
        assert result.skipped == 0
        assert len(clio.calls("PATCH")) == 1
        assert clio.field_value("101") is None

    @pytest.mark.asyncio
    async def test_attorney_run_writes_back_each_match(self, engine_config):
        clio = FakeClio(search_results={
            "X-1": {"id": 1, "display_number": "X-1",
                    "responsible_attorney": {"id": 5, "name": "Alex Smith"}, "originating_attorney": None},
        })
        manager = make_manager(engine_config, clio)
        written = []

        async def write_back(display_number, responsible, originating):
            written.append((display_number, responsible, originating))

        run = manager.attorney_run(["X-1", "X-2"], write_back)
        events = await collect(run)

        assert events[1].message == "Syncing attorneys for 2 matters from Clio..."
        assert [e.matter_id for e in events if isinstance(e, MatterStartEvent)] == ["X-1", "X-2"]
        assert written == [("X-1", "Alex Smith", None)]
        assert run.result.to_dict() == {"success": 1, "failed": 0, "skipped": 1, "errors": []}


# ============================================================================
# Auth
# ============================================================================

class TestClioAuth:

    @pytest.mark.asyncio
    async def test_refresh_token_grant(self, engine_config):
        clio = FakeClio()
        auth = ClioAuth(engine_config, secrets=StaticSecrets(), http_client=clio.http_client())

        token = await auth.get_access_token()

        assert token == "access-1"
        form = dict(pair.split("=") for pair in clio.requests[0].content.decode().split("&"))
        assert form == {
            "client_id": "cid",
            "client_secret": "csecret",
            "refresh_token": "rtoken",
            "grant_type": "refresh_token",
        }

    @pytest.mark.asyncio
    async def test_token_is_cached(self, engine_config):
        clio = FakeClio()
        auth = ClioAuth(engine_config, secrets=StaticSecrets(), http_client=clio.http_client())

        await auth.get_access_token()
        await auth.get_access_token()

        assert len(clio.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_secret(self, engine_config):
        clio = FakeClio()
        auth = ClioAuth(engine_config, secrets=StaticSecrets({}), http_client=clio.http_client())

        with pytest.raises(AuthError, match="lz-clio-v1-clientid"):
            await auth.get_access_token()
        assert clio.requests == []

    @pytest.mark.asyncio
    async def test_rejected_exchange(self, engine_config):
        clio = FakeClio(token_status=400)
        auth = ClioAuth(engine_config, secrets=StaticSecrets(), http_client=clio.http_client())

        with pytest.raises(AuthError, match="400"):
            await auth.get_access_token()

    @pytest.mark.asyncio
    async def test_non_json_token_response(self, engine_config):
        clio = FakeClio(token_body="<html>proxy login</html>")
        auth = ClioAuth(engine_config, secrets=StaticSecrets(), http_client=clio.http_client())

        with pytest.raises(AuthError, match="not JSON"):
            await auth.get_access_token()
        assert auth.cache.access_token is None

    @pytest.mark.asyncio
    async def test_invalidate_forces_new_exchange(self, engine_config):
        clio = FakeClio()
        auth = ClioAuth(engine_config, secrets=StaticSecrets(), http_client=clio.http_client())

        assert await auth.get_access_token() == "access-1"
        auth.invalidate()
        assert await auth.get_access_token() == "access-2"

    def test_token_expiring_soon_counts_as_expired(self):
        cache = TokenCache()
        cache.access_token = "t"
        cache.expires_at = datetime.now() + timedelta(minutes=4)
        assert cache.is_access_token_expired() is True

        cache.expires_at = datetime.now() + timedelta(minutes=30)
        assert cache.is_access_token_expired() is False

    def test_env_secret_names(self, monkeypatch):
        monkeypatch.setenv("AB_CLIO_V1_REFRESHTOKEN", "from-env")

        assert EnvSecretStore().get_secret("ab-clio-v1-refreshtoken") == "from-env"
