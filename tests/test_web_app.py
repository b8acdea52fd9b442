import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from scrape_worker import build_scheduler
from tenderwatch.config import Settings
from tenderwatch.errors import ScrapeInProgress
from tenderwatch.ingestion.tender_types import AWARDED, OPEN, SourceStats, TenderRecord
from tenderwatch.pipeline.orchestrator import ScrapeOrchestrator, ScrapeSummary, SourceOutcome
from tenderwatch.storage.tender_repo import connect_repo
from web_app import _days_until, create_app, start_background_scraping

TEST_CONFIG = {"TESTING": True, "CACHE_TYPE": "NullCache", "RATELIMIT_ENABLED": False}


def _iso(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class WebAppTestCase(unittest.TestCase):
    def setUp(self):
        self.repo = connect_repo(":memory:")
        soon = datetime.now(timezone.utc) + timedelta(days=10)
        self.repo.upsert(TenderRecord(
            id="O1", title="Hospital car park", source="AusTender", category="Hospitals & Healthcare",
            is_construction=True, state="NSW", closing_date=_iso(soon), tender_status=OPEN,
        ), OPEN)
        self.repo.upsert(TenderRecord(
            id="A1", title="Rail corridor works", source="AusTender", category="Rail",
            is_construction=True, state="VIC", date_signed="2025-01-01T00:00:00Z",
        ), AWARDED)
        self.orchestrator = MagicMock()
        self.orchestrator.running = False
        self.orchestrator.sources = []
        self.app = create_app(self.repo, self.orchestrator, config=TEST_CONFIG)
        self.client = self.app.test_client()

    def tearDown(self):
        self.repo.close()


class TestReadEndpoints(WebAppTestCase):
    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["status"], "healthy")

    def test_tenders_open_first_with_presentation_fields(self):
        data = self.client.get("/api/tenders").get_json()
        self.assertTrue(data["success"])
        self.assertEqual([t["id"] for t in data["tenders"]], ["O1", "A1"])
        first = data["tenders"][0]
        self.assertTrue(first["is_open"])
        self.assertIn(first["days_until_close"], (10, 11))
        self.assertIsNone(data["tenders"][1]["days_until_close"])

    def test_status_and_state_filters(self):
        data = self.client.get("/api/tenders?status=awarded").get_json()
        self.assertEqual([t["id"] for t in data["tenders"]], ["A1"])
        data = self.client.get("/api/tenders?state=nsw").get_json()
        self.assertEqual([t["id"] for t in data["tenders"]], ["O1"])
        data = self.client.get("/api/tenders?category=Rail").get_json()
        self.assertEqual([t["id"] for t in data["tenders"]], ["A1"])

    def test_invalid_status_is_bad_request(self):
        resp = self.client.get("/api/tenders?status=closed")
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.get_json()["success"])

    def test_stats(self):
        data = self.client.get("/api/stats").get_json()
        self.assertEqual(data["total_construction_tenders"], 2)
        self.assertEqual(data["open_tenders"], 1)
        self.assertEqual(data["awarded_contracts"], 1)

    def test_categories(self):
        data = self.client.get("/api/categories").get_json()
        counts = {c["category"]: c["count"] for c in data["categories"]}
        self.assertEqual(counts, {"Hospitals & Healthcare": 1, "Rail": 1})
        self.assertIn("General Construction", data["taxonomy"])

    def test_repo_failure_is_500(self):
        broken = MagicMock()
        broken.select_recent.side_effect = RuntimeError("db down")
        client = create_app(broken, config=TEST_CONFIG).test_client()
        resp = client.get("/api/tenders")
        self.assertEqual(resp.status_code, 500)
        self.assertFalse(resp.get_json()["success"])


class TestScrapeEndpoint(WebAppTestCase):
    def test_scrape_returns_summary(self):
        self.orchestrator.run.return_value = ScrapeSummary(results=[SourceOutcome("AusTender", True)])
        resp = self.client.post("/api/scrape", json={"parallel": True})
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertTrue(data["success"])
        self.assertEqual(data["stats"]["successful"], 1)
        self.orchestrator.run.assert_called_once_with(parallel=True)

    def test_scrape_conflict_when_running(self):
        self.orchestrator.run.side_effect = ScrapeInProgress("busy")
        resp = self.client.post("/api/scrape")
        self.assertEqual(resp.status_code, 409)

    def test_scrape_unavailable_without_orchestrator(self):
        client = create_app(self.repo, None, config=TEST_CONFIG).test_client()
        self.assertEqual(client.post("/api/scrape").status_code, 503)

    def test_sources_listing(self):
        source = MagicMock()
        source.name = "AusTender"
        source.enabled = True
        source.priority = 1
        source.transport = "api"
        self.orchestrator.sources = [source]
        data = self.client.get("/api/sources").get_json()
        self.assertEqual(data["sources"], [{"name": "AusTender", "enabled": True, "priority": 1, "transport": "api"}])


class BlockingSource:
    name = "slow"
    priority = 1
    enabled = True
    transport = "api"

    def __init__(self):
        self.calls = 0
        self.entered = threading.Event()
        self.release = threading.Event()

    def ingest(self, repo, *, cancel_event=None):
        self.calls += 1
        self.entered.set()
        self.release.wait(5)
        return SourceStats()


class TestBackgroundScraping(unittest.TestCase):
    def setUp(self):
        self.repo = connect_repo(":memory:")
        self.source = BlockingSource()
        self.orchestrator = ScrapeOrchestrator(self.repo, [self.source], sleep=lambda _: None)
        self.settings = Settings(scrape_interval_minutes=15)
        self.client = create_app(self.repo, self.orchestrator, config=TEST_CONFIG).test_client()

    def tearDown(self):
        self.source.release.set()
        self.repo.close()

    def test_tick_and_route_share_one_run_lock(self):
        scheduler = build_scheduler(self.orchestrator, 15, False)
        job = scheduler.jobs[0]
        self.assertIs(job.job_func.args[0], self.orchestrator)
        self.assertEqual(job.interval, 15)

        runner = threading.Thread(target=self.orchestrator.run)
        runner.start()
        self.assertTrue(self.source.entered.wait(5))

        # an overlapping tick is skipped, and a manual trigger is refused
        scheduler.run_all()
        self.assertEqual(self.client.post("/api/scrape").status_code, 409)
        self.assertEqual(self.source.calls, 1)

        self.source.release.set()
        runner.join(5)
        self.assertFalse(self.orchestrator.running)

    @patch("web_app.run_pending_forever")
    def test_background_thread_scrapes_then_schedules(self, mock_forever):
        self.source.release.set()
        thread = start_background_scraping(self.orchestrator, self.settings)
        thread.join(5)
        self.assertTrue(thread.daemon)
        self.assertEqual(self.source.calls, 1)
        scheduler = mock_forever.call_args[0][0]
        self.assertIs(scheduler.jobs[0].job_func.args[0], self.orchestrator)
        self.assertEqual(scheduler.jobs[0].interval, 15)


class TestDaysUntil(unittest.TestCase):
    def test_rounds_up_partial_days(self):
        now = datetime(2025, 5, 1, 12, tzinfo=timezone.utc)
        self.assertEqual(_days_until("2025-05-03T00:00:00Z", now), 2)
        self.assertEqual(_days_until("2025-04-30T00:00:00Z", now), -1)

    def test_missing_or_bad(self):
        self.assertIsNone(_days_until(None))
        self.assertIsNone(_days_until("soon"))


if __name__ == "__main__":
    unittest.main()
