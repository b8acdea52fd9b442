import unittest

from tenderwatch.errors import RecordError
from tenderwatch.ingestion.mappings import (
    map_nsw_detail,
    map_ocds_contract,
    map_ocds_notice,
    map_rss_entry,
)


def contract_release(**contract_overrides):
    contract = {
        "id": "CN3912345",
        "title": "Replacement of Sydney Harbour Bridge expansion joints",
        "description": "Design and replace deck expansion joints",
        "value": {"amount": 2400000, "currency": "AUD"},
        "dateSigned": "2025-03-10T00:00:00Z",
        "period": {"startDate": "2025-04-01", "endDate": "2026-04-01"},
    }
    contract.update(contract_overrides)
    return {
        "ocid": "prod-ocds-1",
        "parties": [
            {"name": "Transport for NSW", "roles": ["procuringEntity"], "address": {"region": "NSW", "locality": "Sydney"}},
            {"name": "Acme Civil Pty Ltd", "roles": ["supplier"], "address": {"region": "VIC", "locality": "Melbourne"}},
        ],
        "contracts": [contract],
    }


class TestOcdsContract(unittest.TestCase):
    def test_maps_awarded_contract(self):
        record = map_ocds_contract(contract_release())
        self.assertEqual(record.id, "CN3912345")
        self.assertEqual(record.buyer_name, "Transport for NSW")
        self.assertEqual(record.supplier_name, "Acme Civil Pty Ltd")
        self.assertEqual(record.value_amount, 2400000.0)
        self.assertEqual(record.date_signed, "2025-03-10T00:00:00Z")
        self.assertEqual(record.period_start, "2025-04-01T00:00:00Z")
        self.assertEqual(record.state, "NSW")
        self.assertEqual(record.locality, "Sydney")
        self.assertEqual(record.tender_status, "awarded")
        self.assertEqual(record.source, "AusTender")
        self.assertIsNone(record.category)

    def test_falls_back_to_ocid(self):
        record = map_ocds_contract(contract_release(id=None))
        self.assertEqual(record.id, "prod-ocds-1")

    def test_region_falls_back_to_supplier(self):
        release = contract_release()
        del release["parties"][0]["address"]
        self.assertEqual(map_ocds_contract(release).state, "VIC")

    def test_missing_contract_is_a_record_error(self):
        with self.assertRaises(RecordError):
            map_ocds_contract({"ocid": "x", "contracts": []})

    def test_missing_text_is_a_record_error(self):
        with self.assertRaises(RecordError):
            map_ocds_contract(contract_release(title="", description=None))

    def test_bad_value_nulls_only_that_field(self):
        record = map_ocds_contract(contract_release(value={"amount": "tbc"}, dateSigned="soon"))
        self.assertIsNone(record.value_amount)
        self.assertIsNone(record.date_signed)
        self.assertEqual(record.value_currency, "AUD")


class TestOcdsNotice(unittest.TestCase):
    def release(self, **tender_overrides):
        tender = {
            "id": "ATM-2025-77",
            "title": "Stormwater drainage renewal",
            "description": "Renewal of culverts",
            "value": {"amount": "350000"},
            "tenderPeriod": {"endDate": "2025-05-01T02:00:00Z"},
        }
        tender.update(tender_overrides)
        return {
            "ocid": "ocds-notice-77",
            "parties": [{"name": "Department of Defence", "roles": ["buyer"], "address": {"region": "Queensland"}}],
            "tender": tender,
        }

    def test_maps_open_notice(self):
        record = map_ocds_notice(self.release())
        self.assertEqual(record.id, "ocds-notice-77")
        self.assertEqual(record.tender_status, "open")
        self.assertEqual(record.closing_date, "2025-05-01T02:00:00Z")
        self.assertEqual(record.buyer_name, "Department of Defence")
        self.assertEqual(record.state, "QLD")
        self.assertEqual(record.value_amount, 350000.0)
        self.assertEqual(record.external_url, "https://www.tenders.gov.au/Cn/Show/ATM-2025-77")

    def test_unknown_agency_default(self):
        release = self.release()
        release["parties"] = []
        self.assertEqual(map_ocds_notice(release).buyer_name, "Unknown Agency")

    def test_no_tender_block(self):
        with self.assertRaises(RecordError):
            map_ocds_notice({"ocid": "x"})


class TestRssEntry(unittest.TestCase):
    def test_extracts_cn_id_closing_and_value(self):
        entry = {
            "title": "CN4000123 - Road resurfacing",
            "link": "https://www.tenders.gov.au/Cn/Show/CN4000123",
            "summary": "<p>Resurfacing in Darwin NT. Closing: 15/04/2025. Estimated $1,200,000</p>",
        }
        record = map_rss_entry(entry)
        self.assertEqual(record.id, "CN4000123")
        self.assertEqual(record.closing_date, "2025-04-15T00:00:00Z")
        self.assertEqual(record.value_amount, 1200000.0)
        self.assertEqual(record.state, "NT")
        self.assertEqual(record.buyer_name, "Australian Government")
        self.assertEqual(record.tender_status, "open")
        self.assertEqual(record.source, "AusTender-RSS")

    def test_id_without_cn_is_stable_per_url(self):
        entry = {"title": "Park upgrade", "link": "https://example.gov.au/t/9?utm_source=rss"}
        same = {"title": "Park upgrade (v2)", "link": "https://example.gov.au/t/9"}
        self.assertEqual(map_rss_entry(entry).id, map_rss_entry(same).id)
        self.assertTrue(map_rss_entry(entry).id.startswith("AusTender-RSS:"))

    def test_missing_link_is_a_record_error(self):
        with self.assertRaises(RecordError):
            map_rss_entry({"title": "No link"})


class TestNswDetail(unittest.TestCase):
    def test_open_when_closing_date_present(self):
        record = map_nsw_detail({
            "reference": "RFT-1234",
            "title": "School hall refurbishment",
            "agency": "Department of Education",
            "closing_date": "30/06/2025",
            "url": "https://buy.nsw.gov.au/notices/1",
        })
        self.assertEqual(record.id, "NSW-RFT-1234")
        self.assertEqual(record.tender_status, "open")
        self.assertEqual(record.state, "NSW")
        self.assertEqual(record.closing_date, "2025-06-30T00:00:00Z")

    def test_awarded_when_only_award_date(self):
        record = map_nsw_detail({
            "reference": "CA-77",
            "title": "Road upgrade",
            "awarded_date": "01/02/2025",
            "supplier": "Roadworks Co",
        })
        self.assertEqual(record.tender_status, "awarded")
        self.assertEqual(record.date_signed, "2025-02-01T00:00:00Z")
        self.assertEqual(record.supplier_name, "Roadworks Co")

    def test_needs_reference_or_url(self):
        with self.assertRaises(RecordError):
            map_nsw_detail({"title": "Orphan"})


if __name__ == "__main__":
    unittest.main()
