import unittest

from tenderwatch.classification.keywords import (
    CATEGORIES,
    CATEGORY_RULES,
    DEFAULT_CATEGORY,
    categorize,
    classify,
    is_construction_related,
)


class TestConstructionKeywords(unittest.TestCase):
    def test_substring_match_inside_longer_word(self):
        self.assertTrue(classify("Reconstruction of main hall", "").is_construction)

    def test_plain_services_text_is_not_construction(self):
        self.assertFalse(classify("Legal advisory services", "Provision of probate advice").is_construction)

    def test_empty_text(self):
        self.assertFalse(is_construction_related(""))
        self.assertFalse(is_construction_related(None))
        self.assertFalse(classify("", "").is_construction)

    def test_case_insensitive(self):
        self.assertTrue(is_construction_related("MOTORWAY Upgrade"))

    def test_description_alone_can_match(self):
        self.assertTrue(classify("Panel arrangement", "stormwater renewal works").is_construction)


class TestCategorize(unittest.TestCase):
    def test_hospital_beats_road(self):
        self.assertEqual(categorize("Hospital access road upgrade", ""), "Hospitals & Healthcare")

    def test_defence_beats_everything(self):
        self.assertEqual(categorize("Barracks hospital and school", "runway works"), "Defence")

    def test_every_dual_match_resolves_to_higher_priority(self):
        samples = {
            "Defence": "military",
            "Airports & Aviation": "runway",
            "Hospitals & Healthcare": "hospital",
            "Schools & Education": "school",
            "Roads & Highways": "highway",
            "Bridges & Tunnels": "tunnel",
            "Drainage & Water": "stormwater",
            "Landscaping & Parks": "playground",
            "Rail": "metro",
            "Buildings & Facilities": "library",
            "Civil & Infrastructure": "civil works",
            "Council Services": "toilet block",
        }
        names = [name for name, _ in CATEGORY_RULES]
        for i, higher in enumerate(names):
            for lower in names[i + 1:]:
                text = f"{samples[lower]} and {samples[higher]}"
                self.assertEqual(categorize(text, ""), higher, text)

    def test_unmatched_defaults_to_general_construction(self):
        self.assertEqual(categorize("Fencing panel supply", ""), DEFAULT_CATEGORY)

    def test_bridge_scenario(self):
        self.assertEqual(categorize("Replacement of Sydney Harbour Bridge expansion joints", ""), "Bridges & Tunnels")

    def test_category_always_in_taxonomy(self):
        for title in ("", "road", "random words", "Rail corridor", "depot"):
            self.assertIn(categorize(title, ""), CATEGORIES)
        self.assertEqual(len(CATEGORIES), 13)


class TestDeterminism(unittest.TestCase):
    def test_repeated_calls_are_identical(self):
        pairs = [
            ("Hospital car park", "multi-storey"),
            ("Reconstruction of main hall", ""),
            ("Consulting", "strategy review"),
        ]
        for title, description in pairs:
            first = classify(title, description)
            for _ in range(5):
                self.assertEqual(classify(title, description), first)


if __name__ == "__main__":
    unittest.main()
