import unittest
from lib.chart.normalizer import (
    build_search_query,
    clean_text,
    primary_artist,
)


class CleanTextTests(unittest.TestCase):
    def test_decodes_entities_and_strips_tags(self):
        self.assertEqual(clean_text("Don&#039;t <b>Stop</b>"), "Don't Stop")
        self.assertEqual(clean_text("Tom &amp; Jerry"), "Tom & Jerry")

    def test_collapses_whitespace(self):
        self.assertEqual(clean_text("\n\t  Song \n\n  A  "), "Song A")

    def test_is_idempotent_on_normalized_text(self):
        once = clean_text("  <span>Beyonc&eacute;</span>   Live ")
        self.assertEqual(once, "Beyoncé Live")
        self.assertEqual(clean_text(once), once)

    def test_double_escaped_input_settles_in_one_call(self):
        cases = {
            "Tom &amp;amp; Jerry": "Tom & Jerry",
            "&lt;b&gt;x": "x",
            "&amp;lt;i&amp;gt;Song&amp;lt;/i&amp;gt; A": "Song A",
        }
        for raw, expected in cases.items():
            once = clean_text(raw)
            self.assertEqual(once, expected, raw)
            self.assertEqual(clean_text(once), once, raw)

    def test_malformed_input_is_best_effort(self):
        self.assertEqual(clean_text("Broken <tag"), "Broken <tag")
        self.assertEqual(clean_text(""), "")
        self.assertEqual(clean_text(None), "")


class SearchQueryTests(unittest.TestCase):
    def test_primary_artist_cuts_at_delimiters(self):
        self.assertEqual(primary_artist("Artist A, Artist B"), "Artist A")
        self.assertEqual(primary_artist("Artist A & Artist B"), "Artist A")
        self.assertEqual(primary_artist("Artist A Featuring Guest"), "Artist A")
        self.assertEqual(primary_artist("Artist A featuring Guest"), "Artist A")
        self.assertEqual(primary_artist("Artist A feat. Guest"), "Artist A")
        self.assertEqual(primary_artist("Solo"), "Solo")

    def test_build_search_query(self):
        self.assertEqual(build_search_query("Song A", "Artist X"), "Song A Artist X")
        self.assertEqual(
            build_search_query("Luther", "Kendrick Lamar & SZA"),
            "Luther Kendrick Lamar",
        )


if __name__ == "__main__":
    unittest.main()
