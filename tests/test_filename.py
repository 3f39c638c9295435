import unittest

from lib.filename import (
    build_filename,
    normalize_path,
    sanitize_filename,
    sanitize_folder_path,
)

UNSAFE = '<>:"\\|?*'


class SanitizeFilenameTests(unittest.TestCase):
    def test_separator_and_punctuation_become_spaces(self):
        self.assertEqual(sanitize_filename("My/Song: Title??"), "My Song Title")
        self.assertEqual(sanitize_filename('a<b>c:d"e\\f|g?h*i'), "a b c d e f g h i")

    def test_control_characters(self):
        self.assertEqual(sanitize_filename("abc\x00\x1fdef\x7f"), "abcdef")
        self.assertEqual(sanitize_filename("a\tb\nc\r\nd"), "a b c d")
        self.assertEqual(sanitize_filename("x\x85y"), "xy")

    def test_trims_dots_spaces_and_underscores(self):
        self.assertEqual(sanitize_filename("  name.  "), "name")
        self.assertEqual(sanitize_filename("...hidden"), "hidden")
        self.assertEqual(sanitize_filename("a___b"), "a_b")
        self.assertEqual(sanitize_filename("__a__"), "a")
        self.assertEqual(sanitize_filename("a._"), "a")

    def test_empty_result_falls_back(self):
        for raw in ["", "   ", "...", "???", "_ _", None]:
            self.assertEqual(sanitize_filename(raw), "Unknown")

    def test_invalid_text_becomes_underscore(self):
        self.assertEqual(sanitize_filename("a\udcffb"), "a_b")
        self.assertEqual(sanitize_filename(b"bad\xffname"), "bad_name")
        self.assertEqual(sanitize_filename("caf\u00e9".encode("utf-8")), "café")

    def test_idempotent_and_safe(self):
        samples = [
            "My/Song: Title??",
            " . _a_ . ",
            "x._._",
            "AC/DC - Back In Black",
            "\x01\x02",
            "Beyoncé  -  Déjà Vu",
            "a\udcff\udcfe_b",
            "name. _",
            "tab\there",
        ]
        for raw in samples:
            once = sanitize_filename(raw)
            self.assertEqual(sanitize_filename(once), once, raw)
            self.assertTrue(once)
            self.assertFalse(any(c in once for c in UNSAFE), once)
            self.assertFalse(any(ord(c) < 0x20 or ord(c) == 0x7F for c in once), once)


class SanitizeFolderPathTests(unittest.TestCase):
    def test_posix_root_is_kept(self):
        self.assertEqual(sanitize_folder_path("/music/My:Album/", sep="/"), "/music/My Album")
        self.assertEqual(sanitize_folder_path("/", sep="/"), "/")

    def test_relative_path_drops_empty_segments(self):
        self.assertEqual(sanitize_folder_path("a//b?", sep="/"), "a/b")

    def test_empty_path_stays_empty(self):
        self.assertEqual(sanitize_folder_path("", sep="/"), "")
        self.assertEqual(sanitize_folder_path("", sep="\\"), "")
        self.assertEqual(sanitize_folder_path(None, sep="/"), "")
        self.assertEqual(sanitize_folder_path("music", sep="/"), "music")

    def test_drive_letter_is_kept(self):
        self.assertEqual(
            sanitize_folder_path("C:\\Music\\Best: Of", sep="\\"),
            "C:\\Music\\Best Of",
        )
        self.assertEqual(sanitize_folder_path("D:/Charts/2024", sep="\\"), "D:\\Charts\\2024")

    def test_unc_prefix_is_verbatim(self):
        self.assertEqual(
            sanitize_folder_path("\\\\my:host\\sh?re\\Bad|Name", sep="\\"),
            "\\\\my:host\\sh?re\\Bad Name",
        )
        self.assertEqual(
            sanitize_folder_path("\\\\\\server\\\\share\\x", sep="\\"),
            "\\\\server\\share\\x",
        )

    def test_unc_with_forward_slashes(self):
        self.assertEqual(sanitize_folder_path("//server/share/a*b", sep="/"), "//server/share/a b")

    def test_normalize_path(self):
        self.assertEqual(normalize_path("C:/Music/x", sep="\\"), "C:\\Music\\x")
        self.assertEqual(normalize_path("\\\\srv/share/x", sep="\\"), "\\\\srv\\share\\x")
        self.assertEqual(normalize_path("/a/b", sep="/"), "/a/b")


class BuildFilenameTests(unittest.TestCase):
    def test_named_layouts(self):
        self.assertEqual(build_filename("Song", "Artist"), "Song - Artist.flac")
        self.assertEqual(build_filename("Song", "Artist", filename_format="artist-title"), "Artist - Song.flac")
        self.assertEqual(build_filename("Song", "Artist", filename_format="title"), "Song.flac")

    def test_track_number_prefix(self):
        self.assertEqual(
            build_filename("Song", "Artist", include_track_number=True, position=3),
            "03. Song - Artist.flac",
        )
        self.assertEqual(
            build_filename("Song", "Artist", include_track_number=True, position=0),
            "Song - Artist.flac",
        )

    def test_template_placeholders(self):
        name = build_filename(
            "A/B",
            "Artist",
            album_name="Album?",
            album_artist="Various",
            release_date="2024-05-01",
            filename_format="{track}. {artist} - {title} ({year}) [{album}] {album_artist}",
            position=7,
        )
        self.assertEqual(name, "07. Artist - A B (2024) [Album] Various.flac")

    def test_playlist_and_creator(self):
        name = build_filename(
            "Song", "Artist",
            playlist_name="Hot 100", playlist_owner="Billboard",
            filename_format="{playlist} - {creator} - {title}",
        )
        self.assertEqual(name, "Hot 100 - Billboard - Song.flac")

    def test_missing_track_removes_connector(self):
        self.assertEqual(build_filename("Song", "A", filename_format="{track}. {title}"), "Song.flac")
        self.assertEqual(build_filename("Song", "A", filename_format="{track} - {title}"), "Song.flac")
        self.assertEqual(build_filename("Song", "A", filename_format="{track}{title}"), "Song.flac")

    def test_missing_disc_removes_connector(self):
        self.assertEqual(
            build_filename("Song", "A", filename_format="{disc}-{track} {title}", position=5),
            "05 Song.flac",
        )
        self.assertEqual(
            build_filename("Song", "A", filename_format="{disc}-{track} {title}", position=5, disc_number=2),
            "2-05 Song.flac",
        )


if __name__ == "__main__":
    unittest.main()
