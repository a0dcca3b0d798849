import unittest

from hpcjobs.errors import (
    DangerousCharacterError,
    InvalidNameError,
    InvalidNotesError,
    ReservedNameError,
)
from hpcjobs.utilities.string_validation import (
    DEFAULT_DANGEROUS_TEXT,
    append_description,
    canonicalize_notes,
    check_dangerous_text,
    convert_control_characters,
    find_dangerous_text,
    is_blank,
    normalize_notes,
    notes_equivalent,
    validate_env_var_name,
)
from tests.utilities.utilities import exact


class TestIsBlank(unittest.TestCase):
    def test_blank(self):
        for text in [None, "", " ", "\t\n"]:
            with self.subTest(text=text):
                self.assertTrue(is_blank(text))

        self.assertFalse(is_blank(" a "))


class TestDangerousText(unittest.TestCase):
    def test_find(self):
        """The first control character, or else the first dangerous substring, is
        found; tabs are allowed."""

        self.assertIsNone(find_dangerous_text("plain\ttext", DEFAULT_DANGEROUS_TEXT))
        self.assertEqual("\x07", find_dangerous_text("a|b\x07", DEFAULT_DANGEROUS_TEXT))
        self.assertEqual("|", find_dangerous_text("a|b", DEFAULT_DANGEROUS_TEXT))
        self.assertEqual("$(", find_dangerous_text("$(ls)", DEFAULT_DANGEROUS_TEXT))
        self.assertIsNone(find_dangerous_text("$HOME", DEFAULT_DANGEROUS_TEXT))

    def test_check_raises(self):
        """A DangerousCharacterError names the entry and the text found."""

        with self.assertRaisesRegex(
            DangerousCharacterError,
            exact("Dangerous character: application argument 'a' contains the disallowed text ';'."),
        ):
            check_dangerous_text("x;y", "application argument", "a", DEFAULT_DANGEROUS_TEXT)

        check_dangerous_text(None, "application argument", "a", DEFAULT_DANGEROUS_TEXT)

    def test_convert_control_characters(self):
        self.assertEqual("a\nb\nc", convert_control_characters("a\r\nb\rc", "A"))
        with self.assertRaises(DangerousCharacterError):
            convert_control_characters("a\x1bb", "A")


class TestValidateEnvVarName(unittest.TestCase):
    def test_valid(self):
        for name in ["A", "_a", "abc_123", "HPCJOBS"]:
            with self.subTest(name=name):
                self.assertEqual(name, validate_env_var_name(name, "job request", "_HPCJOBS"))

    def test_invalid(self):
        for name in ["", "1A", "A B", "A=B", None, 3]:
            with self.subTest(name=name):
                with self.assertRaises(InvalidNameError):
                    validate_env_var_name(name, "job request", "_HPCJOBS")

    def test_reserved(self):
        with self.assertRaisesRegex(
            ReservedNameError,
            exact(
                "Reserved environment variable: '_HPCJOBS_DIR' in the system definition "
                "begins with the reserved prefix '_HPCJOBS'."
            ),
        ):
            validate_env_var_name("_HPCJOBS_DIR", "system definition", "_HPCJOBS")


class TestNotes(unittest.TestCase):
    def test_canonicalize(self):
        self.assertIsNone(canonicalize_notes(None, "d", "n"))
        self.assertEqual("{}", canonicalize_notes(" ", "d", "n"))
        self.assertEqual('{"a": 1, "b": 2}', canonicalize_notes('{"b": 2, "a": 1}', "d", "n"))
        self.assertEqual('{"a": 1}', canonicalize_notes({"a": 1}, "d", "n"))

    def test_canonicalize_invalid(self):
        for notes in ["[]", "42", "{bad", '"text"']:
            with self.subTest(notes=notes):
                with self.assertRaises(InvalidNotesError) as cm:
                    canonicalize_notes(notes, "environment variable", "A")
                self.assertEqual("INVALID_NOTES", cm.exception.msg_key)

    def test_equivalence(self):
        """Missing, blank and empty-object notes are all equivalent."""

        for notes in [None, "", "  ", "{}", {}]:
            with self.subTest(notes=notes):
                self.assertEqual("{}", normalize_notes(notes))
                self.assertTrue(notes_equivalent(notes, None))

        self.assertTrue(notes_equivalent('{"a": 1, "b": 2}', {"b": 2, "a": 1}))
        self.assertFalse(notes_equivalent('{"a": 1}', '{"a": 2}'))


class TestAppendDescription(unittest.TestCase):
    def test_append(self):
        self.assertEqual("a\n\nb", append_description("a", "b"))
        self.assertEqual("a", append_description("a", " "))
        self.assertEqual("b", append_description(None, "b"))
        self.assertIsNone(append_description(None, None))


if __name__ == "__main__":
    unittest.main()
