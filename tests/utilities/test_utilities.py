import re
import unittest

from tests.utilities.utilities import exact


class TestExact(unittest.TestCase):
    def test_beginning_end_regex(self):
        """Test that the returned regex starts with '^' and ends with '$'."""

        msg = "foo"
        self.assertEqual(f"^{msg}$", exact("foo"))

    def test_parentheses(self):
        """Test that parentheses are escaped in the output regex."""

        self.assertEqual("^\\(foo\\)$", exact("(foo)"))

    def test_matches_only_the_given_string(self):
        """Test that the regex matches the string itself, including characters special
        in regular expressions, and nothing longer."""

        for string in ["windows\\path", "a.b", "[x]?", "{0}'s value: $(pwd)"]:
            with self.subTest(string=string):
                self.assertIsNotNone(re.search(exact(string), string))
                self.assertIsNone(re.search(exact(string), string + "!"))


if __name__ == "__main__":
    unittest.main()
