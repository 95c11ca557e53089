import pytest

from comparator import compare, normalize, strip_comments


@pytest.mark.parametrize("raw, expected", [
    ("5\n", "5"),
    ("  a  b \t c  ", "a b c"),
    ("1\r\n2\r3", "1 2 3"),
    ("x\n\n\ny", "x y"),
    ("", ""),
    (None, ""),
])
def test_normalize(raw, expected):
    assert normalize(raw) == expected


def test_compare_exact_after_normalization():
    assert compare("hello world\n", "hello   world")
    assert compare("1 2\r\n3\n", "1 2\n3")


def test_compare_numeric_equivalence():
    assert compare("8.0", "8")
    assert compare("  -0.50 ", "-0.5")
    assert not compare("8.01", "8")


def test_compare_empty_values():
    assert compare("", "")
    assert compare(None, "")
    assert not compare("", "5")
    assert not compare("5", "")


def test_compare_rejects_different_text():
    assert not compare("six", "5")
    assert not compare("1 2 3", "1 2")
    assert not compare("abc", "abd")


def test_compare_is_case_sensitive():
    assert not compare("YES", "yes")


def test_strip_comments_python():
    code = "# read input\nprint(1)  # trailing\n"
    assert strip_comments(code, "python") == "print(1)"


def test_strip_comments_c_family():
    code = "/* header\n comment */\nint main() { return 0; } // done"
    assert strip_comments(code, "cpp") == "int main() { return 0; }"


def test_strip_comments_unknown_language_only_trims():
    assert strip_comments("  puts 1  ", "ruby") == "puts 1"


def test_comment_only_code_is_not_meaningful():
    assert strip_comments("// TODO: write the solution here", "javascript") == ""
