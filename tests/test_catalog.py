"""Tests for the test catalog generator"""

import catalog_tests


SAMPLE = '''
import pytest


# T3ST002: second test
def test_second():
    pass


# T3ST001: first test | with a pipe
@pytest.mark.asyncio
async def test_first():
    pass


# Not numbered
def test_unnumbered():
    pass
'''.replace("T3ST", "TEST")


# TEST450: numbered comments are matched to the following test function, skipping decorators
def test_extract_test_info(tmp_path):
    path = tmp_path / "test_sample.py"
    path.write_text(SAMPLE, encoding="utf-8")

    tests = catalog_tests.extract_test_info(path, tmp_path)

    assert [(t.number, t.function_name, t.description) for t in tests] == [
        ("002", "test_second", "second test"),
        ("001", "test_first", "first test | with a pipe"),
    ]
    assert tests[0].file_path == "test_sample.py"
    assert tests[1].line_number == 12


# TEST451: the catalog is sorted by number and escapes pipes
def test_generate_markdown_table(tmp_path):
    tests_dir = tmp_path / "tests"
    tests_dir.mkdir()
    (tests_dir / "test_sample.py").write_text(SAMPLE, encoding="utf-8")

    output = tmp_path / "TEST_CATALOG.md"
    catalog_tests.generate_markdown_table(catalog_tests.scan_directory(tests_dir), str(output))

    text = output.read_text(encoding="utf-8")
    assert "**Total Tests:** 2" in text
    assert text.index("test001") < text.index("test002")
    assert "first test \\| with a pipe" in text
