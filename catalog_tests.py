#!/usr/bin/env python3
"""
Test Catalog Generator for the Download Router companion

Scans all Python test files and generates a markdown table cataloging all numbered tests
(`# TEST###: description` directly above the test function) with their descriptions.
"""

import re
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass


TEST_COMMENT = re.compile(r'^\s*#\s*TEST(\d+):\s*(.*)$')
TEST_FUNCTION = re.compile(r'^\s*(?:async\s+)?def\s+(test_\w+)\s*\(')
DECORATOR = re.compile(r'^\s*@')


@dataclass
class TestInfo:
    """Information about a single test"""
    number: str
    function_name: str
    description: str
    file_path: str
    line_number: int


def extract_test_info(file_path: Path, root: Optional[Path] = None) -> List[TestInfo]:
    """
    Extract test information from a Python test file.

    Returns a list of TestInfo objects for all numbered tests found.
    """
    tests = []

    try:
        lines = file_path.read_text(encoding='utf-8').splitlines()
    except (OSError, UnicodeDecodeError) as e:
        print(f"Warning: Could not read {file_path}: {e}")
        return tests

    try:
        relative_path = file_path.relative_to(root) if root else file_path
    except ValueError:
        relative_path = file_path

    for i, line in enumerate(lines):
        comment = TEST_COMMENT.match(line)
        if not comment:
            continue

        # The comment belongs to the next def, skipping decorators
        j = i + 1
        while j < len(lines) and DECORATOR.match(lines[j]):
            j += 1
        if j >= len(lines):
            continue
        function = TEST_FUNCTION.match(lines[j])
        if not function:
            continue

        tests.append(TestInfo(
            number=comment.group(1),
            function_name=function.group(1),
            description=comment.group(2).strip(),
            file_path=str(relative_path),
            line_number=j + 1,
        ))

    return tests


def scan_directory(root_dir: Path) -> List[TestInfo]:
    """
    Recursively scan a directory for Python test files and extract test information.
    """
    all_tests = []

    for py_file in sorted(root_dir.rglob('test_*.py')):
        all_tests.extend(extract_test_info(py_file, root_dir.parent))

    return all_tests


def generate_markdown_table(tests: List[TestInfo], output_file: str):
    """
    Generate a markdown table cataloging all tests.
    """
    tests_sorted = sorted(tests, key=lambda t: int(t.number))

    with open(output_file, 'w', encoding='utf-8') as f:
        f.write("# Download Router Test Catalog\n\n")
        f.write(f"**Total Tests:** {len(tests_sorted)}\n\n")
        f.write("This catalog lists all numbered tests in the download-router companion.\n\n")

        f.write("| Test # | Function Name | Description | Location |\n")
        f.write("|--------|---------------|-------------|----------|\n")

        for test in tests_sorted:
            # Escape pipe characters in description
            description = test.description.replace('|', '\\|')
            location = f"{test.file_path}:{test.line_number}"
            f.write(f"| test{test.number} | `{test.function_name}` | {description} | {location} |\n")

        f.write("\n---\n\n")
        f.write(f"*Total numbered tests: {len(tests_sorted)}*\n")


def main():
    """Main entry point"""
    script_dir = Path(__file__).parent

    print("Scanning for numbered tests...")

    tests_dir = script_dir / 'tests'
    if tests_dir.exists():
        all_tests = scan_directory(tests_dir)
        print(f"  Found {len(all_tests)} tests in tests/")
    else:
        print(f"  Warning: {tests_dir} not found")
        all_tests = []

    output_file = script_dir / 'TEST_CATALOG.md'
    generate_markdown_table(all_tests, str(output_file))
    print(f"Catalog written to {output_file}")

    test_ranges = {}
    for test in all_tests:
        century = (int(test.number) // 100) * 100
        range_key = f"{century:03d}-{century+99:03d}"
        test_ranges[range_key] = test_ranges.get(range_key, 0) + 1

    print("\nTest distribution by range:")
    for range_key in sorted(test_ranges.keys()):
        print(f"  {range_key}: {test_ranges[range_key]} tests")


if __name__ == '__main__':
    main()
