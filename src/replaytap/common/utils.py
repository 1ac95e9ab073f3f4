"""
ReplayTap Common Utilities

Loading recorded test sets from disk and small parsing helpers.
"""

import json
from pathlib import Path
from typing import List, Dict, Any, Union

import yaml

from ..models import HTTP, TestCase

TEST_CASE_SUFFIXES = ('.yaml', '.yml', '.json')


def parse_json_body(body: Union[str, bytes, None], default: Any = None) -> Any:
    """
    Decode a recorded or replayed body as JSON.

    Blank bodies and bodies that are not JSON give ``default``, so callers
    can fall back to comparing them as text.

    Example:
        parse_json_body('{"id": 1}')          # -> {'id': 1}
        parse_json_body('<html>', default={})  # -> {}
    """
    if isinstance(body, bytes):
        body = body.decode('utf-8', errors='replace')
    if body is None or not body.strip():
        return default

    try:
        return json.loads(body)
    except ValueError:
        return default

    try:
        return json.loads(json_string)
    except (json.JSONDecodeError, TypeError, ValueError):
        return default


class TestSetLoader:
    """
    Loader for recorded test sets.

    Expected layout:

        <path>/
            test-set-0/
                tests/
                    test-1.yaml
                    test-2.yaml
                mocks.yaml
            test-set-1/
                ...

    Each test-case file holds one document in either the test-case shape
    ({"kind", "name", "spec": {"req", "resp"}}) or the flat capture shape.
    A JSON file may also hold a list of captures, or {"requests": [...]}.

    Example:
        loader = TestSetLoader("./recordings")
        for test_set_id in loader.list_test_sets():
            test_cases = loader.load(test_set_id)
    """

    __test__ = False  # not a pytest class

    def __init__(self, path: str):
        """
        Initialize test set loader.

        Args:
            path: Directory holding one sub-directory per test set
        """
        self.path = Path(path)

    def list_test_sets(self) -> List[str]:
        """
        Discover test sets under the loader's path.

        Returns:
            Sorted list of test set ids

        Raises:
            FileNotFoundError: If the path doesn't exist
        """
        if not self.path.is_dir():
            raise FileNotFoundError(f"Test set directory not found: {self.path}")

        return sorted(
            entry.name for entry in self.path.iterdir()
            if entry.is_dir() and (entry / 'tests').is_dir()
        )

    def load(self, test_set_id: str) -> List[TestCase]:
        """
        Load every test case of a test set, ordered by file name.

        Raises:
            FileNotFoundError: If the test set has no tests directory
            ValueError: If a test-case document is malformed
        """
        tests_dir = self.path / test_set_id / 'tests'
        if not tests_dir.is_dir():
            raise FileNotFoundError(f"Test set not found: {tests_dir}")

        test_cases: List[TestCase] = []
        for file_path in sorted(tests_dir.iterdir()):
            if file_path.suffix.lower() not in TEST_CASE_SUFFIXES:
                continue
            for document in self._read_documents(file_path):
                test_cases.append(self._to_test_case(document, file_path))

        return test_cases

    def mock_file(self, test_set_id: str) -> Path:
        """Path of the mocks file backing a test set."""
        return self.path / test_set_id / 'mocks.yaml'

    def _read_documents(self, file_path: Path) -> List[Dict[str, Any]]:
        with open(file_path, 'r', encoding='utf-8') as f:
            if file_path.suffix.lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if data is None:
            return []
        if isinstance(data, dict):
            # {"requests": [...]} wrapper used by capture exports
            if 'requests' in data and isinstance(data['requests'], list):
                return data['requests']
            return [data]
        if isinstance(data, list):
            return data

        raise ValueError(
            f"Unexpected test case format in {file_path}. "
            f"Expected a mapping or a list, got {type(data).__name__}"
        )

    @staticmethod
    def _to_test_case(document: Any, file_path: Path) -> TestCase:
        if not isinstance(document, dict):
            raise ValueError(f"Malformed test case in {file_path}: expected a mapping")

        document = dict(document)
        if 'spec' in document:
            document.setdefault('name', file_path.stem)
        test_case = TestCase.from_dict(document)

        if test_case.kind == HTTP and (test_case.http_req is None or not test_case.http_req.url):
            raise ValueError(f"Malformed test case in {file_path}: missing request URL")

        return test_case


def load_test_set(path: str, test_set_id: str) -> List[TestCase]:
    """
    Convenience function to load a test set in one call.

    Example:
        test_cases = load_test_set("./recordings", "test-set-0")
    """
    return TestSetLoader(path).load(test_set_id)

