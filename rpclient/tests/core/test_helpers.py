"""Unit tests for shared helpers."""

from pathlib import Path

from rpclient.core.helpers import (
    generate_test_case_id,
    get_system_attributes,
    now,
    read_launches_from_file,
    save_launch_id_to_file,
)
from rpclient.core.models import FileAttachment


class TestTestCaseId:
    """Test case id derivation."""

    def test_without_code_ref(self) -> None:
        assert generate_test_case_id(None) is None
        assert generate_test_case_id("", [{"value": "x"}]) is None

    def test_code_ref_only(self) -> None:
        assert generate_test_case_id("tests/a.py:test") == "tests/a.py:test"

    def test_parameter_values(self) -> None:
        parameters = [{"key": "a", "value": "1"}, {"key": "b"}, {"key": "c", "value": 3}]
        assert generate_test_case_id("ref", parameters) == "ref[1,3]"

    def test_empty_parameters(self) -> None:
        assert generate_test_case_id("ref", []) == "ref[]"


class TestLaunchFiles:
    """Launch id files used for merging."""

    def test_save_and_read(self, tmp_path: Path) -> None:
        save_launch_id_to_file("abc", tmp_path)
        save_launch_id_to_file("def", tmp_path)
        (tmp_path / "unrelated.tmp").touch()

        assert read_launches_from_file(tmp_path) == ["abc", "def"]

    def test_read_empty_directory(self, tmp_path: Path) -> None:
        assert read_launches_from_file(tmp_path) == []


class TestMiscHelpers:
    """Timestamps, attributes and attachments."""

    def test_now_is_milliseconds(self) -> None:
        assert now() > 1_600_000_000_000

    def test_system_attributes(self) -> None:
        attributes = get_system_attributes()

        assert [attr["key"] for attr in attributes] == ["client", "os", "python"]
        assert all(attr["system"] for attr in attributes)
        assert attributes[0]["value"].startswith("rpclient|")

    def test_attachment_bytes(self) -> None:
        assert FileAttachment("a", b"ab").to_bytes() == b"ab"
        assert FileAttachment("a", "ab").to_bytes() == b"ab"
        assert FileAttachment("a", [97, 98]).to_bytes() == b"ab"
