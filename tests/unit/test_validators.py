"""Tests for validators."""

import pytest

from makyno.utils.validators import resolve_inside, validate_branch_name, validate_identifier


class TestValidateIdentifier:
    def test_accepts_task_ids(self):
        assert validate_identifier("feat-1700000000000-ab12cd") == "feat-1700000000000-ab12cd"

    @pytest.mark.parametrize("value", ["", "../x", "a/b", "a b", "x" * 129])
    def test_rejects_unsafe_values(self, value):
        with pytest.raises(ValueError):
            validate_identifier(value, "task_id")


class TestValidateBranchName:
    def test_accepts_prefixed_branch(self):
        assert validate_branch_name("feat/feat-1-abc") == "feat/feat-1-abc"

    @pytest.mark.parametrize("value", ["", "/x", "x/", "a..b", "a b", "x@{1}"])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            validate_branch_name(value)


class TestResolveInside:
    def test_relative_path(self, tmp_path):
        assert resolve_inside(tmp_path, "src/app.py") == (tmp_path / "src" / "app.py").resolve()

    def test_root_itself(self, tmp_path):
        assert resolve_inside(tmp_path, ".") == tmp_path.resolve()

    def test_rejects_parent_escape(self, tmp_path):
        with pytest.raises(ValueError):
            resolve_inside(tmp_path / "sandbox", "../outside")

    def test_rejects_absolute_path(self, tmp_path):
        with pytest.raises(ValueError):
            resolve_inside(tmp_path, "/etc")

    def test_rejects_symlink_escape(self, tmp_path):
        root = tmp_path / "sandbox"
        root.mkdir()
        (root / "link").symlink_to(tmp_path)

        with pytest.raises(ValueError):
            resolve_inside(root, "link/secret")

    def test_rejects_sibling_with_common_prefix(self, tmp_path):
        (tmp_path / "sandbox").mkdir()
        (tmp_path / "sandbox-other").mkdir()

        with pytest.raises(ValueError):
            resolve_inside(tmp_path / "sandbox", "../sandbox-other/x")
