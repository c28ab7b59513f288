"""Tests for changed-file filtering."""

from prtrail_core.utils.code import is_code_file, is_excluded, reviewable_files


class TestIsCodeFile:
    def test_python_file_is_code(self):
        assert is_code_file("app/services/user.py") is True

    def test_tsx_file_is_code(self):
        assert is_code_file("src/components/Button.tsx") is True

    def test_image_is_not_code(self):
        assert is_code_file("assets/logo.png") is False

    def test_archive_is_not_code(self):
        assert is_code_file("dist/bundle.tar.gz") is False

    def test_lock_file_is_not_code(self):
        assert is_code_file("poetry.lock") is False

    def test_case_insensitive(self):
        assert is_code_file("image.PNG") is False


class TestIsExcluded:
    def test_full_path_glob(self):
        assert is_excluded("src/generated/api.py", ["src/generated/*.py"])

    def test_basename_glob(self):
        assert is_excluded("static/js/app.min.js", ["*.min.js"])

    def test_directory_prefix(self):
        assert is_excluded("migrations/0001_initial.py", ["migrations/"])

    def test_nested_directory(self):
        assert is_excluded("app/migrations/0001_initial.py", ["migrations"])

    def test_no_partial_directory_match(self):
        assert not is_excluded("app/migrations_helper.py", ["migrations"])

    def test_no_patterns(self):
        assert not is_excluded("app/main.py", [])


class TestReviewableFiles:
    def test_filters_assets_and_excluded_keeping_order(self):
        files = ["b.py", "logo.png", "vendor/lib.js", "a.py"]
        assert reviewable_files(files, ["vendor/"]) == ["b.py", "a.py"]
