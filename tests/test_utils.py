"""Unit tests for prostate_survival.utils module.

Tests directory management, versioned file names and the output layout.
"""
import os

from prostate_survival.utils import ensure_dir, get_output_paths, versioned_name


class TestEnsureDir:
    """Tests for ensure_dir function."""

    def test_create_new_directory(self, tmp_path):
        """Test creating a new directory."""
        new_dir = tmp_path / "test_dir"
        assert not new_dir.exists()

        ensure_dir(str(new_dir))

        assert new_dir.is_dir()

    def test_existing_directory(self, tmp_path):
        """Test with existing directory (should not raise error)."""
        existing_dir = tmp_path / "existing"
        existing_dir.mkdir()

        ensure_dir(str(existing_dir))

        assert existing_dir.exists()

    def test_nested_directories(self, tmp_path):
        """Test creating nested directories."""
        nested_dir = tmp_path / "level1" / "level2" / "level3"

        ensure_dir(str(nested_dir))

        assert nested_dir.is_dir()


class TestVersionedName:
    """Tests for versioned_name function."""

    def test_basic_versioning(self):
        """Test basic version name generation."""
        name = versioned_name("pooled_cox")

        assert name.startswith("pooled_cox_")
        assert len(name) == len("pooled_cox_") + 15  # YYYYMMDD_HHMMSS

    def test_run_type_prefix(self):
        """Test that the run type is prepended."""
        name = versioned_name("pooled_cox", run_type="production")

        assert name.startswith("production_pooled_cox_")

    def test_timestamp_digits(self):
        """Test that the timestamp is date and time digits."""
        date, time = versioned_name("model").split("_")[-2:]

        assert len(date) == 8 and date.isdigit()
        assert len(time) == 6 and time.isdigit()


class TestGetOutputPaths:
    """Tests for get_output_paths function."""

    def test_layout(self, tmp_path):
        """Test the per-run directory layout."""
        base = str(tmp_path / "run")

        paths = get_output_paths("sample", base_dir=base)

        assert set(paths) == {"base_dir", "tables", "figures", "models", "logs"}
        assert paths["tables"] == os.path.join(base, "tables")
        for path in paths.values():
            assert os.path.isdir(path)

    def test_default_base(self, tmp_path, monkeypatch):
        """Test the default location under data/outputs/<run_type>."""
        monkeypatch.chdir(tmp_path)

        paths = get_output_paths("production")

        assert paths["base_dir"] == "data/outputs/production"
        assert (tmp_path / "data" / "outputs" / "production" / "figures").is_dir()
