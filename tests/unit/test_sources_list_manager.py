"""
Unit tests for the channel swap around the apt sources list.
"""
import os
import pytest
from nbimage.exceptions import ChannelRestoreError
from nbimage.MANAGERS.sources_list_manager import SourcesListManager, file_sha256
from nbimage.MODELS.provisioning import ChannelSwapStep

UNSTABLE = "deb https://deb.debian.org/debian unstable main"


@pytest.fixture
def swap_step():
    return ChannelSwapStep(entry=UNSTABLE, packages=["ca-certificates=20211016"])


class TestSourcesListManager:
    """Tests for SourcesListManager."""

    def test_entry_present_only_inside_block(self, build_root, swap_step):
        manager = SourcesListManager(str(build_root))
        sources = build_root / "etc" / "apt" / "sources.list"
        original = sources.read_bytes()

        with manager.swapped(swap_step) as snapshot:
            assert UNSTABLE in sources.read_text()
            assert (build_root / "etc" / "apt" / "sources.list.backup").read_bytes() == original
            assert snapshot == file_sha256(str(sources.with_name("sources.list.backup")))

        assert sources.read_bytes() == original
        assert not (build_root / "etc" / "apt" / "sources.list.backup").exists()

    def test_restored_on_failure(self, build_root, swap_step):
        manager = SourcesListManager(str(build_root))
        sources = build_root / "etc" / "apt" / "sources.list"
        original = sources.read_bytes()

        with pytest.raises(RuntimeError):
            with manager.swapped(swap_step):
                raise RuntimeError("apt-get install failed")

        assert sources.read_bytes() == original

    def test_missing_sources_list(self, tmp_path, swap_step):
        (tmp_path / "etc" / "apt").mkdir(parents=True)
        manager = SourcesListManager(str(tmp_path))

        with pytest.raises(ChannelRestoreError, match="cannot back up /etc/apt/sources.list"):
            with manager.swapped(swap_step):
                pass

        assert not (tmp_path / "etc" / "apt" / "sources.list.backup").exists()

    def test_clean_runs_after_restore(self, build_root, swap_step):
        manager = SourcesListManager(str(build_root))
        sources = build_root / "etc" / "apt" / "sources.list"
        seen = []

        def clean():
            seen.append(UNSTABLE in sources.read_text())
            manager.clear_lists(swap_step.lists_dir)

        with manager.swapped(swap_step, clean=clean):
            pass

        assert seen == [False]
        assert not (build_root / "var" / "lib" / "apt" / "lists").exists()

    def test_missing_trailing_newline(self, build_root, swap_step):
        sources = build_root / "etc" / "apt" / "sources.list"
        sources.write_bytes(b"deb http://deb.debian.org/debian bullseye main")
        manager = SourcesListManager(str(build_root))

        with manager.swapped(swap_step):
            lines = sources.read_text().splitlines()
            assert lines[-1] == UNSTABLE
            assert len(lines) == 2

        assert sources.read_bytes() == b"deb http://deb.debian.org/debian bullseye main"

    def test_stale_backup_refuses_to_swap(self, build_root, swap_step):
        (build_root / "etc" / "apt" / "sources.list.backup").write_text("stale")
        manager = SourcesListManager(str(build_root))
        with pytest.raises(ChannelRestoreError):
            with manager.swapped(swap_step):
                pass

    def test_tampered_backup_is_detected(self, build_root, swap_step):
        manager = SourcesListManager(str(build_root))
        backup = build_root / "etc" / "apt" / "sources.list.backup"

        with pytest.raises(ChannelRestoreError):
            with manager.swapped(swap_step):
                backup.write_text("deb http://example.org/debian sid main\n")

    def test_snapshot(self, build_root):
        manager = SourcesListManager(str(build_root))
        sources = build_root / "etc" / "apt" / "sources.list"
        assert manager.snapshot("/etc/apt/sources.list") == file_sha256(str(sources))

    def test_clear_lists_missing_dir(self, tmp_path):
        SourcesListManager(str(tmp_path)).clear_lists("/var/lib/apt/lists/")
        assert not os.path.exists(tmp_path / "var")
