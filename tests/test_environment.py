"""Tests for install/environment.py - dependency check and initialization."""

from unittest.mock import patch

import pytest

from emmc_installer.domain.models import InstallContext
from emmc_installer.install import environment
from emmc_installer.storage.exceptions import (
    CommandError,
    DeviceNotFoundError,
    InstallerError,
    MissingDependencyError,
    PermissionDeniedError,
    RunningFromTargetError,
    UnsupportedPlatformError,
    UUIDGenerationError,
)


class TestCheckDependencies:
    """Tests for check_dependencies() and ensure_root_privileges()."""

    @patch("emmc_installer.storage.commands.shutil.which")
    def test_missing_tool(self, mock_which):
        mock_which.side_effect = lambda tool: None if tool == "mkfs.btrfs" else f"/usr/bin/{tool}"

        with pytest.raises(MissingDependencyError) as exc_info:
            environment.check_dependencies()

        assert exc_info.value.missing == ["mkfs.btrfs"]

    @patch("emmc_installer.storage.commands.shutil.which", return_value="/usr/bin/x")
    def test_all_tools_present(self, mock_which):
        environment.check_dependencies()

        checked = {c.args[0] for c in mock_which.call_args_list}
        assert {"parted", "mkfs.vfat", "mkfs.btrfs", "btrfs", "tar", "dd"} <= checked

    @patch("emmc_installer.install.environment.os.geteuid", return_value=1000)
    def test_non_root(self, mock_geteuid):
        with pytest.raises(PermissionDeniedError):
            environment.ensure_root_privileges()

    @patch("emmc_installer.install.environment.os.geteuid", return_value=0)
    def test_root(self, mock_geteuid):
        environment.ensure_root_privileges()


class TestGenerateUuid:
    """Tests for generate_uuid() and generate_uuids()."""

    def test_reads_kernel_source(self, tmp_path):
        source = tmp_path / "uuid"
        source.write_text("6f1c2a3b-0000-4000-8000-000000000001\n")

        assert environment.generate_uuid(source) == "6f1c2a3b-0000-4000-8000-000000000001"

    @patch("emmc_installer.install.environment.run_checked_command")
    def test_falls_back_to_uuidgen(self, mock_run, tmp_path):
        mock_run.return_value = "aaaaaaaa-bbbb-4ccc-8ddd-eeeeeeeeeeee\n"

        value = environment.generate_uuid(tmp_path / "missing")

        assert value == "aaaaaaaa-bbbb-4ccc-8ddd-eeeeeeeeeeee"
        mock_run.assert_called_once_with(["uuidgen"])

    @patch("emmc_installer.install.environment.run_checked_command")
    def test_no_source_available(self, mock_run, tmp_path):
        mock_run.side_effect = CommandError(["uuidgen"], None, "not found")

        with pytest.raises(UUIDGenerationError):
            environment.generate_uuid(tmp_path / "missing")

    @patch("emmc_installer.install.environment.run_checked_command", return_value="")
    def test_empty_uuidgen_output(self, mock_run, tmp_path):
        with pytest.raises(UUIDGenerationError):
            environment.generate_uuid(tmp_path / "missing")

    @patch("emmc_installer.install.environment.generate_uuid")
    def test_three_distinct_uuids(self, mock_generate):
        mock_generate.side_effect = ["a", "b", "c"]

        uuids = environment.generate_uuids()

        assert (uuids.rootfs1, uuids.rootfs2, uuids.shared) == ("a", "b", "c")

    @patch("emmc_installer.install.environment.generate_uuid")
    def test_duplicate_uuid_rejected(self, mock_generate):
        mock_generate.side_effect = ["a", "a", "c"]

        with pytest.raises(UUIDGenerationError, match="duplicate"):
            environment.generate_uuids()


class TestSelectTarget:
    """Tests for select_target()."""

    def test_auto_detect(self, dev_dir):
        assert environment.select_target("mmcblk0", None, dev_dir) == "mmcblk2"

    def test_explicit_target(self, dev_dir):
        assert environment.select_target("mmcblk0", "/dev/mmcblk2", dev_dir) == "mmcblk2"

    def test_explicit_target_is_root_disk(self, dev_dir):
        with pytest.raises(RunningFromTargetError):
            environment.select_target("mmcblk0", "mmcblk0", dev_dir)

    def test_explicit_target_missing(self, dev_dir):
        with pytest.raises(DeviceNotFoundError):
            environment.select_target("mmcblk0", "mmcblk7", dev_dir)


class TestPrepareScratchDir:
    """Tests for prepare_scratch_dir()."""

    def test_creates_unique_directory(self, tmp_path):
        first = environment.prepare_scratch_dir(tmp_path / "work")
        second = environment.prepare_scratch_dir(tmp_path / "work")

        assert first.is_dir() and second.is_dir()
        assert first != second
        assert first.name.startswith("emmc-install-")


class TestInitialize:
    """Tests for initialize()."""

    @pytest.fixture
    def fake_uuids(self, uuids):
        with patch(
            "emmc_installer.install.environment.generate_uuids", return_value=uuids
        ) as mock_generate:
            yield mock_generate

    def test_populates_context(
        self, tmp_path, release_file, mounts_file, dev_dir, fake_uuids, uuids
    ):
        ctx = environment.initialize(
            InstallContext(),
            release_file=release_file,
            mounts_file=mounts_file,
            dev_dir=dev_dir,
            work_dir=tmp_path / "work",
        )

        assert ctx.platform.platform == "rockchip"
        assert ctx.root_device == "mmcblk0p2"
        assert ctx.root_disk == "mmcblk0"
        assert ctx.target_device == "mmcblk2"
        assert ctx.uuids == uuids
        assert ctx.scratch_dir.parent == tmp_path / "work"

    def test_wrong_platform_stops_before_devices(
        self, tmp_path, mounts_file, dev_dir, fake_uuids
    ):
        release = tmp_path / "release"
        release.write_text("PLATFORM='amlogic'\n")

        with patch("emmc_installer.install.environment.devices") as mock_devices:
            with pytest.raises(UnsupportedPlatformError):
                environment.initialize(
                    InstallContext(),
                    release_file=release,
                    mounts_file=mounts_file,
                    dev_dir=dev_dir,
                    work_dir=tmp_path / "work",
                )

        mock_devices.detect_root_device.assert_not_called()
        fake_uuids.assert_not_called()

    @pytest.mark.parametrize(
        "dev_names",
        [
            ("mmcblk2", "mmcblk2boot0", "mmcblk2boot1", "mmcblk2p2"),
            ("mmcblk0", "mmcblk0p2"),
        ],
        ids=["booted-from-emmc", "sd-card-only"],
    )
    def test_unresolved_root_alias_stops_install(
        self, tmp_path, release_file, fake_uuids, dev_names
    ):
        """Test that an unmappable /dev/root never lets a live disk be selected."""
        dev = tmp_path / "fake-dev"
        dev.mkdir()
        for name in dev_names:
            (dev / name).touch()
        mounts = tmp_path / "alias-mounts"
        mounts.write_text("/dev/root / ext4 rw 0 0\n")
        ctx = InstallContext()

        with pytest.raises(InstallerError):
            environment.initialize(
                ctx,
                release_file=release_file,
                mounts_file=mounts,
                dev_dir=dev,
                work_dir=tmp_path / "work",
                sys_block_dir=tmp_path / "sys",
            )

        assert ctx.target_device is None
        fake_uuids.assert_not_called()

    def test_root_alias_on_emmc_is_refused(self, tmp_path, release_file, fake_uuids):
        """Test that /dev/root linking to the eMMC still trips the eMMC guard."""
        dev = tmp_path / "fake-dev"
        dev.mkdir()
        for name in ("mmcblk2", "mmcblk2boot0", "mmcblk2p2"):
            (dev / name).touch()
        (dev / "root").symlink_to(dev / "mmcblk2p2")
        mounts = tmp_path / "alias-mounts"
        mounts.write_text("/dev/root / ext4 rw 0 0\n")

        with pytest.raises(RunningFromTargetError):
            environment.initialize(
                InstallContext(),
                release_file=release_file,
                mounts_file=mounts,
                dev_dir=dev,
                work_dir=tmp_path / "work",
                sys_block_dir=tmp_path / "sys",
            )

    def test_refuses_when_booted_from_emmc(
        self, tmp_path, release_file, dev_dir, fake_uuids
    ):
        mounts = tmp_path / "emmc-mounts"
        mounts.write_text("/dev/mmcblk2p2 / btrfs rw 0 0\n")

        with pytest.raises(RunningFromTargetError):
            environment.initialize(
                InstallContext(),
                release_file=release_file,
                mounts_file=mounts,
                dev_dir=dev_dir,
                work_dir=tmp_path / "work",
            )

        fake_uuids.assert_not_called()
