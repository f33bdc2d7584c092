import argparse
import sys
from pathlib import Path

from emmc_installer import __version__
from emmc_installer.config import settings
from emmc_installer.install.pipeline import build_stages, run_install
from emmc_installer.logging import LoggerFactory, setup_logging
from emmc_installer.storage.exceptions import InstallerError


def build_parser():
    parser = argparse.ArgumentParser(
        prog="emmc-installer",
        description="Install the running live system onto the on-board eMMC",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    parser.add_argument(
        "--release-file",
        type=Path,
        default=settings.RELEASE_FILE,
        help=f"Platform descriptor (default: {settings.RELEASE_FILE})",
    )
    parser.add_argument(
        "--target",
        default=None,
        help="eMMC device name, e.g. mmcblk2 (default: auto-detect)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_install()

    try:
        ctx = run_install(stages=build_stages(args.release_file, args.target))
    except (InstallerError, OSError) as error:
        log.error(f"Install aborted: {error}")
        log.error("The eMMC may be partially provisioned; fix the cause and run again")
        return 1
    except KeyboardInterrupt:
        log.error("Install interrupted; the eMMC may be partially provisioned")
        return 130

    log.success(f"Installed to {ctx.target_path}. Remove the boot media and reboot.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
