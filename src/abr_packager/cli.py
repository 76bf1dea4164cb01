import argparse
import sys
import time
from pathlib import Path

from loguru import logger
from pydantic import ValidationError
from tqdm import tqdm

from . import config as config_lib
from . import ffmpeg_runner
from .errors import PackagerError, ProfileConfigError
from .pipeline import StreamingPipeline
from .profiles import ProfileCatalog


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format=config_lib.LOGGER_FORMAT)


def default_output_root(output_base: str) -> Path:
    """Fresh per-run directory named by the current epoch milliseconds."""
    return Path(output_base) / str(int(time.time() * 1000))


def run_package(cli_args: dict) -> int:
    """Package one input file. Returns the process exit code."""
    try:
        conf = config_lib.resolve_config(cli_args)
    except ValidationError as e:
        logger.debug("{}", e)
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        print(f"❌ Invalid configuration: {problems}")
        return 1

    input_path = Path(cli_args["input"])
    output_root = (
        Path(cli_args["output_root"])
        if cli_args.get("output_root")
        else default_output_root(cli_args.get("output", "output"))
    )

    with tqdm(total=len(conf.profiles), desc="Encoding renditions", unit="rendition") as bar:
        pipeline = StreamingPipeline(conf, on_job_complete=lambda job: bar.update(1))
        try:
            result = pipeline.process(input_path, output_root)
        except PackagerError as e:
            logger.error("{}", e)
            return 1

    if not result.ok:
        print(f"❌ Packaging failed: {result.error}")
        return 1

    print(f"✅ Master manifest: {result.manifest_path}")

    if cli_args.get("delete_input"):
        try:
            input_path.unlink()
            logger.info("Deleted input {}", input_path)
        except OSError as e:
            logger.warning("Error deleting input file {}: {}", input_path, e)

    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="abr-packager", description="Adaptive-bitrate HLS packager"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level",
    )
    subparsers = parser.add_subparsers(dest="command", help="Subcommands")

    # PACKAGE
    package_parser = subparsers.add_parser("package", help="Encode a video into an HLS package")
    package_parser.add_argument("--input", "-i", type=str, required=True, help="Input video file")
    package_parser.add_argument(
        "--output", "-o", type=str, default="output", help="Base dir for per-run output roots"
    )
    package_parser.add_argument(
        "--output-root", type=str, help="Exact output root (overrides --output)"
    )
    package_parser.add_argument(
        "--profile",
        "-p",
        action="append",
        dest="profile_specs",
        metavar="WxH@KBPS",
        help="Rendition profile, repeatable and ordered (e.g. -p 1280x720@1000)",
    )
    package_parser.add_argument("--segment-duration", type=int, help="HLS segment length (s)")
    package_parser.add_argument("--workers", "-w", type=int, help="Concurrent encodes")
    package_parser.add_argument("--timeout", type=int, help="Per-encode timeout (s)")
    package_parser.add_argument("--manifest-name", type=str, help="Master manifest file name")
    package_parser.add_argument(
        "--delete-input", action="store_true", help="Delete the input after a successful package"
    )

    # PROFILES
    subparsers.add_parser("profiles", help="Show the rendition catalog")

    # CHECK FFMPEG
    subparsers.add_parser("check", help="Verify dependencies")

    args = parser.parse_args()
    configure_logging(args.log_level)

    if args.command == "package":
        cli_dict = {k: v for k, v in vars(args).items() if v is not None}
        if args.profile_specs:
            try:
                cli_dict["profiles"] = ProfileCatalog.from_specs(args.profile_specs).list()
            except ProfileConfigError as e:
                package_parser.error(str(e))
        sys.exit(run_package(cli_dict))

    elif args.command == "profiles":
        conf = config_lib.resolve_config()
        print("\n" + "=" * 60)
        print("RENDITION PROFILES")
        print("=" * 60)
        for profile in conf.profiles:
            print(
                f"{profile.label:<8} {profile.resolution:<12} {profile.bit_rate_kbps:>6} kbps"
            )
        print("=" * 60)

    elif args.command == "check":
        print("Checking dependencies...")
        if ffmpeg_runner.check_ffmpeg():
            print("✅ ffmpeg found.")
        else:
            print("❌ ffmpeg NOT found in PATH.")
            sys.exit(1)

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
