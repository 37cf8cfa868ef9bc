"""
Command-line interface for cmbuild.

This module provides the `cmb` CLI tool for building, flashing and debugging
ARM Cortex-M firmware.
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from cmbuild import __version__
from cmbuild.build import BuildArtifactSet, BuildOrchestrator, BuildResult
from cmbuild.cli_utils import ErrorFormatter, PathValidator, setup_logging
from cmbuild.config import BuildSettings
from cmbuild.deploy import DebugSession, Flasher, GdbBootstrap
from cmbuild.errors import CmbuildError


@dataclass
class BuildArgs:
    """Arguments shared by the build, flash and debug commands."""

    project_dir: Path
    environment: Optional[str] = None
    part: Optional[str] = None
    jobs: Optional[int] = None
    clean: bool = False
    verbose: bool = False


@dataclass
class CleanArgs:
    """Arguments for the clean command."""

    project_dir: Path
    environment: Optional[str] = None
    verbose: bool = False


@dataclass
class DebugArgs(BuildArgs):
    """Arguments for the debug command."""

    bootstrap_only: bool = False


def _load_settings(args: BuildArgs) -> BuildSettings:
    settings = BuildSettings.from_project(
        args.project_dir,
        env_name=args.environment,
        part=args.part,
        jobs=args.jobs,
        verbose=args.verbose or None,
    )
    setup_logging(settings.verbose)
    return settings


def _print_size_summary(result: BuildResult) -> None:
    image = result.image
    if image is None:
        return
    print()
    print("Firmware Size:")
    for region, used in image.region_usage.items():
        length = image.region_lengths.get(region)
        percent = image.region_percent(region)
        if length and percent is not None:
            print(f"  {region + ':':<8} {used:>7} bytes ({percent:>5.1f}% of {length} bytes)")
        else:
            print(f"  {region + ':':<8} {used:>7} bytes")


def _run_build(settings: BuildSettings, clean: bool) -> BuildResult:
    """Run a build, exiting with the error's category code on failure."""
    if settings.verbose:
        print(f"Building project: {settings.project_dir}")
        print(f"Environment: {settings.env_name}")
        print()
    else:
        print(f"Building environment: {settings.env_name}...")

    result = BuildOrchestrator(settings).build(clean=clean)
    if not result.success:
        if result.error is not None:
            ErrorFormatter.handle_cmbuild_error(result.error)
        ErrorFormatter.print_error("Build failed!", result.message)
        sys.exit(1)
    return result


def _require_artifacts(result: BuildResult) -> BuildArtifactSet:
    if result.artifacts is None:
        raise CmbuildError("Build produced no firmware artifacts")
    return result.artifacts


def build_command(args: BuildArgs) -> None:
    """Build firmware for the configured part.

    Examples:
        cmb build                      # Build default environment
        cmb build firmware/blinky      # Build specific project
        cmb build -e launchpad         # Build 'launchpad' environment
        cmb build -p LM4F120H5QR       # Override the part
        cmb build -j 8 --clean         # Clean build with 8 workers
    """
    print(f"cmbuild v{__version__}")
    print()

    try:
        settings = _load_settings(args)
        result = _run_build(settings, args.clean)

        ErrorFormatter.print_success("Build successful!")
        print()
        if result.artifacts is not None:
            print(f"Firmware: {result.artifacts.binary}")
        print(f"Compiled: {result.rebuilt} file(s)")
        _print_size_summary(result)
        print()
        print(f"Build time: {result.build_time:.2f}s")
        sys.exit(0)

    except CmbuildError as e:
        ErrorFormatter.handle_cmbuild_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def clean_command(args: CleanArgs) -> None:
    """Remove all derived artifacts of an environment.

    Examples:
        cmb clean                      # Clean default environment
        cmb clean -e launchpad         # Clean 'launchpad' environment
    """
    try:
        settings = BuildSettings.from_project(
            args.project_dir, env_name=args.environment, verbose=args.verbose or None
        )
        setup_logging(settings.verbose)
        removed = BuildOrchestrator(settings).clean()
        if removed:
            for path in removed:
                print(f"Removed {path}")
        else:
            print("Nothing to clean")
        sys.exit(0)

    except CmbuildError as e:
        ErrorFormatter.handle_cmbuild_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def flash_command(args: BuildArgs) -> None:
    """Build, then flash the raw binary with the configured flashing tool.

    Examples:
        cmb flash                      # Build and flash default environment
        cmb flash -e launchpad -v      # Verbose flash of 'launchpad'
    """
    try:
        settings = _load_settings(args)
        result = _run_build(settings, args.clean)
        artifacts = _require_artifacts(result)

        print(f"Flashing {artifacts.binary.name} with {settings.flasher}...")
        flasher = Flasher(settings.flasher, settings.flasher_flags, verbose=settings.verbose)
        deployment = flasher.flash(artifacts.binary)
        ErrorFormatter.print_success(deployment.message)
        sys.exit(0)

    except CmbuildError as e:
        ErrorFormatter.handle_cmbuild_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def debug_command(args: DebugArgs) -> None:
    """Build, write .gdbinit and start an interactive debug session.

    Examples:
        cmb debug                      # Build and debug default environment
        cmb debug --bootstrap-only     # Only write .gdbinit
    """
    try:
        settings = _load_settings(args)
        orchestrator = BuildOrchestrator(settings)
        result = _run_build(settings, args.clean)
        artifacts = _require_artifacts(result)

        gdbinit = GdbBootstrap(settings.gdb_endpoint).write(
            artifacts.image, orchestrator.paths.gdbinit
        )
        print(f"Debugger bootstrap: {gdbinit}")
        if args.bootstrap_only:
            sys.exit(0)

        session = DebugSession(
            orchestrator.toolchain.get_gdb_path(),
            gdbinit,
            server=settings.debug_server,
            cwd=settings.project_dir,
            log_file=orchestrator.paths.build_dir / f"{Path(settings.debug_server).name}.log",
        )
        sys.exit(session.run())

    except CmbuildError as e:
        ErrorFormatter.handle_cmbuild_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def _add_project_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "-e",
        "--environment",
        default=None,
        help="Build environment (default: auto-detect from cmbuild.ini)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_build_arguments(parser: argparse.ArgumentParser) -> None:
    _add_project_arguments(parser)
    parser.add_argument(
        "-p",
        "--part",
        default=None,
        help="Part identifier, e.g. LM4F120H5QR (overrides cmbuild.ini)",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Number of parallel compilations (default: CPU count)",
    )
    parser.add_argument(
        "-c",
        "--clean",
        action="store_true",
        help="Clean build artifacts before building",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmb",
        description="cmbuild - ARM Cortex-M firmware build system",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"cmb {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser("build", help="Build firmware")
    _add_build_arguments(build_parser)

    clean_parser = subparsers.add_parser("clean", help="Remove build artifacts")
    _add_project_arguments(clean_parser)

    flash_parser = subparsers.add_parser("flash", help="Build and flash firmware")
    _add_build_arguments(flash_parser)

    debug_parser = subparsers.add_parser("debug", help="Build and start a debug session")
    _add_build_arguments(debug_parser)
    debug_parser.add_argument(
        "--bootstrap-only",
        action="store_true",
        help="Only write .gdbinit, do not start the debug server or gdb",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """cmbuild - ARM Cortex-M firmware build system."""
    parser = create_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    # Validate project directory exists
    PathValidator.validate_project_dir(parsed_args.project_dir)

    if parsed_args.command == "clean":
        clean_command(
            CleanArgs(
                project_dir=parsed_args.project_dir,
                environment=parsed_args.environment,
                verbose=parsed_args.verbose,
            )
        )
        return

    common = dict(
        project_dir=parsed_args.project_dir,
        environment=parsed_args.environment,
        part=parsed_args.part,
        jobs=parsed_args.jobs,
        clean=parsed_args.clean,
        verbose=parsed_args.verbose,
    )
    if parsed_args.command == "build":
        build_command(BuildArgs(**common))
    elif parsed_args.command == "flash":
        flash_command(BuildArgs(**common))
    elif parsed_args.command == "debug":
        debug_command(DebugArgs(**common, bootstrap_only=parsed_args.bootstrap_only))


if __name__ == "__main__":
    main()
