import argparse
import dataclasses
import logging
import os
import sys
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from clang_args import ParseOptions, build_clang_args
from clang_parser import parse_header
from explore_config import ExploreConfiguration, load_config
from explore_context import ExploreOptions
from explore_errors import ConfigurationError, ExploreError
from explorer import Explorer
from ir_serializer import write_ir
from out_types import HeaderIR
from target_platform import TargetPlatform

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIRECTORY = "ast"


@dataclass
class PlatformRun:
    """The outcome of exploring one header for one target."""
    target: TargetPlatform
    ir: Optional[HeaderIR] = None
    error: Optional[str] = None
    output_path: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.ir is not None


def explore_header(header_path: str, target: TargetPlatform,
                   explore_options: Optional[ExploreOptions] = None,
                   parse_options: Optional[ParseOptions] = None) -> HeaderIR:
    """Parses and explores one header for one target. Raises on failure."""
    parse_options = parse_options or ParseOptions()
    clang_args = build_clang_args(target, parse_options)
    logger.debug("Parsing %s for %s with args: %s", header_path, target, clang_args)
    explorer = Explorer(target, explore_options, parse_options.user_include_directories, clang_args)
    with parse_header(header_path, clang_args) as parsed:
        return explorer.explore(parsed.translation_unit, header_path)


def _run_target(header_path: str, target: TargetPlatform, explore_options: ExploreOptions,
                parse_options: ParseOptions) -> PlatformRun:
    try:
        ir = explore_header(header_path, target, explore_options, parse_options)
    except (ExploreError, ConfigurationError, FileNotFoundError) as e:
        logger.error("Exploring %s for %s failed: %s", header_path, target, e)
        return PlatformRun(target, error=str(e))
    return PlatformRun(target, ir=ir)


def explore_targets(header_path: str, targets: Sequence[TargetPlatform],
                    configuration: Optional[ExploreConfiguration] = None,
                    jobs: int = 1) -> List[PlatformRun]:
    """
    Explores the header once per target.

    Targets never share state: each one gets its own clang index, translation
    unit and explore context, and a failure in one is recorded in its
    PlatformRun without stopping the others. With `jobs` > 1 the targets run
    in separate processes. Results come back in the order of `targets`.
    """
    configuration = configuration or ExploreConfiguration()
    work: List[Tuple[TargetPlatform, ExploreOptions, ParseOptions]] = [
        (target, configuration.explore_options_for(target), configuration.parse_options_for(target))
        for target in targets
    ]
    if jobs <= 1 or len(work) <= 1:
        return [_run_target(header_path, *item) for item in work]

    with ProcessPoolExecutor(max_workers=min(jobs, len(work))) as executor:
        futures = [executor.submit(_run_target, header_path, *item) for item in work]
        return [future.result() for future in futures]


def _print_summary(runs: Sequence[PlatformRun]):
    print("\n--- Exploration Summary ---")
    for run in runs:
        if not run.succeeded:
            print(f"{run.target}: FAILED: {run.error}")
            continue
        ir = run.ir
        print(f"{run.target}: Functions: {len(ir.functions)}, Function Pointers: {len(ir.function_pointers)}, "
              f"Records: {len(ir.records)}, Enums: {len(ir.enums)}, Opaque Types: {len(ir.opaque_types)}, "
              f"Typedefs: {len(ir.typedefs)}, Variables: {len(ir.variables)}, "
              f"Macro Constants: {len(ir.macro_constants)}")
    print("---------------------------")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="c2ir",
        description="Explore a C header and write its declarations as JSON IR, one file per target platform."
    )
    parser.add_argument("header", nargs="?", help="Path to the C header file to explore.")
    parser.add_argument(
        "-o", "--output", default=None,
        help=f"Directory for the '<triple>.json' output files (default: ./{DEFAULT_OUTPUT_DIRECTORY})."
    )
    parser.add_argument("-c", "--config", help="Path to a JSON configuration file.")
    parser.add_argument(
        "-t", "--target", dest="targets", action="append", default=[],
        help="Clang target triple to explore for; repeatable (default: the host)."
    )
    parser.add_argument(
        "-I", dest="include_dirs", action="append", default=[],
        help="Add a directory to the Clang include path (e.g., -Iinclude)."
    )
    parser.add_argument("-D", dest="defines", action="append", default=[], help="Define a macro (NAME or NAME=VALUE).")
    parser.add_argument("--isystem", dest="system_dirs", action="append", default=[],
                        help="Add a system include directory.")
    parser.add_argument("--framework", dest="frameworks", action="append", default=[],
                        help="Apple framework whose headers are searched.")
    parser.add_argument("--find-system-headers", action="store_true",
                        help="Discover the platform SDK include directories.")
    parser.add_argument("--include-system-declarations", action="store_true",
                        help="Explore declarations from headers outside the input's directory.")
    parser.add_argument("--allow-underscore", action="store_true",
                        help="Keep names that start with an underscore.")
    parser.add_argument("--full-paths", action="store_true", help="Write absolute paths in locations.")
    parser.add_argument("--no-dangling-enums", action="store_true",
                        help="Only keep enums reachable from functions and variables.")
    parser.add_argument("--opaque", dest="opaque_types", action="append", default=[],
                        help="Emit this record, enum or typedef as an opaque type.")
    parser.add_argument("--pass-through", dest="pass_through_types", action="append", default=[],
                        help="Keep references to this type without exploring or warning.")
    parser.add_argument("--block-header", dest="blocked_headers", action="append", default=[],
                        help="Header path, relative to an include directory, whose declarations are skipped.")
    parser.add_argument("--allow-function", dest="allowed_functions", action="append", default=[],
                        help="Only explore the named functions; repeatable.")
    parser.add_argument("--block-function", dest="blocked_functions", action="append", default=[],
                        help="Never explore the named function; repeatable.")
    parser.add_argument("-j", "--jobs", type=int, default=1, help="Targets to explore in parallel.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output.")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors.")
    return parser


def apply_arguments(configuration: ExploreConfiguration, args: argparse.Namespace) -> ExploreConfiguration:
    """Lets command-line arguments override or extend a loaded configuration."""
    if args.header:
        configuration.input_file = os.path.abspath(args.header)
    if args.output:
        configuration.output_directory = os.path.abspath(args.output)
    configuration.user_include_directories += tuple(os.path.abspath(d) for d in args.include_dirs)
    configuration.system_include_directories += tuple(os.path.abspath(d) for d in args.system_dirs)
    configuration.defines += tuple(args.defines)
    configuration.frameworks += tuple(args.frameworks)
    configuration.find_system_headers = configuration.find_system_headers or args.find_system_headers

    options = configuration.explore_options
    configuration.explore_options = dataclasses.replace(
        options,
        functions_allowed=options.functions_allowed | frozenset(args.allowed_functions),
        functions_blocked=options.functions_blocked | frozenset(args.blocked_functions),
        header_files_blocked=options.header_files_blocked | frozenset(args.blocked_headers),
        opaque_types=options.opaque_types | frozenset(args.opaque_types),
        pass_through_types=options.pass_through_types | frozenset(args.pass_through_types),
        include_system_declarations=options.include_system_declarations or args.include_system_declarations,
        allow_leading_underscore=options.allow_leading_underscore or args.allow_underscore,
        full_location_paths=options.full_location_paths or args.full_paths,
        dangling_enums=options.dangling_enums and not args.no_dangling_enums,
    ).validate()
    return configuration


def main(argv: Optional[Sequence[str]] = None):
    """Command-line interface for the declaration explorer."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        configuration = load_config(args.config) if args.config else ExploreConfiguration()
        configuration = apply_arguments(configuration, args)
        if not configuration.input_file:
            parser.error("a header file is required, either as an argument or as 'input_file' in the config")
        if not os.path.isfile(configuration.input_file):
            raise ConfigurationError(f"Header file not found: {configuration.input_file}")
        if args.targets:
            targets = tuple(TargetPlatform.parse(t) for t in args.targets)
        else:
            targets = configuration.targets or (TargetPlatform.host(),)
    except ConfigurationError as e:
        print(f"An error occurred: {e}", file=sys.stderr)
        sys.exit(1)

    runs = explore_targets(configuration.input_file, targets, configuration, args.jobs)

    output_directory = configuration.output_directory or os.path.abspath(DEFAULT_OUTPUT_DIRECTORY)
    for run in runs:
        if run.succeeded:
            run.output_path = str(write_ir(run.ir, os.path.join(output_directory, f"{run.target.triple}.json")))

    _print_summary(runs)
    for run in runs:
        if run.succeeded:
            print(f"Successfully wrote IR for {run.target} at: {run.output_path}")

    if not all(run.succeeded for run in runs):
        sys.exit(1)


if __name__ == "__main__":
    main()
