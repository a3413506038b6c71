#!/usr/bin/env python3
"""
EolSwap

Convert line endings of text files between Unix (LF), DOS (CRLF) and
classic Mac (CR) conventions, in place, into new files, or from stdin.
"""

import argparse
import concurrent.futures
import dataclasses
import logging
import os
import sys
import threading
import time
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence, Set

from tqdm import tqdm

import eol_events
import eol_replace
from eol_errors import BinaryDetectedError, ConversionError, EmptySourceError
from eol_pipeline import ConversionOptions, OutputMode, convert_bytes, convert_file
from eol_transcode import ConversionMode

# Define version
__version__ = "1.0.0"
__author__ = "tboy1337"

logger = logging.getLogger("EolSwap")
# Workers share the logger; keep multi-line reports together
log_lock = threading.Lock()

DEFAULT_IGNORE_DIRS: List[str] = [
    ".git",
    ".github",
    "__pycache__",
    "node_modules",
    "venv",
    ".venv",
]

CONVERTED = "converted"
SKIPPED = "skipped"
FAILED = "failed"


class BatchSummary(NamedTuple):
    converted: int
    skipped: int
    failed: int


class LoggingEventSink:
    """Turn conversion events into log records."""

    def __init__(self, prog: str = "eolswap") -> None:
        self.prog = prog

    def __call__(self, event: eol_events.Event) -> None:
        details = event.details
        with log_lock:
            if event.kind == eol_events.BINARY_DETECTED:
                if details["forced"]:
                    logger.warning(
                        "%s: Binary symbol 0x%02X found at line %d in '%s'; "
                        "continuing due to --force.",
                        self.prog,
                        details["byte"],
                        details["line"],
                        event.path or "<stdin>",
                    )
            elif event.kind == eol_events.BINARY_AFTER_FIRST_CHUNK:
                logger.warning(
                    "%s: Binary symbol 0x%02X found at line %d in '%s' after the "
                    "first chunk; large files are only checked at the start, so the "
                    "file was converted anyway.",
                    self.prog,
                    details["byte"],
                    details["line"],
                    event.path,
                )
            elif event.kind == eol_events.FILE_SKIPPED:
                logger.info(
                    "%s: Skipping %s file '%s'",
                    self.prog,
                    details["reason"],
                    event.path,
                )
            elif event.kind == eol_events.BACKUP_CREATED:
                logger.info(
                    "%s: creating backup file '%s'", self.prog, details["backup_path"]
                )
            elif event.kind == eol_events.BYTES_CONVERTED:
                if event.path is not None:
                    if details["output_path"] != event.path:
                        logger.info(
                            "%s: converted '%s' to '%s'",
                            self.prog,
                            event.path,
                            details["output_path"],
                        )
                    else:
                        logger.info("%s: converted '%s'", self.prog, event.path)
                logger.debug(
                    "%s: Converted %d out of %d line breaks%s.",
                    self.prog,
                    details["breaks_converted"],
                    details["lines_seen"],
                    " (streamed)" if details["streamed"] else "",
                )


def setup_logging(
    verbosity: int = 0, quiet: bool = False, log_file: Optional[str] = None
) -> None:
    """Configure the EolSwap logger for command-line use."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a"))
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    for old_handler in list(logger.handlers):
        logger.removeHandler(old_handler)
        old_handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False

    if quiet:
        logger.setLevel(logging.ERROR)
    elif verbosity >= 2:
        logger.setLevel(logging.DEBUG)
    elif verbosity == 1:
        logger.setLevel(logging.INFO)
    else:
        logger.setLevel(logging.WARNING)


def is_stdin_tty() -> bool:
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False


def find_files(
    root_dir: str,
    file_patterns: Optional[List[str]] = None,
    ignore_dirs: Optional[List[str]] = None,
) -> List[str]:
    """Find all files under root_dir matching the given patterns, sorted."""
    if ignore_dirs is None:
        ignore_dirs = DEFAULT_IGNORE_DIRS

    all_files: Set[str] = set()
    ignore_dirs_set: Set[str] = set(ignore_dirs)

    # Every file when no pattern is given
    if not file_patterns:
        file_patterns = ["*"]

    glob_patterns: List[str] = []
    for pattern in file_patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        # A bare extension such as ".txt"
        if pattern.startswith(".") and "/" not in pattern and "\\" not in pattern:
            glob_patterns.append(f"*{pattern}")
        else:
            glob_patterns.append(pattern)

    for root, dirs, files in os.walk(root_dir):
        dirs[:] = [d for d in dirs if d not in ignore_dirs_set]

        for filename in files:
            file_path: str = os.path.join(root, filename)
            if os.path.islink(file_path):
                continue
            if any(Path(filename).match(glob) for glob in glob_patterns):
                all_files.add(file_path)

    return sorted(all_files)


def process_file(  # pylint: disable=too-many-return-statements
    file_path: str,
    mode: ConversionMode,
    options: ConversionOptions,
    output_path: Optional[str] = None,
    prog: str = "eolswap",
) -> str:
    """Convert one file; return CONVERTED, SKIPPED or FAILED."""
    sink = LoggingEventSink(prog)
    try:
        if not os.path.exists(file_path):
            with log_lock:
                logger.error("%s: File not found: %s", prog, file_path)
            return FAILED

        if not os.path.isfile(file_path):
            with log_lock:
                logger.warning("%s: Skipping non-regular file: %s", prog, file_path)
            return SKIPPED

        convert_file(file_path, mode, options, output_path, sink)
        return CONVERTED
    except EmptySourceError:
        return SKIPPED
    except BinaryDetectedError as e:
        with log_lock:
            logger.error("%s: Skipping binary file: %s", prog, e)
            logger.error("%s: Use --force to convert binary files.", prog)
        return FAILED
    except ConversionError as e:
        with log_lock:
            logger.error("%s: Error converting '%s': %s", prog, file_path, e)
        return FAILED
    except PermissionError as e:
        with log_lock:
            logger.error("%s: Permission denied accessing %s: %s", prog, file_path, e)
        return FAILED
    except OSError as e:
        with log_lock:
            logger.error("%s: Error converting '%s': %s", prog, file_path, e)
        return FAILED


def process_files_parallel(  # pylint: disable=too-many-locals
    files: List[str],
    mode: ConversionMode,
    options: ConversionOptions,
    max_workers: Optional[int] = None,
    show_progress: bool = True,
    prog: str = "eolswap",
) -> BatchSummary:
    """Process files in parallel using ThreadPoolExecutor."""
    converted_count: int = 0
    skipped_count: int = 0
    error_count: int = 0

    if not files:
        return BatchSummary(0, 0, 0)

    if max_workers is None:
        cpu_count: Optional[int] = os.cpu_count()
        max_workers = min((cpu_count or 2) * 2, 32, len(files))
    else:
        max_workers = min(max_workers, 32, len(files))

    with log_lock:
        logger.debug(
            "Using %d worker threads for processing %d files", max_workers, len(files)
        )

    # Workers must not race the umask lookup
    eol_replace.current_umask()

    # Process files in batches to avoid excessive memory usage for large file lists
    batch_size = 1000
    for i in range(0, len(files), batch_size):
        batch_files = files[i : i + batch_size]

        with tqdm(
            total=len(batch_files),
            desc=f"Converting files (batch {i//batch_size + 1})",
            unit="file",
            disable=not show_progress,
        ) as pbar:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers
            ) as executor:
                future_to_file = {
                    executor.submit(
                        process_file, file_path, mode, options, None, prog
                    ): file_path
                    for file_path in batch_files
                }

                for future in concurrent.futures.as_completed(future_to_file):
                    file_path = future_to_file[future]
                    try:
                        status = future.result()
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        status = FAILED
                        with log_lock:
                            logger.error(
                                "Unhandled error processing %s: %s", file_path, str(e)
                            )
                    if status == CONVERTED:
                        converted_count += 1
                    elif status == SKIPPED:
                        skipped_count += 1
                    else:
                        error_count += 1
                    pbar.update(1)

    with log_lock:
        if error_count > 0:
            logger.warning("Encountered errors while processing %d files", error_count)
        logger.info(
            "Converted: %d, Skipped: %d, Errors: %d",
            converted_count,
            skipped_count,
            error_count,
        )

    return BatchSummary(converted_count, skipped_count, error_count)


def process_stdin(
    mode: ConversionMode, options: ConversionOptions, prog: str = "eolswap"
) -> int:
    """Convert standard input to standard output; return an exit status."""
    data: bytes = sys.stdin.buffer.read()
    try:
        converted, _ = convert_bytes(data, mode, options, LoggingEventSink(prog))
    except EmptySourceError:
        return 0
    except ConversionError as e:
        with log_lock:
            logger.error("%s: Error converting input: %s", prog, e)
            if isinstance(e, BinaryDetectedError):
                logger.error("%s: Use --force to convert binary files.", prog)
        return 1
    sys.stdout.buffer.write(converted)
    sys.stdout.buffer.flush()
    return 0


def format_duration(execution_time: float) -> str:
    if execution_time < 60:
        return f"{execution_time:.2f} seconds"
    if execution_time < 3600:
        minutes = int(execution_time // 60)
        seconds = execution_time % 60
        return f"{minutes} minute{'s' if minutes != 1 else ''} {seconds:.2f} seconds"
    hours = int(execution_time // 3600)
    minutes = int((execution_time % 3600) // 60)
    seconds = execution_time % 60
    return (
        f"{hours} hour{'s' if hours != 1 else ''} "
        f"{minutes} minute{'s' if minutes != 1 else ''} "
        f"{seconds:.2f} seconds"
    )


def build_parser(prog: str, default_mode: ConversionMode) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description="Convert line endings of text files between Unix (LF), "
        "DOS (CRLF) and Mac (CR) conventions. Reads stdin when no file is given.",
    )
    parser.add_argument("files", nargs="*", metavar="FILE", help="Files to convert")

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "-u",
        "--unix",
        dest="mode",
        action="store_const",
        const="unix",
        help="Convert to Unix line endings (LF)",
    )
    mode_group.add_argument(
        "-d",
        "--dos",
        dest="mode",
        action="store_const",
        const="dos",
        help="Convert to DOS line endings (CRLF)",
    )
    mode_group.add_argument(
        "-m",
        "--mac",
        dest="mode",
        action="store_const",
        const="mac",
        help="Convert to classic Mac line endings (CR)",
    )
    mode_group.add_argument(
        "-c",
        "--convmode",
        dest="mode",
        choices=["unix", "dos", "mac"],
        help=f"Target line ending convention (default: {default_mode.value})",
    )

    parser.add_argument(
        "-n",
        "--newfile",
        nargs=2,
        action="append",
        default=[],
        metavar=("INFILE", "OUTFILE"),
        help="Convert INFILE and write the result to OUTFILE (repeatable)",
    )
    output_group = parser.add_mutually_exclusive_group()
    output_group.add_argument(
        "-o",
        "--oldfile",
        action="store_true",
        help="Overwrite the original files (default behavior)",
    )
    output_group.add_argument(
        "--new-suffix",
        metavar="SUFFIX",
        default=None,
        help="Write each FILE to FILE+SUFFIX instead of overwriting it",
    )

    bom_group = parser.add_mutually_exclusive_group()
    bom_group.add_argument(
        "-k", "--keep-bom", action="store_true", help="Keep the Byte Order Mark (BOM)"
    )
    bom_group.add_argument(
        "--add-bom", action="store_true", help="Write a Byte Order Mark (BOM)"
    )
    parser.add_argument(
        "-r",
        "--remove-bom",
        action="store_true",
        help="Remove the Byte Order Mark (BOM); overrides --keep-bom and --add-bom",
    )
    parser.add_argument(
        "--encoding",
        default=None,
        help="Treat input as this encoding (utf-8, utf-16le, utf-16be, cp1252) "
        "instead of sniffing the BOM",
    )
    parser.add_argument(
        "-f", "--force", action="store_true", help="Force conversion of binary files"
    )
    parser.add_argument(
        "-e",
        "--add-eol",
        action="store_true",
        help="Add a missing line break at the end of the last line",
    )
    parser.add_argument(
        "-b", "--backup", action="store_true", help="Make a backup of each file"
    )
    parser.add_argument(
        "--backup-suffix",
        default="~",
        help="Suffix for backup files, e.g. '~' or '.bak' (default: ~)",
    )
    parser.add_argument(
        "-p",
        "--keepdate",
        action="store_true",
        help="Keep the date stamps of the original file",
    )
    parser.add_argument(
        "--no-keep-mode",
        action="store_true",
        help="Do not copy permission bits from the original file",
    )
    parser.add_argument(
        "-R",
        "--recursive",
        action="store_true",
        help="Convert files inside directories given as FILE",
    )
    parser.add_argument(
        "--patterns",
        nargs="+",
        default=None,
        help="File patterns to match when recursing (e.g. '.txt *.py')",
    )
    parser.add_argument(
        "--ignore-dirs",
        nargs="+",
        default=None,
        help="Directories to skip when recursing "
        "(default: .git, .github, __pycache__, node_modules, venv, .venv)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of worker threads for parallel processing "
        "(default: auto-detect based on CPU count)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be used multiple times)",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    parser.add_argument(
        "--log-file", default=None, help="Also append log output to this file"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{prog} v{__version__}",
        help="Show program version and exit",
    )
    return parser


def build_options(args: argparse.Namespace) -> ConversionOptions:
    """Build the read-only conversion options from parsed arguments."""
    return ConversionOptions(
        keep_bom=args.keep_bom,
        remove_bom=args.remove_bom,
        add_bom=args.add_bom,
        force_binary=args.force,
        add_missing_eol=args.add_eol,
        preserve_permissions=not args.no_keep_mode,
        preserve_timestamps=args.keepdate,
        make_backup=args.backup,
        backup_suffix=args.backup_suffix,
        output_mode=OutputMode.NEW_FILE if args.new_suffix else OutputMode.OVERWRITE,
        new_file_suffix=args.new_suffix,
        encoding=args.encoding,
    )


def collect_files(
    paths: Sequence[str],
    recursive: bool,
    patterns: Optional[List[str]],
    ignore_dirs: Optional[List[str]],
    prog: str,
) -> List[str]:
    files: List[str] = []
    for path in paths:
        if os.path.isdir(path):
            if not recursive:
                with log_lock:
                    logger.warning(
                        "%s: Skipping directory '%s' (use --recursive)", prog, path
                    )
                continue
            files.extend(find_files(path, patterns, ignore_dirs))
        else:
            files.append(path)
    return files


def main(  # pylint: disable=too-many-return-statements
    argv: Optional[Sequence[str]] = None,
    default_mode: ConversionMode = ConversionMode.TO_UNIX,
    prog: Optional[str] = None,
) -> int:
    if prog is None:
        prog = os.path.basename(sys.argv[0]) or "eolswap"
    parser = build_parser(prog, default_mode)
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.quiet, args.log_file)

    try:
        mode = ConversionMode(args.mode) if args.mode else default_mode
        try:
            options = build_options(args)
        except (ValueError, ConversionError) as e:
            logger.error("%s: %s", prog, e)
            return 1

        if args.workers is not None and args.workers <= 0:
            logger.warning(
                "Invalid worker count (%d), using auto-detection instead", args.workers
            )
            args.workers = None

        if not args.files and not args.newfile:
            if is_stdin_tty():
                logger.error("%s: No files specified and no input provided.", prog)
                logger.error("Try '%s --help' for more information.", prog)
                return 1
            return process_stdin(mode, options, prog)

        start_time: float = time.time()
        failed = 0
        converted = 0

        if args.newfile:
            pair_options = dataclasses.replace(options, output_mode=OutputMode.NEW_FILE)
            for infile, outfile in args.newfile:
                status = process_file(infile, mode, pair_options, outfile, prog)
                failed += status == FAILED
                converted += status == CONVERTED

        files: List[str] = collect_files(
            args.files, args.recursive, args.patterns, args.ignore_dirs, prog
        )
        if files:
            logger.info("Target line ending format: %s", mode.value.upper())
            summary = process_files_parallel(
                files,
                mode,
                options,
                max_workers=args.workers,
                show_progress=not args.quiet and len(files) > 1,
                prog=prog,
            )
            failed += summary.failed
            converted += summary.converted

        logger.info(
            "Done! Converted %d file%s in %s.",
            converted,
            "" if converted == 1 else "s",
            format_duration(time.time() - start_time),
        )
        return 1 if failed else 0
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user.")
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.level <= logging.DEBUG:
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


def unix_main() -> int:
    return main(default_mode=ConversionMode.TO_UNIX, prog="eol2unix")


def dos_main() -> int:
    return main(default_mode=ConversionMode.TO_DOS, prog="eol2dos")


def mac_main() -> int:
    return main(default_mode=ConversionMode.TO_MAC, prog="eol2mac")


if __name__ == "__main__":
    sys.exit(main())
