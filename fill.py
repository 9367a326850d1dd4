import logging
import sys
from argparse import ArgumentDefaultsHelpFormatter, ArgumentParser, Namespace
from contextlib import nullcontext
from pathlib import Path
from typing import List, NoReturn, Optional

from genutility.callbacks import Progress as NullProgress
from genutility.logging import IsoDatetimeFormatter
from genutility.rich import Progress
from rich.highlighter import NullHighlighter
from rich.logging import RichHandler
from rich.progress import BarColumn, DownloadColumn
from rich.progress import Progress as RichProgress
from rich.progress import TextColumn, TimeElapsedColumn, TransferSpeedColumn

from sizeparse import parse_size
from zerofill import AllocationError, OpenError, WriteMode, WriteResult, write_zeros

__version__ = "1.0.0"

ERR_OK = 0
ERR_OTHER = 253
ERR_BAD_COMMAND_LINE = 254
ERR_OUT_OF_MEM = 255

DESCRIPTION = """Fills a file full of zeros, either until running out of diskspace
or for so many bytes as specified by the -s option."""

logger = logging.getLogger(__name__)


class FillArgumentParser(ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(ERR_BAD_COMMAND_LINE, f"{self.prog}: {message}\nType '{self.prog} -h' for help.\n")


def get_parser() -> FillArgumentParser:
    parser = FillArgumentParser(prog="fill", description=DESCRIPTION, formatter_class=ArgumentDefaultsHelpFormatter)
    parser.add_argument("file", type=Path, help="File to create or overwrite")
    parser.add_argument(
        "-s",
        "--size",
        help="The file written is going to be SIZE bytes large. You may use K, M, G, T, P binary prefixes (1024-based). If not given the file is written until the disk is full.",
    )
    parser.add_argument("-a", dest="append_count", action="store_true", help="[NYI] append, write given number of bytes")
    parser.add_argument(
        "-A", dest="append_size", action="store_true", help="[NYI] append, write until target size is reached"
    )
    parser.add_argument("-f", dest="force", action="store_true", help="[NYI] force")
    parser.add_argument("-p", "--progress", action="store_true", help="Show progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    parser.add_argument("--log", type=Path, help="Write log to file")
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s version {__version__}", help="Give version information"
    )
    return parser


def report(path: Path, result: WriteResult) -> int:
    """Logs the outcome of a write and returns the exit code for it."""

    if result.ok:
        logger.info("Wrote %d bytes to %s. Done.", result.bytes_written, path)
        return ERR_OK

    if isinstance(result.error, AllocationError):
        logger.error("Out of memory: %s", result.error)
        return ERR_OUT_OF_MEM
    elif isinstance(result.error, OpenError):
        logger.error("Could not open %s for writing: %s", path, result.error)
    else:
        logger.error("Could not write %s: %s", path, result.error)
        logger.debug("Only %d bytes were written", result.bytes_written)

    return ERR_OTHER


def main(args: Namespace, progress: Optional[NullProgress] = None) -> int:
    if args.append_count:
        logger.warning("-a is not supported yet.")
    if args.append_size:
        logger.warning("-A is not supported yet.")
    if args.force:
        logger.warning("-f is not supported yet.")

    if args.size is None:
        mode = WriteMode.flood()
    else:
        size = parse_size(args.size)
        if not size:
            logger.debug("Invalid size `%s`", args.size)
            return ERR_OTHER
        mode = WriteMode.sized(size)

    logger.debug("Filling %s in %s mode", args.file, mode)
    result = write_zeros(args.file, mode, progress)
    return report(args.file, result)


def setup_logging(level: int = logging.INFO, log: Optional[Path] = None) -> None:
    root = logging.getLogger()
    if len(root.handlers) != 0:
        logger.warning("Logger already has handlers set, skipping setup")
        return

    stream_handler = RichHandler(log_time_format="%Y-%m-%d %H-%M-%S%Z", highlighter=NullHighlighter())
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(stream_handler)

    if log:
        file_handler = logging.FileHandler(log, encoding="utf-8", delay=True)
        file_formatter = IsoDatetimeFormatter(
            "%(asctime)s\t%(levelname)s\t%(message)s", sep=" ", timespec="seconds", aslocal=True
        )
        file_handler.setFormatter(file_formatter)
        root.addHandler(file_handler)

    root.setLevel(level)


def run(argv: Optional[List[str]] = None) -> int:
    parser = get_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        setup_logging(logging.DEBUG, args.log)
    else:
        setup_logging(logging.INFO, args.log)

    if args.progress:
        columns = [
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(binary_units=True),
            TransferSpeedColumn(),
            TimeElapsedColumn(),
        ]
        progressctx = RichProgress(*columns)
    else:
        progressctx = nullcontext()

    try:
        with progressctx as p:
            return main(args, Progress(p) if p is not None else None)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user. Exiting.")
        return ERR_OTHER
    except Exception:
        logger.exception("Filling file failed. Exiting.")
        return ERR_OTHER


if __name__ == "__main__":
    sys.exit(run())
