import errno
import logging
from pathlib import Path
from shutil import disk_usage
from typing import BinaryIO, NamedTuple, Optional, Tuple, Union

from genutility.callbacks import Progress as NullProgress

logger = logging.getLogger(__name__)

FILEBUF_SIZE = 1024 * 1024

# no space left on device, disk quota exceeded
if hasattr(errno, "EDQUOT"):
    STORAGE_EXHAUSTED = frozenset((errno.ENOSPC, errno.EDQUOT))
else:
    STORAGE_EXHAUSTED = frozenset((errno.ENOSPC,))


class FillError(Exception):
    pass


class OpenError(FillError):
    def __init__(self, cause: OSError) -> None:
        FillError.__init__(self, cause.strerror or str(cause))
        self.__cause__ = cause


class AllocationError(FillError):
    pass


class WriteError(FillError):
    def __init__(self, cause: Optional[OSError]) -> None:
        if cause is None:
            FillError.__init__(self, "short write")
        else:
            FillError.__init__(self, cause.strerror or str(cause))
        self.__cause__ = cause


class WriteMode(NamedTuple):
    """Either flood mode (`target` is None) or sized mode with a positive `target` in bytes."""

    target: Optional[int] = None

    @classmethod
    def flood(cls) -> "WriteMode":
        return cls(None)

    @classmethod
    def sized(cls, target: int) -> "WriteMode":
        if target <= 0:
            raise ValueError(f"Target size must be positive: {target}")
        return cls(target)

    @property
    def is_flood(self) -> bool:
        return self.target is None

    def __str__(self) -> str:
        if self.target is None:
            return "flood"
        return f"sized ({self.target} bytes)"


class WriteResult(NamedTuple):
    bytes_written: int
    error: Optional[FillError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_storage_exhausted(e: Optional[OSError]) -> bool:
    return e is not None and e.errno in STORAGE_EXHAUSTED


def _write_chunk(fw: BinaryIO, view: memoryview) -> Tuple[int, Optional[OSError]]:
    """Writes all of `view` to `fw`. Partial writes are continued until the OS reports an error.
    Returns the number of bytes written and the error which stopped the write early (if any).
    """

    size = len(view)
    count = 0
    while count < size:
        try:
            n = fw.write(view[count:])
        except OSError as e:
            return count, e
        if not n:
            return count, None
        count += n
    return count, None


def write_stream(
    fw: BinaryIO,
    mode: WriteMode,
    buffer: memoryview,
    progress: Optional[NullProgress] = None,
    description: str = "Writing",
    total: Optional[int] = None,
) -> WriteResult:
    """Writes zero bytes from `buffer` to the raw binary stream `fw`.

    In flood mode the stream is written until the storage is exhausted, which counts as success.
    In sized mode exactly `mode.target` bytes are written and every short write is a failure.
    """

    if not mode.is_flood and mode.target <= 0:
        raise ValueError(f"Target size must be positive: {mode.target}")

    progress = progress or NullProgress()
    chunk_size = len(buffer)
    flood = mode.is_flood
    remaining = mode.target or 0
    bytes_written = 0

    if not flood:
        total = mode.target

    with progress.task(total=total, description=description) as task:
        while flood or remaining > chunk_size:
            count, e = _write_chunk(fw, buffer)
            bytes_written += count
            remaining -= chunk_size
            task.update(completed=bytes_written)

            if count < chunk_size:
                if flood and is_storage_exhausted(e):
                    logger.debug("Storage exhausted after %d bytes: %s", bytes_written, e)
                    return WriteResult(bytes_written)

                logger.warning("Write failed after %d bytes", bytes_written)
                return WriteResult(bytes_written, WriteError(e))

        if remaining > 0:
            count, e = _write_chunk(fw, buffer[:remaining])
            bytes_written += count
            task.update(completed=bytes_written)

            if count < remaining:
                logger.warning("Write failed after %d bytes", bytes_written)
                return WriteResult(bytes_written, WriteError(e))

    return WriteResult(bytes_written)


def free_space(path: Path) -> Optional[int]:
    try:
        return disk_usage(path.absolute().parent).free
    except OSError:
        return None


def write_zeros(
    path: Union[str, Path],
    mode: WriteMode,
    progress: Optional[NullProgress] = None,
    buffer_size: int = FILEBUF_SIZE,
) -> WriteResult:
    """Creates or truncates `path` and fills it with zero bytes according to `mode`.
    The file is always closed and the buffer released before returning.
    """

    path = Path(path)

    if mode.is_flood:
        logger.info("Writing file %s as full as I can ...", path)
        total = free_space(path)
    else:
        logger.info("Writing file %s with %d bytes ...", path, mode.target)
        total = mode.target

    try:
        fw = open(path, "wb", buffering=0)
    except OSError as e:
        return WriteResult(0, OpenError(e))

    try:
        result = _write_file(fw, mode, progress, buffer_size, f"Writing {path.name}", total)
    except BaseException:
        fw.close()
        raise

    # some filesystems (NFS, quotas) only report write errors on close
    try:
        fw.close()
    except OSError as e:
        if result.ok and not (mode.is_flood and is_storage_exhausted(e)):
            logger.warning("Closing %s failed after %d bytes", path, result.bytes_written)
            return WriteResult(result.bytes_written, WriteError(e))
        logger.debug("Closing %s failed: %s", path, e)

    return result


def _write_file(
    fw: BinaryIO,
    mode: WriteMode,
    progress: Optional[NullProgress],
    buffer_size: int,
    description: str,
    total: Optional[int],
) -> WriteResult:
    try:
        buffer = bytes(buffer_size)
    except MemoryError:
        return WriteResult(0, AllocationError(f"Could not allocate {buffer_size} bytes"))

    with memoryview(buffer) as view:
        return write_stream(fw, mode, view, progress, description, total)
