import os
from contextlib import suppress
from pathlib import Path
from tempfile import mkstemp


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """
    Writes `data` to a temp file beside `path`, fsyncs it, then renames it over `path`.

    Readers see either the old file or the complete new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = mkstemp(suffix=path.suffix, prefix=path.name + ".tmp", dir=path.parent)
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "wb") as f:
            _ = f.write(data)
            f.flush()
            with suppress(OSError):
                os.fsync(f.fileno())

        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def read_bytes_safe(path: Path) -> bytes | None:
    """Reads a file, returning None on OSError."""
    try:
        return path.read_bytes()
    except OSError:
        return None
