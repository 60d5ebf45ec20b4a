import hashlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


def allocate_destination(
    basename: str,
    extension: str,
    directory: str | None = None,
) -> Path:
    """Create an empty, uniquely named file for a thumbnail.

    The name is derived from a digest of the source basename so that very
    long source names never exceed the filesystem's name length limit.
    The extension is kept verbatim because engines pick the encoder by it.
    """
    digest = hashlib.md5(basename.encode("utf-8")).hexdigest()
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    fd, name = tempfile.mkstemp(
        prefix=f"{digest}-",
        suffix=extension,
        dir=directory or None,
    )
    os.close(fd)
    return Path(name)


@contextmanager
def discard_on_error(path: Path) -> Iterator[Path]:
    """Remove ``path`` if the block raises, then re-raise."""
    try:
        yield path
    except BaseException:
        path.unlink(missing_ok=True)
        raise
