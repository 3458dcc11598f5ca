"""Atomic file writes.

Configuration files on the host are either completely replaced or left
untouched: content is written to a temp file in the same directory,
fsynced, given its final permissions and renamed over the target.
"""

import contextlib
import os
import secrets
from pathlib import Path
from typing import Generator, Optional


SECURE_FILE_PERMS = 0o600
SECURE_DIR_PERMS = 0o700


class AtomicFileWriter:
    """Atomic file writer using temp file and rename.

    Ensures file is either completely written or not modified at all.
    """

    def __init__(
        self,
        target_path: Path,
        permissions: int = SECURE_FILE_PERMS,
        owner_uid: Optional[int] = None,
        owner_gid: Optional[int] = None,
    ) -> None:
        self.target_path = Path(target_path)
        self.permissions = permissions
        self.owner_uid = owner_uid
        self.owner_gid = owner_gid

    @contextlib.contextmanager
    def open(self, mode: str = "w") -> Generator:
        """Open for atomic writing.

        Usage:
            with AtomicFileWriter(path).open() as f:
                f.write("content")
            # File is atomically replaced here
        """
        self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        # Temp file in same directory so the rename stays on one filesystem
        random_suffix = secrets.token_hex(8)
        tmp_path = self.target_path.with_name(
            f".{self.target_path.name}.tmp_{random_suffix}"
        )

        success = False
        fd = None

        try:
            fd = os.open(
                tmp_path,
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                self.permissions,
            )

            with os.fdopen(fd, mode) as f:
                fd = None  # fdopen takes ownership
                yield f
                f.flush()
                os.fsync(f.fileno())

            # umask may have narrowed the mode passed to os.open
            os.chmod(tmp_path, self.permissions)

            if self.owner_uid is not None:
                os.chown(
                    tmp_path,
                    self.owner_uid,
                    self.owner_gid if self.owner_gid is not None else self.owner_uid,
                )

            os.replace(tmp_path, self.target_path)
            success = True

        finally:
            if fd is not None:
                os.close(fd)
            if not success and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass


def atomic_write(path: Path, content: str, permissions: int = 0o644) -> None:
    """Write text to path atomically with the given permissions."""
    with AtomicFileWriter(path, permissions=permissions).open() as f:
        f.write(content)
