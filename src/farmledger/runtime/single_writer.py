import os
import sys
import fcntl


class SingleWriterLock:
    """
    Enforces a single writer process per ledger database.
    Uses a filesystem lock next to the SQLite file.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        self._fd = open(self.path, "w")
        try:
            fcntl.flock(self._fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            self._fd.close()
            self._fd = None
            print(
                f"[farmledger] single-writer lock already held: {self.path}",
                file=sys.stderr,
            )
            sys.exit(1)

    def release(self) -> None:
        if self._fd:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                self._fd.close()
                self._fd = None
