import time
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePath


@dataclass(frozen=True)
class StoredFile:
    stored_name: str
    path: Path


def generate_stored_name(original_name: str) -> str:
    """Build a unique name: {epoch millis}-{8 hex chars}{original extension}.

    Only the extension of the client-supplied name is kept.
    """
    extension = PurePath(original_name).suffix
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{extension}"


class FileStorage:
    """Persists raw upload bytes on the local filesystem without inspecting them."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def save(self, original_name: str, data: bytes) -> StoredFile:
        self._root.mkdir(parents=True, exist_ok=True)
        stored_name = generate_stored_name(original_name)
        path = self._root / stored_name
        path.write_bytes(data)
        return StoredFile(stored_name=stored_name, path=path)

    def delete(self, path: Path) -> None:
        """Remove a stored file. Missing files are ignored."""
        path.unlink(missing_ok=True)
