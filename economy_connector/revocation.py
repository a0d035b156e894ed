"""
Persisted allow-list of honored credentials.

A credential is only usable while its exact string is present in this store.
Issuing a credential appends it; revoking clears the whole list at once
(there is no per-entry removal).

The list lives in a JSON file (keys_file in the settings). Every mutation
rewrites the complete file through a temporary sibling and os.replace(), so
concurrent readers see either the old or the new list, never a torn write.
Mutations are serialised with an asyncio.Lock; file I/O runs in a worker
thread so a slow disk never stalls other requests on the event loop.

This is the only component allowed to touch the file.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path

from economy_connector.errors import PersistenceError

logger = logging.getLogger(__name__)


class RevocationStore:
    """File-backed, ordered set of credential strings."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._write_lock = asyncio.Lock()

    # ----- Public API -----

    async def contains(self, credential: str) -> bool:
        keys = await self.list_all()
        return credential in keys

    async def add(self, credential: str) -> None:
        """
        Register a credential. Idempotent on the exact string.

        Raises:
            PersistenceError: If the list cannot be read or rewritten. The
                credential must then be treated as not issued.
        """
        async with self._write_lock:
            keys = await asyncio.to_thread(self._read)
            if credential not in keys:
                keys.append(credential)
            await asyncio.to_thread(self._write, keys)
        logger.info(
            "Credential registered",
            extra={"log_data": {"outstanding": len(keys), "store": str(self.path)}},
        )

    async def list_all(self) -> list[str]:
        return await asyncio.to_thread(self._read)

    async def clear_all(self) -> None:
        """Revoke every outstanding credential."""
        async with self._write_lock:
            await asyncio.to_thread(self._write, [])
        logger.warning(
            "All credentials revoked",
            extra={"log_data": {"store": str(self.path)}},
        )

    # ----- File access (runs in a worker thread) -----

    def _read(self) -> list[str]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read credential store: {e}") from e

        if not isinstance(data, list) or not all(isinstance(k, str) for k in data):
            raise PersistenceError("Credential store is corrupted: expected a list of strings")
        return data

    def _write(self, keys: list[str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(keys, f, indent=4)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write credential store: {e}") from e
