"""
wgbridge Registry Store

Durable JSON storage for the peer registry. Writes go to a temporary file
that is renamed over the previous document.
"""

from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from wgbridge.core.types import Registry
from wgbridge.core.validation import validate_registry
from wgbridge.errors import InvalidRegistryError, RegistryStorageError

logger = logging.getLogger(__name__)


class RegistryStore:
    """JSON blob store for one Registry document."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Registry]:
        """
        Read and validate the stored registry.

        Returns:
            Registry, or None if the file is missing or invalid
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading registry from {self.path}: {e}")
            return None

        try:
            validate_registry(data)
        except InvalidRegistryError as e:
            logger.warning(f"Rejected registry in {self.path}: {e.message}")
            return None

        try:
            registry = Registry.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Unreadable registry in {self.path}: {e}")
            return None

        logger.info(f"Registry loaded: {len(registry.peers)} peers, version {registry.version}")
        return registry

    def save(self, registry: Registry) -> None:
        """
        Persist the registry atomically.

        Raises:
            RegistryStorageError: If the file cannot be written
        """
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(registry.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise RegistryStorageError(str(self.path), str(e)) from e

        logger.debug(f"Registry saved to {self.path}")
