"""
JsonStore - wholesale key-value JSON documents under the data directory.

Each document is loaded and saved as a whole (read-modify-write). There is
no protection against concurrent writers; the bot runs as a single process.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Union

from loguru import logger


class JsonStore:
    def __init__(self, data_dir: Union[str, Path] = "data"):
        self.data_dir = Path(data_dir)

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def load(self, name: str) -> Dict[str, Any]:
        """Load a document. Missing or unreadable documents load as {}."""
        path = self.path_for(name)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.error(f"[Store] Error loading {path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"[Store] {path} does not hold an object, ignoring")
            return {}
        return data

    def save(self, name: str, data: Dict[str, Any]) -> bool:
        """Replace a document, writing through a temp file."""
        path = self.path_for(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = path.with_suffix(".tmp")
            temp_file.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            os.replace(temp_file, path)
            return True
        except Exception as e:
            logger.error(f"[Store] Error saving {path}: {e}")
            return False

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        if path.exists():
            path.unlink()
            return True
        return False
