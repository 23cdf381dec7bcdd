import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class FileManager:
    """JSON documents stored as files under one base directory."""

    def __init__(self, base_dir: Optional[Path] = None):
        if base_dir is None:
            base_dir = Path.home() / ".journalsync"
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.base_dir / f"{name}.json"

    def exists(self, name: str) -> bool:
        return self.path_for(name).exists()

    def read_json(self, name: str, default: Any = None) -> Any:
        file_path = self.path_for(name)
        if not file_path.exists():
            return default
        with file_path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def write_json(self, name: str, data: Any, *, private: bool = False) -> Path:
        # Write to a sibling temp file then rename so readers never see a partial document.
        file_path = self.path_for(name)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{name}-", suffix=".tmp", dir=str(self.base_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            if private:
                os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, file_path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

        logger.debug(f"Saved {file_path}")
        return file_path

    def delete(self, name: str) -> bool:
        file_path = self.path_for(name)
        try:
            file_path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Deleted {file_path}")
        return True
