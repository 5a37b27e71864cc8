"""Persistent job/settings storage using a JSON snapshot file."""

import json
from pathlib import Path
from typing import Any
from loguru import logger
from pydantic import ValidationError
from .models import AppState


class Storage:
    """File-based storage for the {jobs, settings} snapshot."""

    def __init__(self, data_dir: str = ".syncctl"):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.state_file = self.data_dir / "state.json"

    def _write_json(self, file_path: Path, data: Any) -> None:
        """Write data to JSON file with atomic write."""
        temp_file = file_path.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        temp_file.replace(file_path)

    def _read_json(self, file_path: Path) -> Any:
        """Read JSON file safely."""
        if not file_path.exists():
            return {}
        with open(file_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def load(self) -> AppState:
        """Load the saved snapshot, or a fresh one if nothing usable is stored."""
        try:
            data = self._read_json(self.state_file)
            return AppState.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Error loading saved configuration ({e}); starting with empty configuration")
            return AppState()

    def save(self, state: AppState) -> None:
        """Persist the snapshot."""
        self._write_json(self.state_file, state.model_dump(mode="json"))
