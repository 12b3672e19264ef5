"""Local provisioning state.

Records what a previous apply created so the next run can find it again
(the bucket name carries a random suffix and cannot be recomputed) and
so `destroy` knows what to tear down. Stored as JSON under
`<state_dir>/<stack_name>.json`.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

STATE_SCHEMA_VERSION = 1


class StackState(BaseModel):
    schema_version: int = STATE_SCHEMA_VERSION
    stack_name: str
    region: str
    bucket: Optional[str] = None
    object_key: Optional[str] = None
    asset_hash: Optional[str] = None
    role_name: Optional[str] = None
    role_arn: Optional[str] = None
    function_name: Optional[str] = None
    function_arn: Optional[str] = None
    function_url: Optional[str] = None
    updated_at: Optional[str] = None


class StateError(Exception):
    """Raised when a state file exists but cannot be parsed."""


class StateStore:
    def __init__(self, state_dir: Path, stack_name: str):
        self.state_dir = Path(state_dir)
        self.stack_name = stack_name

    @property
    def path(self) -> Path:
        return self.state_dir / f"{self.stack_name}.json"

    def load(self) -> Optional[StackState]:
        if not self.path.is_file():
            return None
        try:
            return StackState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise StateError(f"Corrupt state file {self.path}: {exc}") from exc

    def save(self, state: StackState) -> None:
        state.updated_at = datetime.now(timezone.utc).isoformat()
        self.state_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.debug("Saved state to %s", self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info("Removed state file %s", self.path)
