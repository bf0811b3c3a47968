"""
Mission checkpoint persistence.

A single JSON record holds the latest mission snapshot so an interrupted
mission can be resumed after a restart. Writes are atomic (temp file then
rename) and guarded by a file lock. Persistence problems are logged and
never propagate into the orchestration loop.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from autolearn_agent.logging import get_logger
from autolearn_agent.state import Mission, MissionStatus

logger = get_logger(__name__)

STORAGE_KEY = "autolearn_mission_state"


class CheckpointStore:
    """
    Durable store for the latest mission snapshot.

    The record is wrapped as {"key": STORAGE_KEY, "mission": {...}} so a
    foreign JSON file at the same path is rejected on load.
    """

    LOCK_TIMEOUT = 5.0  # seconds

    def __init__(self, path: Path):
        """
        Initialize the store.

        Args:
            path: Checkpoint file path (parent directory is created on save)
        """
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def _lock(self) -> FileLock:
        return FileLock(str(self.lock_path), timeout=self.LOCK_TIMEOUT)

    def save(self, mission: Mission) -> bool:
        """
        Persist a snapshot.

        Idle snapshots are never written.

        Returns:
            True if the record was written
        """
        if mission.status == MissionStatus.IDLE:
            return False

        temp_path = None
        try:
            payload = json.dumps({"key": STORAGE_KEY, "mission": mission.to_dict()}, indent=2)
            self.path.parent.mkdir(parents=True, exist_ok=True)

            with self._lock():
                fd, temp_path = tempfile.mkstemp(
                    suffix=".json",
                    prefix="mission_",
                    dir=str(self.path.parent),
                )
                with os.fdopen(fd, "w") as f:
                    f.write(payload)

                # Atomic rename
                shutil.move(temp_path, self.path)
                temp_path = None

        except Timeout:
            logger.warning("Lock timeout during checkpoint write", path=str(self.path))
            return False
        except Exception as e:
            logger.error("Failed to write checkpoint", error=str(e), path=str(self.path))
            return False
        finally:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)

        logger.debug(
            "Checkpoint saved",
            mission_id=mission.id,
            status=mission.status.value,
            step_index=mission.current_step_index,
        )
        return True

    def load(self) -> Optional[Mission]:
        """
        Load the stored snapshot.

        Returns:
            The mission, or None if there is no usable record
        """
        if not self.path.exists():
            logger.debug("No checkpoint file found", path=str(self.path))
            return None

        try:
            with self._lock():
                with open(self.path, "r") as f:
                    data = json.load(f)

            if not isinstance(data, dict) or data.get("key") != STORAGE_KEY:
                raise ValueError("not a mission checkpoint")

            mission = Mission.from_dict(data["mission"])

        except Exception as e:
            logger.error("Failed to load checkpoint", error=str(e), path=str(self.path))
            return None

        logger.info(
            "Checkpoint loaded",
            mission_id=mission.id,
            status=mission.status.value,
            step_index=mission.current_step_index,
        )
        return mission

    def clear(self) -> bool:
        """
        Remove the stored record. A missing record is not an error.

        Returns:
            True if no record remains on disk
        """
        try:
            with self._lock():
                if self.path.exists():
                    self.path.unlink()
                    logger.info("Checkpoint cleared", path=str(self.path))
        except Timeout:
            logger.warning("Lock timeout during checkpoint clear", path=str(self.path))
        except Exception as e:
            logger.error("Failed to clear checkpoint", error=str(e), path=str(self.path))
        return not self.path.exists()
