"""
eant2/services/persistence.py

File persistence for EANT2 runs.

Each run gets its own directory under ``output_dir``:
- run.json:          run id, configuration, start/end time and final result
- history.jsonl:     one JSON line of statistics per generation
- best_network.json: best network so far, rewritten every
                     ``snapshot_interval`` generations and at the end

Persistence never stops a run: write failures are logged and disable
further writes.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from eant2.cge import encoding
from eant2.cge.network import Network

logger = logging.getLogger(__name__)


@dataclass
class PersistenceConfig:
    """Configuration for run persistence."""

    output_dir: str = "runs"
    enabled: bool = True
    snapshot_interval: int = 10  # Generations between best-network snapshots
    store_recurrent_state: bool = False

    @classmethod
    def from_env(cls) -> PersistenceConfig:
        """Create config from environment variables."""
        return cls(
            output_dir=os.environ.get("EANT2_OUTPUT_DIR", "runs"),
            enabled=os.environ.get("EANT2_PERSISTENCE_ENABLED", "true").lower() == "true",
            snapshot_interval=int(os.environ.get("EANT2_SNAPSHOT_INTERVAL", "10")),
            store_recurrent_state=os.environ.get("EANT2_STORE_RECURRENT_STATE", "false").lower()
            == "true",
        )


class RunPersistence:
    """Writes run metadata, generation history and network snapshots."""

    def __init__(self, config: PersistenceConfig):
        self.config = config
        self._run_id: str | None = None
        self._run_dir: Path | None = None
        self._run_info: dict[str, Any] = {}

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def run_dir(self) -> Path | None:
        return self._run_dir

    def _write_json(self, path: Path, data: dict[str, Any]) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(path)

    def start_run(self, config: dict[str, Any]) -> str | None:
        """
        Create the run directory and write run.json.

        Args:
            config: EANT2 configuration dictionary

        Returns:
            Run ID if successful, None otherwise
        """
        if not self.config.enabled:
            return None

        run_id = str(uuid.uuid4())[:8]
        run_dir = Path(self.config.output_dir) / run_id
        try:
            run_dir.mkdir(parents=True, exist_ok=False)
            self._run_info = {
                "run_id": run_id,
                "config": config,
                "status": "running",
                "started_at": time.time(),
            }
            self._write_json(run_dir / "run.json", self._run_info)
        except OSError as e:
            logger.error(f"Failed to start run in {run_dir}: {e}")
            self.config.enabled = False
            return None

        self._run_id = run_id
        self._run_dir = run_dir
        logger.info(f"Started run {run_id} in {run_dir}")
        return run_id

    def record_generation(self, record: dict[str, Any]) -> None:
        """Append one generation's statistics to history.jsonl."""
        if self._run_dir is None or not self.config.enabled:
            return
        try:
            with open(self._run_dir / "history.jsonl", "a") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.error(f"Failed to record generation {record.get('generation')}: {e}")
            self.config.enabled = False

    def should_snapshot(self, generation: int) -> bool:
        return self.config.snapshot_interval > 0 and generation % self.config.snapshot_interval == 0

    def save_network(self, network: Network, fitness: float, generation: int) -> Path | None:
        """Write best_network.json; returns its path."""
        if self._run_dir is None or not self.config.enabled:
            return None

        path = self._run_dir / "best_network.json"
        metadata = {"run_id": self._run_id, "fitness": fitness, "generation": generation}
        try:
            encoding.to_file(
                network,
                path,
                metadata=metadata,
                with_recurrent_state=self.config.store_recurrent_state,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save network snapshot: {e}")
            self.config.enabled = False
            return None

        logger.debug(f"Saved best network (fitness {fitness:.6g}) to {path}")
        return path

    def end_run(self, best_fitness: float, total_generations: int, total_evaluations: int) -> None:
        """Mark the run as completed in run.json."""
        if self._run_dir is None or not self.config.enabled:
            return

        self._run_info.update({
            "status": "completed",
            "ended_at": time.time(),
            "best_fitness": best_fitness,
            "total_generations": total_generations,
            "total_evaluations": total_evaluations,
        })
        try:
            self._write_json(self._run_dir / "run.json", self._run_info)
        except OSError as e:
            logger.error(f"Failed to end run {self._run_id}: {e}")
            return
        logger.info(f"Ended run {self._run_id}")
