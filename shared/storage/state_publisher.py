"""
Results state publisher.

This module centralizes atomic writes of the published tally results
and optional mirroring into a dashboard hosting directory.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from shared.logging.logger import get_logger

if TYPE_CHECKING:
    from core.tallies.service import RefreshEvent, TallyService

log = get_logger("shared.state_publisher")


class ResultsStatePublisher:
    """
    Writes TallyService.status_document() to shared/state/<relative_path>
    after every refresh event (published or failed, so staleness is visible).

    Register with service.subscribe(publisher).
    """

    DEFAULT_BASE_DIR = Path("shared/state")
    DEFAULT_RELATIVE_PATH = "results.json"
    ENV_KEY = "AWARDS_STATE_PUBLISH_ROOT"

    def __init__(
        self,
        service: "TallyService",
        base_dir: Path | str | None = None,
        relative_path: Path | str | None = None,
        publish_root: Path | str | None = None,
    ):
        self._service = service
        self._base_dir = Path(base_dir) if base_dir else self.DEFAULT_BASE_DIR
        self._relative_path = Path(relative_path or self.DEFAULT_RELATIVE_PATH)
        self._base_dir.mkdir(parents=True, exist_ok=True)

        env_root = os.getenv(self.ENV_KEY)
        root = publish_root or env_root
        self._publish_root = Path(root) if root else None

        if self._publish_root:
            log.info(f"Results state publish root: {self._publish_root / 'shared' / 'state'}")

        self.writes = 0

    # ------------------------------------------------------------------
    # Atomic writer
    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, payload: Any) -> None:
        serialized = json.dumps(payload, indent=2)
        path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, delete=False, encoding="utf-8"
        ) as tmp:
            tmp.write(serialized)
            tmp.flush()
            os.fsync(tmp.fileno())
            temp_path = Path(tmp.name)

        temp_path.replace(path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def target(self) -> Path:
        return self._base_dir / self._relative_path

    @property
    def publish_root(self) -> Optional[Path]:
        return self._publish_root

    def __call__(self, event: "RefreshEvent") -> None:
        self.publish()

    def publish(self) -> bool:
        payload = self._service.status_document()

        try:
            self._write_atomic(self.target, payload)
        except Exception as e:
            log.error(f"Failed to write results state {self._relative_path}: {e}")
            return False

        self.writes += 1
        log.debug(f"Results state written: {self.target} (generation {payload.get('generation')})")

        if self._publish_root:
            mirror = self._publish_root / "shared" / "state" / self._relative_path
            try:
                self._write_atomic(mirror, payload)
            except Exception as e:
                log.warning(f"Failed to mirror results state to publish root: {e}")

        return True
