"""JSON snapshot storage for the election engine."""

from pathlib import Path
import os
import tempfile

from ballot.core.logging_config import get_logger
from ballot.services.engine import ElectionEngine
from ballot.services.events import ElectionEvent
from ballot.services.models import ElectionSnapshot

logger = get_logger(__name__)


class SnapshotStore:
    """Read and write an ``ElectionSnapshot`` as a JSON file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, snapshot: ElectionSnapshot) -> None:
        """Write the snapshot, replacing the previous file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = snapshot.model_dump_json(indent=2).encode("utf-8")
        with tempfile.NamedTemporaryFile(
            delete=False, dir=str(self.path.parent), suffix=".tmp"
        ) as tmp_file:
            tmp_file.write(content)
            temp_name = tmp_file.name
        try:
            os.replace(temp_name, self.path)
        except OSError:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def load(self) -> ElectionSnapshot | None:
        """Return the stored snapshot, or None when nothing was saved yet."""
        if not self.exists():
            return None
        return ElectionSnapshot.model_validate_json(
            self.path.read_text(encoding="utf-8")
        )


class SnapshotSink:
    """Event sink that saves the full engine state after every event."""

    def __init__(self, engine: ElectionEngine, store: SnapshotStore) -> None:
        self.engine = engine
        self.store = store

    def __call__(self, event: ElectionEvent) -> None:
        self.store.save(self.engine.snapshot())
        logger.debug(f"Snapshot saved after event #{event.sequence} to {self.store.path}")


def load_or_create_engine(
    store: SnapshotStore, admin_identity: str, delegation_mode: str
) -> ElectionEngine:
    """Restore the engine from ``store`` or start a fresh election."""
    snapshot = store.load()
    if snapshot is None:
        logger.info(f"No snapshot at {store.path}, starting a new election")
        engine = ElectionEngine(admin_identity, delegation_mode=delegation_mode)
    else:
        if snapshot.admin_identity != admin_identity:
            logger.warning(
                "Snapshot administrator differs from ADMIN_IDENTITY; "
                "keeping the snapshot's administrator"
            )
        engine = ElectionEngine.from_snapshot(snapshot)
        logger.info(
            f"Restored election from {store.path} in phase {engine.phase.value}"
        )
    engine.subscribe(SnapshotSink(engine, store))
    return engine
