"""
Pytest configuration and shared fixtures for checkpoint-cms tests.
"""

import pytest
import asyncio
import tempfile
import shutil
from pathlib import Path
from typing import Any, AsyncGenerator, Generator, Optional, Set

# Add src to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from checkpoint_cms.checkpoint.store import CheckpointStore
from checkpoint_cms.managers.version_control import VersionControlManager
from checkpoint_cms.models import ContentKind
from checkpoint_cms.storage.content_store import SQLiteContentStore
from checkpoint_cms.storage.database import Database
from checkpoint_cms.utils.config import CheckpointCMSConfig
from checkpoint_cms.utils.logging import setup_logging


class FlakyContentStore(SQLiteContentStore):
    """SQLiteContentStore with injectable failures and a write gate."""

    def __init__(self, db: Database):
        super().__init__(db)
        self.failing_ids: Set[str] = set()
        self.failing_kinds: Set[ContentKind] = set()
        self.read_failures = 0
        self.fail_inserts = False
        self.write_started = asyncio.Event()
        self.write_gate: Optional[asyncio.Event] = None

    async def read(self, context: str, kind: ContentKind):
        if kind in self.failing_kinds:
            raise OSError(f"{kind.value} table unavailable")
        if self.read_failures > 0:
            self.read_failures -= 1
            raise OSError("transient read failure")
        return await super().read(context, kind)

    async def write(self, context: str, kind: ContentKind, entity_id: str, value: Any) -> None:
        self.write_started.set()
        if self.write_gate is not None:
            await self.write_gate.wait()
        if entity_id in self.failing_ids:
            raise OSError(f"write rejected for {entity_id}")
        await super().write(context, kind, entity_id, value)

    async def insert(self, context: str, kind: ContentKind, value: Any) -> str:
        if self.fail_inserts:
            raise OSError("insert rejected")
        return await super().insert(context, kind, value)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
async def test_db(temp_dir: Path) -> AsyncGenerator[Database, None]:
    """Create a test database."""
    db = Database(temp_dir / "test.db")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def content_store(test_db: Database) -> SQLiteContentStore:
    store = SQLiteContentStore(test_db)
    await store.initialize()
    return store


@pytest.fixture
async def checkpoint_store(test_db: Database) -> CheckpointStore:
    store = CheckpointStore(test_db)
    await store.initialize()
    return store


@pytest.fixture
def test_config(temp_dir: Path) -> CheckpointCMSConfig:
    """Create test configuration."""
    return CheckpointCMSConfig(
        database={"path": temp_dir / "content.db"},
        logging={"directory": temp_dir / "logs", "enable_console": False},
        capture={"read_retries": 2, "retry_base_delay": 0, "retry_max_delay": 0},
    )


@pytest.fixture
async def vcm(test_config: CheckpointCMSConfig) -> AsyncGenerator[VersionControlManager, None]:
    """Initialized manager over a fresh database."""
    manager = VersionControlManager(test_config)
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
async def flaky_vcm(test_config: CheckpointCMSConfig) -> AsyncGenerator[VersionControlManager, None]:
    """Manager whose content store can be told to fail."""
    db = Database(test_config.database.path)
    manager = VersionControlManager(test_config, content_store=FlakyContentStore(db), db=db)
    await manager.initialize()
    yield manager
    await manager.close()


async def seed(manager: VersionControlManager, context: str, kind: ContentKind, entity_id: str, value: Any) -> None:
    """Write live content directly, bypassing version control."""
    await manager.content_store.write(context, kind, entity_id, value)


# Setup test logging
setup_logging(
    "checkpoint-cms-test",
    log_level="DEBUG",
    log_dir=Path(tempfile.mkdtemp(prefix="checkpoint-cms-logs-")),
    enable_json=False,
    enable_console=False,
)
