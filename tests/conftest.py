"""Global pytest configuration and fixtures."""

import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from crm_backup._storage.dataset_memory import InMemoryDatasetStorage
from crm_backup.config import BackupConfig
from tests.utils import make_record


@pytest.fixture
def temp_backup_dir():
    """Create temporary backup directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def backup_config(temp_backup_dir):
    """Config with no retry back-off so failure tests stay fast."""
    return BackupConfig(
        backup_dir=str(temp_backup_dir),
        merge_batch_size=2,
        retry_wait_min=0,
        retry_wait_max=0,
    )


@pytest_asyncio.fixture
async def memory_storage():
    """Empty in-memory dataset."""
    return InMemoryDatasetStorage(namespace="test", global_config={})


@pytest_asyncio.fixture
async def seeded_storage(memory_storage):
    """A small CRM dataset spread over dependent entities."""
    await memory_storage.upsert("users", [
        make_record("u1", "2024-01-01T00:00:00Z", name="Alice"),
        make_record("u2", "2024-01-02T00:00:00Z", name="Bob"),
    ])
    await memory_storage.upsert("leads", [
        make_record("l1", "2024-02-01T00:00:00Z", ownerId="u1", stage="new"),
        make_record("l2", "2024-02-02T00:00:00Z", ownerId="u2", stage="won"),
        make_record("l3", "2024-02-03T00:00:00Z", ownerId="u1", stage="lost"),
    ])
    await memory_storage.upsert("leadNotes", [
        make_record("n1", "2024-02-05T00:00:00Z", leadId="l1", body="call back"),
    ])
    return memory_storage
