# conftest.py
"""
Common fixtures and setup for recordgraph tests.

Every test runs against its own BuildContext so no builder, edge or discovery
entry leaks from one test into the next.
"""
import pytest
from typing import List

from recordgraph import BuildContext, BuilderRegistry, Settings
from recordgraph.storage.base import PendingUnitOfWork


# Custom test markers
def pytest_configure(config):
    """Configure custom markers."""
    markers = [
        "slow: marks tests as slow",
        "integration: marks tests that hit a real database",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# ========================================================================
# Fake persistence engine
# ========================================================================

class RecordingUnitOfWork(PendingUnitOfWork):
    """Unit of work that hands out integer ids and remembers what it was given."""
    def __init__(self, engine: "RecordingEngine", order: List[str]):
        super().__init__(order)
        self.engine = engine

    def commit_work(self) -> None:
        if self.engine.fail_with is not None:
            raise self.engine.fail_with
        if not self.has_work():
            return
        for entity_type in self.ordered_types():
            pending = self.records_of(entity_type)
            for record in pending:
                self.engine.counter += 1
                record.id = self.engine.counter
            for record in pending:
                for _, field, related in self.links_of(record):
                    record.put(field, related.id)
        self.engine.committed.append(self)


class RecordingEngine:
    """Persistence engine double: records every unit of work it commits."""
    def __init__(self):
        self.units: List[RecordingUnitOfWork] = []
        self.committed: List[RecordingUnitOfWork] = []
        self.counter = 0
        self.fail_with = None

    def create_unit_of_work(self, order: List[str]) -> RecordingUnitOfWork:
        uow = RecordingUnitOfWork(self, order)
        self.units.append(uow)
        return uow

    def committed_records(self):
        return [record for uow in self.committed for record in uow.new_records]


# ========================================================================
# Fixtures
# ========================================================================

@pytest.fixture(autouse=True)
def context():
    """Setup and teardown of an isolated build context for each test."""
    ctx = BuildContext(settings=Settings())
    BuilderRegistry.use_context(ctx)

    # Run the test
    yield ctx

    # Clean up after test
    ctx.reset()


@pytest.fixture
def engine(context) -> RecordingEngine:
    """Recording engine installed on the test context."""
    recording = RecordingEngine()
    context.use_engine(recording)
    return recording
