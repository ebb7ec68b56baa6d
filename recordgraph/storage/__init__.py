"""
Persistence backends: the SQLAlchemy engine for real commits and the mock
store for simulation.
"""
from .base import PersistenceEngine, PersistenceError, UnitOfWork
from .mock import MockStore, MockUnitOfWork, SequentialIdGenerator

__all__ = [
    "MockStore",
    "MockUnitOfWork",
    "PersistenceEngine",
    "PersistenceError",
    "SequentialIdGenerator",
    "UnitOfWork",
]
