"""Database layer for Opsdeck.

SQLAlchemy models, engine/session management and repositories for scheduled
jobs, their executions and the job log.
"""

from opsdeck.database.connection import (
    create_db_engine,
    create_session_factory,
    create_tables,
    get_session_maker,
    init_engine,
    session_scope,
)
from opsdeck.database.models import Base, JobExecution, JobLog, ScheduledJob
from opsdeck.database.repositories import (
    JobExecutionRepository,
    JobLogRepository,
    JobRepository,
    RepositoryFactory,
)

__all__ = [
    "Base",
    "JobExecution",
    "JobExecutionRepository",
    "JobLog",
    "JobLogRepository",
    "JobRepository",
    "RepositoryFactory",
    "ScheduledJob",
    "create_db_engine",
    "create_session_factory",
    "create_tables",
    "get_session_maker",
    "init_engine",
    "session_scope",
]
