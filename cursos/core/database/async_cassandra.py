"""Async Cassandra connection using cassandra-asyncio-driver.

The session returned here exposes ``aexecute()`` for non-blocking queries.
Keyspace and tables are created on startup when missing.
"""

from cassandra.auth import PlainTextAuthProvider
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from cursos.agenda.models import AGENDA_TABLES_CQL
from cursos.auth.models import AUTH_TABLES_CQL
from cursos.cohorts.models import COHORTS_TABLES_CQL
from cursos.conferencing.models import CONFERENCING_TABLES_CQL
from cursos.config.settings import get_settings
from cursos.core.logging import get_logger
from cursos.exams.models import EXAMS_TABLES_CQL
from cursos.lessons.models import LESSONS_TABLES_CQL
from cursos.notifications.models import NOTIFICATIONS_TABLES_CQL


logger = get_logger(__name__)


# Every statement is IF NOT EXISTS
SCHEMA_GROUPS: dict[str, list[str]] = {
    "auth": AUTH_TABLES_CQL,
    "cohorts": COHORTS_TABLES_CQL,
    "exams": EXAMS_TABLES_CQL,
    "lessons": LESSONS_TABLES_CQL,
    "notifications": NOTIFICATIONS_TABLES_CQL,
    "conferencing": CONFERENCING_TABLES_CQL,
    "agenda": AGENDA_TABLES_CQL,
}


class AsyncCassandraConnection:
    """Cluster and session lifecycle."""

    _cluster: Cluster | None = None
    _session = None

    @classmethod
    def connect(cls):
        """Connect to the cluster (synchronous); the session supports aexecute().

        Raises:
            ConnectionError: If the cluster is unreachable.
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            load_balancing_policy=TokenAwarePolicy(DCAwareRoundRobinPolicy()),
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
            logger.info(
                "async_cassandra_connected",
                hosts=settings.cassandra_hosts,
                port=settings.cassandra_port,
            )
        except Exception as e:
            logger.error("async_cassandra_connection_failed", error=str(e))
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        return cls._session

    @classmethod
    def get_session(cls):
        if cls._session is None:
            return cls.connect()
        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
            logger.info("async_cassandra_session_closed")

        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("async_cassandra_cluster_closed")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._session is not None and not cls._session.is_shutdown


def get_async_cassandra_session():
    """Get the async-capable session (dependency injection helper)."""
    return AsyncCassandraConnection.get_session()


async def init_async_keyspace(session, keyspace: str) -> None:
    """Create the keyspace if it does not exist."""
    settings = get_settings()

    if settings.is_production:
        replication = """
            'class': 'NetworkTopologyStrategy',
            'datacenter1': 3
        """
    else:
        replication = """
            'class': 'SimpleStrategy',
            'replication_factor': 1
        """

    cql = f"""
        CREATE KEYSPACE IF NOT EXISTS {keyspace}
        WITH replication = {{{replication}}}
        AND durable_writes = true
    """

    await session.aexecute(cql)
    logger.info("async_keyspace_created", keyspace=keyspace)


async def init_async_tables(session, keyspace: str) -> None:
    """Create every table and index of the service."""
    for group, statements in SCHEMA_GROUPS.items():
        for cql_template in statements:
            await session.aexecute(cql_template.format(keyspace=keyspace))
        logger.info("async_tables_created", group=group, keyspace=keyspace)


async def init_async_cassandra():
    """Connect, then create the keyspace and tables if missing.

    Returns:
        Cassandra session with aexecute() support
    """
    settings = get_settings()

    session = AsyncCassandraConnection.connect()
    await init_async_keyspace(session, settings.cassandra_keyspace)
    session.set_keyspace(settings.cassandra_keyspace)
    await init_async_tables(session, settings.cassandra_keyspace)

    logger.info("async_cassandra_initialized", keyspace=settings.cassandra_keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    """Close the Cassandra connection."""
    AsyncCassandraConnection.disconnect()
    logger.info("async_cassandra_shutdown_complete")
