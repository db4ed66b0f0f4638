"""Tests for ARQ worker configuration."""

from unittest.mock import AsyncMock, MagicMock, patch

from arq.connections import RedisSettings

from civic_portal.api.tasks import arq_log_address_mismatch
from civic_portal.worker import WorkerSettings, shutdown, startup


class TestWorkerSettings:
    """WorkerSettings class attributes."""

    def test_redis_settings_type(self) -> None:
        assert isinstance(WorkerSettings.redis_settings, RedisSettings)

    def test_redis_settings_from_config(self) -> None:
        rs = WorkerSettings.redis_settings
        assert rs.host == "localhost"
        assert rs.port == 6379
        assert rs.database == 0

    def test_limits_from_config(self) -> None:
        assert WorkerSettings.max_jobs == 10
        assert WorkerSettings.job_timeout == 300
        assert WorkerSettings.max_tries == 3

    def test_registers_address_mismatch_task(self) -> None:
        assert WorkerSettings.functions == [arq_log_address_mismatch]

    def test_lifecycle_hooks_assigned(self) -> None:
        assert WorkerSettings.on_startup is startup
        assert WorkerSettings.on_shutdown is shutdown

    def test_keep_result(self) -> None:
        assert WorkerSettings.keep_result == 3600

    def test_poll_delay(self) -> None:
        assert WorkerSettings.poll_delay == 0.5


class TestWorkerLifecycle:
    """Startup and shutdown hooks."""

    async def test_startup_configures_logging(self) -> None:
        ctx: dict[str, object] = {}
        with (
            patch("civic_portal.worker.configure_logging") as mock_logging,
            patch(
                "sqlalchemy.ext.asyncio.create_async_engine",
                return_value=MagicMock(),
            ),
            patch("sqlalchemy.ext.asyncio.async_sessionmaker"),
        ):
            await startup(ctx)
            mock_logging.assert_called_once()

    async def test_startup_stores_engine_and_factory(self) -> None:
        ctx: dict[str, object] = {}
        mock_engine = MagicMock()
        mock_factory = MagicMock()
        with (
            patch("civic_portal.worker.configure_logging"),
            patch(
                "sqlalchemy.ext.asyncio.create_async_engine",
                return_value=mock_engine,
            ),
            patch(
                "sqlalchemy.ext.asyncio.async_sessionmaker",
                return_value=mock_factory,
            ),
        ):
            await startup(ctx)
        assert ctx["engine"] is mock_engine
        assert ctx["session_factory"] is mock_factory

    async def test_startup_binds_no_tenant(self) -> None:
        ctx: dict[str, object] = {}
        with (
            patch("civic_portal.worker.configure_logging"),
            patch("sqlalchemy.ext.asyncio.create_async_engine"),
            patch("sqlalchemy.ext.asyncio.async_sessionmaker"),
        ):
            await startup(ctx)
        assert set(ctx) == {"engine", "session_factory"}

    async def test_shutdown_disposes_engine(self) -> None:
        mock_engine = MagicMock()
        mock_engine.dispose = AsyncMock()
        ctx: dict[str, object] = {"engine": mock_engine}
        with patch("civic_portal.worker.structlog"):
            await shutdown(ctx)
        mock_engine.dispose.assert_awaited_once()

    async def test_shutdown_handles_missing_engine(self) -> None:
        ctx: dict[str, object] = {}
        with patch("civic_portal.worker.structlog") as mock_structlog:
            mock_logger = MagicMock()
            mock_structlog.get_logger.return_value = mock_logger
            await shutdown(ctx)
            mock_logger.info.assert_called_once_with("worker_stopped")
