import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from notifier import consumer_worker
from notifier.core.exceptions import (
    BrokerConnectionException,
    NotifierException,
    TopologyConfigurationException,
)


async def connect_once(connect, **kwargs):
    await connect()


@pytest.fixture
def worker_env():
    """Patch every collaborator of the worker and record the shutdown order"""
    closed = []

    def closer(name):
        return AsyncMock(side_effect=lambda: closed.append(name))

    db = MagicMock(ping=AsyncMock(), create_tables=AsyncMock(), close=closer("database"))
    kafka = MagicMock(connect=AsyncMock(), close=closer("kafka"))
    topology = MagicMock(setup=AsyncMock())
    scheduler = MagicMock(start=AsyncMock(), stop=closer("scheduler"))
    consumer = MagicMock(start=AsyncMock(), stop=closer("consumer"))

    with patch.object(consumer_worker, "initialize_db"), \
            patch.object(consumer_worker, "setup_logging"), \
            patch.object(consumer_worker, "db_manager", db), \
            patch.object(consumer_worker, "KafkaClient", return_value=kafka), \
            patch.object(consumer_worker.DeliveryTopology, "from_settings", return_value=topology), \
            patch.object(consumer_worker, "DelayedRedeliveryScheduler", return_value=scheduler) as scheduler_cls, \
            patch.object(consumer_worker, "NotificationConsumer", return_value=consumer) as consumer_cls, \
            patch.object(consumer_worker, "connect_with_retry", AsyncMock(side_effect=connect_once)) as connect:
        yield SimpleNamespace(
            closed=closed,
            db=db,
            kafka=kafka,
            topology=topology,
            scheduler=scheduler,
            scheduler_cls=scheduler_cls,
            consumer=consumer,
            consumer_cls=consumer_cls,
            connect=connect,
        )


@pytest.mark.unit
class TestRunWorker:

    async def test_starts_everything_and_shuts_down_in_reverse_order(self, worker_env):
        stop_event = asyncio.Event()
        stop_event.set()

        await consumer_worker.run_worker(stop_event)

        worker_env.db.ping.assert_awaited_once()
        worker_env.db.create_tables.assert_awaited_once()
        worker_env.kafka.connect.assert_awaited_once()
        worker_env.topology.setup.assert_awaited_once_with(worker_env.kafka.admin)
        worker_env.scheduler.start.assert_awaited_once()
        worker_env.consumer.start.assert_awaited_once()
        assert worker_env.closed == ["consumer", "scheduler", "kafka", "database"]

    async def test_failed_step_does_not_skip_the_rest_of_shutdown(self, worker_env):
        worker_env.consumer.stop.side_effect = RuntimeError("consumer already closed")
        stop_event = asyncio.Event()
        stop_event.set()

        await consumer_worker.run_worker(stop_event)

        assert worker_env.closed == ["scheduler", "kafka", "database"]

    async def test_dead_background_task_stops_the_worker_with_an_error(self, worker_env):
        stop_event = asyncio.Event()
        worker = asyncio.create_task(consumer_worker.run_worker(stop_event))
        for _ in range(100):
            if worker_env.consumer_cls.called:
                break
            await asyncio.sleep(0.01)

        on_failure = worker_env.consumer_cls.call_args.kwargs["on_failure"]
        assert worker_env.scheduler_cls.call_args.kwargs["on_failure"] is on_failure
        on_failure(RuntimeError("fetch loop died"))

        with pytest.raises(NotifierException):
            await asyncio.wait_for(worker, timeout=1)
        assert worker_env.closed == ["consumer", "scheduler", "kafka", "database"]

    async def test_topology_mismatch_aborts_before_consuming(self, worker_env):
        worker_env.topology.setup.side_effect = TopologyConfigurationException("partition count mismatch")

        with pytest.raises(TopologyConfigurationException):
            await consumer_worker.run_worker(asyncio.Event())

        worker_env.consumer.start.assert_not_called()
        assert worker_env.closed == ["kafka", "database"]


@pytest.mark.unit
class TestWorkerMain:

    def test_connectivity_exhaustion_exits_with_status_1(self, worker_env):
        worker_env.connect.side_effect = BrokerConnectionException("Could not connect to Kafka after 10 attempts")

        with pytest.raises(SystemExit) as exc_info:
            consumer_worker.main()

        assert exc_info.value.code == 1
        assert worker_env.closed == ["kafka", "database"]

    def test_topology_mismatch_exits_with_status_1(self, worker_env):
        worker_env.topology.setup.side_effect = TopologyConfigurationException("replication factor mismatch")

        with pytest.raises(SystemExit) as exc_info:
            consumer_worker.main()

        assert exc_info.value.code == 1
