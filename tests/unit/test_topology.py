from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.errors import TopicAlreadyExistsError

from notifier.core.exceptions import PublishException, TopologyConfigurationException
from notifier.core.events.topology import DelayTier, DeliveryTopology, RetryExchange, tier_topic_name
from tests.support import DEAD_LETTER_QUEUE, MAIN_QUEUE


def described(name, partitions=1, replicas=1, error_code=0):
    return {
        "error_code": error_code,
        "topic": name,
        "is_internal": False,
        "partitions": [
            {"error_code": 0, "partition": p, "leader": 1, "replicas": list(range(replicas)), "isr": list(range(replicas))}
            for p in range(partitions)
        ],
    }


def mock_admin(existing=(), described_topics=None, topic_errors=()):
    admin = MagicMock()
    admin.list_topics = AsyncMock(return_value=list(existing))
    admin.describe_topics = AsyncMock(return_value=described_topics or [described(name) for name in existing])
    admin.create_topics = AsyncMock(return_value=MagicMock(topic_errors=list(topic_errors)))
    return admin


@pytest.mark.unit
class TestDeclaration:

    def test_default_tiers(self, topology: DeliveryTopology):
        assert [tier.topic for tier in topology.tiers] == ["delay_queue_1s", "delay_queue_5s", "delay_queue_30s"]
        assert [tier.routing_key for tier in topology.tiers] == ["retry.1000", "retry.5000", "retry.30000"]
        assert topology.queues == [
            MAIN_QUEUE, DEAD_LETTER_QUEUE, "delay_queue_1s", "delay_queue_5s", "delay_queue_30s"
        ]

    def test_tiers_are_sorted(self):
        topology = DeliveryTopology(MAIN_QUEUE, DEAD_LETTER_QUEUE, "retry_exchange", [30000, 1000, 5000])

        assert [tier.ttl_ms for tier in topology.tiers] == [1000, 5000, 30000]

    def test_sub_second_tier_name(self):
        assert tier_topic_name(250) == "delay_queue_250ms"
        assert tier_topic_name(60000) == "delay_queue_60s"

    @pytest.mark.parametrize("tiers", [[], [0, 1000], [-5], [1000, 1000]])
    def test_invalid_tier_declarations(self, tiers):
        with pytest.raises(TopologyConfigurationException):
            DeliveryTopology(MAIN_QUEUE, DEAD_LETTER_QUEUE, "retry_exchange", tiers)

    def test_queue_names_must_be_distinct(self):
        with pytest.raises(TopologyConfigurationException):
            DeliveryTopology("delay_queue_1s", DEAD_LETTER_QUEUE, "retry_exchange", [1000])

    def test_from_settings(self):
        settings = MagicMock(
            KAFKA_TOPIC_NOTIFICATION_EVENTS="events",
            KAFKA_TOPIC_DEAD_LETTER="dlq",
            KAFKA_RETRY_EXCHANGE="retries",
            RETRY_DELAY_TIERS_MS=[2000],
            KAFKA_TOPIC_PARTITIONS=3,
            KAFKA_REPLICATION_FACTOR=1,
        )

        topology = DeliveryTopology.from_settings(settings)

        assert topology.main_queue == "events"
        assert topology.retry_exchange.name == "retries"
        assert topology.partitions == 3
        assert topology.tiers == [DelayTier(ttl_ms=2000, topic="delay_queue_2s")]


@pytest.mark.unit
class TestTierSelection:

    @pytest.mark.parametrize("delay_ms,expected", [
        (0, "delay_queue_1s"),
        (1000, "delay_queue_1s"),
        (1001, "delay_queue_5s"),
        (4000, "delay_queue_5s"),
        (5000, "delay_queue_5s"),
        (29999, "delay_queue_30s"),
        (30000, "delay_queue_30s"),
        (60000, "delay_queue_30s"),
    ])
    def test_smallest_covering_tier_else_largest(self, topology: DeliveryTopology, delay_ms, expected):
        assert topology.select_tier(delay_ms).topic == expected

    def test_routing_key_for_delay(self, topology: DeliveryTopology):
        assert topology.routing_key_for(4000) == "retry.5000"
        assert topology.routing_key_for(90000) == "retry.30000"

    @pytest.mark.parametrize("retry_count,expected", [(1, 1000), (2, 5000), (3, 30000), (4, 30000), (10, 30000)])
    def test_delay_for_retry_holds_at_longest_tier(self, topology: DeliveryTopology, retry_count, expected):
        assert topology.delay_for_retry(retry_count) == expected

    def test_delay_for_retry_requires_positive_count(self, topology: DeliveryTopology):
        with pytest.raises(ValueError):
            topology.delay_for_retry(0)


@pytest.mark.unit
class TestRetryExchange:

    def test_each_tier_bound_exactly_once(self, topology: DeliveryTopology):
        bindings = topology.retry_exchange.bindings
        assert len(bindings) == len(topology.tiers)
        for tier in topology.tiers:
            assert bindings[tier.routing_key] is tier

    def test_rebinding_same_key_to_other_queue_is_rejected(self):
        exchange = RetryExchange("retry_exchange")
        exchange.bind(DelayTier(1000, "delay_queue_1s"))

        exchange.bind(DelayTier(1000, "delay_queue_1s"))
        with pytest.raises(TopologyConfigurationException):
            exchange.bind(DelayTier(1000, "other_queue"))

    def test_unbound_routing_key(self):
        with pytest.raises(PublishException):
            RetryExchange("retry_exchange").route("retry.1234")


@pytest.mark.unit
class TestSetup:

    async def test_creates_every_queue_on_empty_cluster(self, topology: DeliveryTopology):
        admin = mock_admin()

        await topology.setup(admin)

        new_topics = admin.create_topics.call_args.args[0]
        assert [topic.name for topic in new_topics] == topology.queues
        assert all(topic.num_partitions == 1 for topic in new_topics)
        assert all(topic.replication_factor == 1 for topic in new_topics)
        dlq = next(topic for topic in new_topics if topic.name == DEAD_LETTER_QUEUE)
        assert dlq.topic_configs == {"retention.ms": "-1"}
        admin.describe_topics.assert_not_called()

    async def test_existing_matching_queues_are_left_alone(self, topology: DeliveryTopology):
        admin = mock_admin(existing=topology.queues)

        await topology.setup(admin)
        await topology.setup(admin)

        admin.create_topics.assert_not_called()
        assert admin.describe_topics.await_count == 2

    async def test_only_missing_queues_are_created(self, topology: DeliveryTopology):
        admin = mock_admin(existing=[MAIN_QUEUE, "unrelated_topic"])

        await topology.setup(admin)

        admin.describe_topics.assert_awaited_once_with([MAIN_QUEUE])
        created = [topic.name for topic in admin.create_topics.call_args.args[0]]
        assert created == [DEAD_LETTER_QUEUE, "delay_queue_1s", "delay_queue_5s", "delay_queue_30s"]

    async def test_partition_mismatch_is_fatal(self, topology: DeliveryTopology):
        admin = mock_admin(existing=[MAIN_QUEUE], described_topics=[described(MAIN_QUEUE, partitions=3)])

        with pytest.raises(TopologyConfigurationException, match="partition"):
            await topology.setup(admin)

    async def test_replication_mismatch_is_fatal(self, topology: DeliveryTopology):
        admin = mock_admin(existing=[MAIN_QUEUE], described_topics=[described(MAIN_QUEUE, replicas=3)])

        with pytest.raises(TopologyConfigurationException, match="replication"):
            await topology.setup(admin)

    async def test_concurrent_creation_by_another_instance_is_accepted(self, topology: DeliveryTopology):
        admin = mock_admin(topic_errors=[(MAIN_QUEUE, TopicAlreadyExistsError.errno, None)])

        await topology.setup(admin)

    async def test_creation_error_is_fatal(self, topology: DeliveryTopology):
        # 37: invalid partitions
        admin = mock_admin(topic_errors=[(MAIN_QUEUE, 37, "Number of partitions is invalid")])

        with pytest.raises(TopologyConfigurationException):
            await topology.setup(admin)
