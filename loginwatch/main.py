"""Service entry point: consume authentication events and record them."""

import asyncio
import contextlib
import inspect
import signal

import structlog

from loginwatch.config import Settings, settings
from loginwatch.consumers.login_consumer import LoginEventConsumer
from loginwatch.domains.login.alerts import (
    AlertEmitter,
    CompositeAlertSink,
    KafkaAlertSink,
    SqlAlertSink,
)
from loginwatch.domains.login.config import (
    EnvSecuritySettings,
    LoginRiskConfig,
    RiskConfigHolder,
)
from loginwatch.domains.login.detectors import StaticReputationList, build_detectors
from loginwatch.domains.login.dispatcher import LoginEventDispatcher
from loginwatch.domains.login.geo import IpApiGeoResolver
from loginwatch.domains.login.recorder import LoginEventRecorder
from loginwatch.domains.login.scoring import RiskAggregator
from loginwatch.domains.login.store import SqlSecuritySettings, SqlSessionStore
from loginwatch.shared.cache import RedisTTLCache
from loginwatch.shared.kafka_utils import create_producer
from loginwatch.shared.logging import setup_logging

logger = structlog.get_logger()


def build_aggregator(app_settings: Settings) -> RiskAggregator:
    entries = [e for e in app_settings.ip_blocklist.split(",") if e.strip()]
    reputation_list = StaticReputationList(entries) if entries else None
    return RiskAggregator(detectors=build_detectors(reputation_list))


async def _periodic(interval: float, fn, *args) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.warning("periodic_task_failed", task=fn.__name__, exc_info=True)


def _log_dispatcher_stats(dispatcher: LoginEventDispatcher) -> None:
    stats = dispatcher.stats()
    logger.info(
        "dispatcher_stats",
        queue_depth=stats.queue_depth,
        submitted=stats.submitted,
        processed=stats.processed,
        rejected=stats.rejected,
        dropped=stats.dropped,
        failed=stats.failed,
    )


async def _reload_config(holder: RiskConfigHolder) -> None:
    config = await holder.refresh()
    logger.debug("risk_config_reloaded", version=config.version)


async def run(app_settings: Settings = settings) -> None:
    """Run the recorder until SIGINT/SIGTERM."""
    setup_logging(app_settings.log_level)
    logger.info(
        "loginwatch_starting",
        app_name=app_settings.app_name,
        version=app_settings.app_version,
        debug=app_settings.debug,
    )

    from loginwatch.db.database import async_session_factory, engine, init_db

    await init_db()

    cache = RedisTTLCache.from_url(app_settings.redis_url)
    producer = await create_producer(app_settings.kafka_bootstrap_servers)
    geo_resolver = IpApiGeoResolver(
        base_url=app_settings.geo_api_url,
        cache=cache,
        cache_ttl_seconds=app_settings.geo_cache_ttl_seconds,
        timeout_seconds=app_settings.geo_timeout_seconds,
    )
    config_holder = RiskConfigHolder(
        initial=LoginRiskConfig.from_env(),
        provider=SqlSecuritySettings(async_session_factory, fallback=EnvSecuritySettings()),
    )
    await config_holder.refresh()

    recorder = LoginEventRecorder(
        store=SqlSessionStore(async_session_factory),
        cache=cache,
        alert_emitter=AlertEmitter(
            CompositeAlertSink(
                SqlAlertSink(async_session_factory),
                KafkaAlertSink(producer, topic=app_settings.kafka_alerts_topic),
            )
        ),
        config_holder=config_holder,
        geo_resolver=geo_resolver,
        aggregator=build_aggregator(app_settings),
        geo_timeout_seconds=app_settings.geo_timeout_seconds,
    )
    dispatcher = LoginEventDispatcher(
        recorder,
        worker_count=app_settings.worker_count,
        queue_size=app_settings.worker_queue_size,
        policy=app_settings.backpressure_policy,
    )
    dispatcher.start()

    consumer = LoginEventConsumer(
        dispatcher,
        bootstrap_servers=app_settings.kafka_bootstrap_servers,
        topic=app_settings.kafka_auth_events_topic,
        group_id=app_settings.kafka_consumer_group,
    )
    tasks = [
        asyncio.create_task(consumer.start(), name="auth-event-consumer"),
        asyncio.create_task(
            _periodic(app_settings.stats_log_seconds, _log_dispatcher_stats, dispatcher)
        ),
        asyncio.create_task(
            _periodic(app_settings.config_reload_seconds, _reload_config, config_holder)
        ),
    ]

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await stop.wait()
    logger.info("loginwatch_shutting_down")

    with contextlib.suppress(Exception):
        await consumer.stop()
    for task in tasks:
        task.cancel()
    await dispatcher.stop(drain=True)
    await geo_resolver.aclose()
    await producer.stop()
    await cache.close()
    await engine.dispose()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
