"""
Pipeline context: the one place that builds and owns the shared pieces.

The token bucket, entity cache, dependency graph and follow-up queue are
process-wide by nature. They are created here and handed to each component
instead of living in module globals, so tests can build a fresh context
per case.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from ..client import Debouncer, RateLimitedTransport, RetryPolicy, TokenBucket
from ..config import PipelineSettings
from ..database import AssetStore, DocumentStore
from ..parsing import CatalogRecordMapper, WireFormatNormalizer
from .reconciler import EntityCache, EntityReconciler, SyntheticIdGenerator
from .state import DependencyGraph, ProcessingStateTracker
from .worker import FollowUpQueue

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    settings: PipelineSettings
    bucket: TokenBucket
    debouncer: Debouncer
    retry_policy: RetryPolicy
    transport: RateLimitedTransport
    store: DocumentStore
    cache: EntityCache
    assets: AssetStore
    graph: DependencyGraph
    tracker: ProcessingStateTracker
    follow_ups: FollowUpQueue
    reconciler: EntityReconciler
    normalizer: WireFormatNormalizer
    mapper: CatalogRecordMapper

    @classmethod
    def create(cls, settings: Optional[PipelineSettings] = None, **overrides) -> "PipelineContext":
        """
        Build a context from settings.

        Args:
            settings: Tunables; defaults come from config
            **overrides: Pre-built components to use instead of the defaults
                (e.g. transport=FakeTransport(), assets=Mock()). The default
                cache has only a session tier; pass
                cache=EntityCache(persistent=mapping) to keep resolutions in a
                mapping that outlives this context.
        """
        settings = settings or PipelineSettings()

        def take(name, factory):
            component = overrides.pop(name, None)
            return factory() if component is None else component

        bucket = take("bucket", lambda: TokenBucket(settings.bucket_capacity, settings.bucket_window_ms))
        debouncer = take("debouncer", lambda: Debouncer(settings.debounce_ms))
        retry_policy = take("retry_policy", lambda: RetryPolicy(
            initial_delay_ms=settings.retry_initial_delay_ms,
            factor=settings.retry_factor,
            max_delay_ms=settings.retry_max_delay_ms,
            max_attempts=settings.retry_max_attempts,
            jitter=settings.retry_jitter,
        ))

        session = take("session", requests.Session)
        transport = take("transport", lambda: RateLimitedTransport(
            bucket=bucket,
            debouncer=debouncer,
            retry_policy=retry_policy,
            session=session,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            api_token=settings.api_token,
            user_agent=settings.user_agent,
        ))

        store = take("store", lambda: DocumentStore(settings.db_path))
        cache = take("cache", EntityCache)
        assets = take("assets", lambda: AssetStore(store, settings.media_dir, session=session))
        graph = take("graph", DependencyGraph)
        follow_ups = take("follow_ups", lambda: FollowUpQueue(
            workers=settings.follow_up_workers,
            max_delay_s=settings.follow_up_max_delay_s,
            maxsize=settings.follow_up_queue_size,
        ))
        tracker = take("tracker", lambda: ProcessingStateTracker(
            store, graph, submit=follow_ups.submit, max_depth=settings.follow_up_max_depth))
        id_generator = take("id_generator", SyntheticIdGenerator)
        reconciler = take("reconciler", lambda: EntityReconciler(
            store, cache, id_generator=id_generator, initial_fields=tracker.initial_fields))
        normalizer = take("normalizer", WireFormatNormalizer)
        mapper = take("mapper", lambda: CatalogRecordMapper(settings.link_types))

        if overrides:
            raise TypeError(f"Unknown pipeline components: {', '.join(sorted(overrides))}")
        return cls(
            settings=settings, bucket=bucket, debouncer=debouncer, retry_policy=retry_policy,
            transport=transport, store=store, cache=cache, assets=assets, graph=graph,
            tracker=tracker, follow_ups=follow_ups, reconciler=reconciler,
            normalizer=normalizer, mapper=mapper,
        )

    def close(self, wait: bool = True) -> None:
        self.follow_ups.shutdown(wait=wait)
        self.cache.clear_session()
        logger.debug("Pipeline context closed")

