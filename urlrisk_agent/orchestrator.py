from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .cache import CacheBackend, MemoryCache, NoOpCache
from .config import ServiceConfig, SourceConfig
from .errors import SourceError, SourceSkipped, TransientSourceError
from .models import OrchestrationResult, SignalResult
from .sources import SignalSource

_LOG = logging.getLogger(__name__)

# How long cancelled lookups get to unwind after the deadline.
_CANCEL_GRACE_S = 0.05


@dataclass(frozen=True)
class OrchestrationOptions:
    force_refresh: bool = False
    skip_sources: frozenset[str] = field(default_factory=frozenset)
    deadline_s: float | None = None


def _ms_since(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def build_cache(cfg: SourceConfig) -> CacheBackend:
    if not cfg.cache_enabled:
        return NoOpCache()
    return MemoryCache(capacity=cfg.cache_capacity, default_ttl=cfg.cache_ttl_s)


class AnalysisOrchestrator:
    """Fans a domain out to every signal source and collects tagged results.

    Each source gets its own cache, timeout and retry budget from the
    service configuration. Failures are converted into ``SignalResult``
    statuses and never raised, so one broken source cannot take the rest
    of the analysis down with it.
    """

    def __init__(
        self,
        sources: Sequence[SignalSource],
        config: ServiceConfig,
        caches: Mapping[str, CacheBackend] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.sources = list(sources)
        self.config = config
        self.log = logger or _LOG
        self.caches: dict[str, CacheBackend] = dict(caches or {})
        for source in self.sources:
            if source.source_id not in self.caches:
                self.caches[source.source_id] = build_cache(self._source_config(source.source_id))

    def _source_config(self, source_id: str) -> SourceConfig:
        try:
            return self.config.source(source_id)
        except KeyError:
            raise ValueError(f"No configuration for signal source {source_id!r}") from None

    async def _attempt_lookups(self, source: SignalSource, domain: str, cfg: SourceConfig) -> SignalResult:
        sid = source.source_id
        cache = self.caches[sid]
        start = time.perf_counter()
        last_status = "error"
        last_detail = None
        attempts = 0

        for attempt in range(cfg.max_retries + 1):
            if attempt:
                await asyncio.sleep(self.config.retry_backoff_s * attempt)
            attempts += 1
            try:
                payload = await asyncio.wait_for(source.lookup(domain), timeout=cfg.timeout_s)
            except asyncio.TimeoutError:
                last_status, last_detail = "timeout", f"Lookup exceeded {cfg.timeout_s:g}s"
                self.log.debug("source %s attempt %d timed out", sid, attempts)
                continue
            except SourceSkipped as e:
                return SignalResult(source_id=sid, status="skipped", latency_ms=_ms_since(start), error_detail=str(e), attempts=attempts)
            except TransientSourceError as e:
                last_status, last_detail = "error", str(e)
                self.log.debug("source %s attempt %d failed: %s", sid, attempts, e)
                continue
            except SourceError as e:
                last_status, last_detail = "error", str(e)
                break
            except Exception as e:
                self.log.exception("source %s raised unexpectedly", sid)
                last_status, last_detail = "error", f"{type(e).__name__}: {e}"
                break

            if not isinstance(payload, dict):
                last_status, last_detail = "error", f"Source returned {type(payload).__name__}, expected an object"
                break
            try:
                result = SignalResult(source_id=sid, status="ok", payload=payload, latency_ms=_ms_since(start), attempts=attempts)
            except ValueError as e:
                last_status, last_detail = "error", f"Invalid payload: {e}"
                break
            try:
                cache.set(domain, payload, cfg.cache_ttl_s)
            except Exception:
                self.log.exception("cache write for source %s failed", sid)
            return result

        self.log.info("source %s gave up after %d attempt(s): %s", sid, attempts, last_detail)
        return SignalResult(
            source_id=sid,
            status=last_status,
            latency_ms=_ms_since(start),
            error_detail=last_detail,
            attempts=attempts,
        )

    async def _run_source(self, source: SignalSource, domain: str, options: OrchestrationOptions) -> SignalResult:
        sid = source.source_id
        cfg = self._source_config(sid)
        if not cfg.enabled or sid in options.skip_sources:
            return SignalResult(source_id=sid, status="skipped", error_detail="Disabled by configuration")

        cache = self.caches[sid]
        if options.force_refresh:
            cache.invalidate(domain)
        else:
            cached = cache.get(domain)
            if cached is not None:
                return SignalResult(source_id=sid, status="ok", payload=cached, latency_ms=0, from_cache=True)

        return await self._attempt_lookups(source, domain, cfg)

    async def analyze(self, domain: str, options: OrchestrationOptions | None = None) -> OrchestrationResult:
        """Run every source for ``domain`` concurrently under the total deadline.

        Sources still pending when the deadline elapses are cancelled and
        reported as ``timeout``; whatever completed is returned as-is.
        """
        opts = options or OrchestrationOptions()
        deadline = opts.deadline_s if opts.deadline_s is not None else self.config.total_deadline_s
        start = time.perf_counter()

        tasks = {
            source.source_id: asyncio.create_task(self._run_source(source, domain, opts), name=f"signal:{source.source_id}")
            for source in self.sources
        }
        if not tasks:
            return OrchestrationResult(results={}, total_elapsed_ms=0)
        _, pending = await asyncio.wait(tasks.values(), timeout=deadline)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.wait(pending, timeout=_CANCEL_GRACE_S)

        elapsed = _ms_since(start)
        results: dict[str, SignalResult] = {}
        for sid, task in tasks.items():
            if task in pending:
                results[sid] = SignalResult(
                    source_id=sid,
                    status="timeout",
                    latency_ms=elapsed,
                    error_detail=f"Total analysis deadline of {deadline:g}s elapsed",
                )
            else:
                try:
                    results[sid] = task.result()
                except Exception as e:
                    self.log.exception("source %s failed outside its lookup", sid)
                    results[sid] = SignalResult(
                        source_id=sid,
                        status="error",
                        latency_ms=elapsed,
                        error_detail=f"{type(e).__name__}: {e}",
                    )

        if pending:
            self.log.warning(
                "analysis deadline exceeded after %dms; pending sources: %s",
                elapsed,
                ", ".join(sid for sid, t in tasks.items() if t in pending),
            )
        return OrchestrationResult(results=results, total_elapsed_ms=elapsed, deadline_exceeded=bool(pending))
