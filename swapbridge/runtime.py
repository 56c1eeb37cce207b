from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import Settings, settings as default_settings
from .core.bridge.notifications import BridgeNotifier
from .core.bridge.poller import StatusPollingScheduler
from .core.bridge.service import BridgeService, TransactionSigner
from .core.bridge.state_machine import BridgeTransactionStateMachine
from .core.bridge.storage import InMemoryTransactionStorage, JsonFileTransactionStorage, TransactionStorage
from .core.bridge.store import BridgeTransactionStore
from .core.coordinator import RequestCoordinator
from .core.quotes.aggregator import QuoteAggregator
from .core.quotes.engine import QuoteAcquisitionEngine
from .core.retry import BackoffPolicy
from .providers import ChangeNowProvider, JupiterProvider, LiFiProvider, OkxDexProvider
from .providers.base import QuoteProvider, StatusProvider


def build_quote_providers(config: Settings) -> List[QuoteProvider]:
    providers: List[QuoteProvider] = []
    if config.enable_lifi:
        providers.append(LiFiProvider(config=config))
    if config.enable_okx and config.has_okx_credentials:
        providers.append(OkxDexProvider(config=config))
    if config.enable_jupiter:
        providers.append(JupiterProvider(config=config))
    if config.enable_changenow and config.has_changenow_key:
        providers.append(ChangeNowProvider(config=config))
    return providers


def build_status_providers(providers: Sequence[Any], config: Optional[Settings] = None) -> Dict[str, StatusProvider]:
    status = {p.name: p for p in providers if isinstance(p, StatusProvider)}
    if not status:
        # Bridge status always needs somewhere to ask
        lifi = LiFiProvider(config=config)
        status[lifi.name] = lifi
    return status


class SwapBridgeRuntime:
    """Composes every long-lived component once per process."""

    def __init__(
        self,
        *,
        config: Optional[Settings] = None,
        providers: Optional[Sequence[QuoteProvider]] = None,
        status_providers: Optional[Mapping[str, StatusProvider]] = None,
        storage: Optional[TransactionStorage] = None,
        signer: Optional[TransactionSigner] = None,
        coordinator: Optional[RequestCoordinator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config or default_settings
        self.logger = logger or logging.getLogger("swapbridge.runtime")

        self.coordinator = coordinator or RequestCoordinator.from_settings(self.config)
        self.providers = list(providers) if providers is not None else build_quote_providers(self.config)
        self.aggregator = QuoteAggregator(self.providers, self.coordinator)

        if storage is None:
            storage = (
                JsonFileTransactionStorage(self.config.transactions_dir)
                if self.config.persistent_history
                else InMemoryTransactionStorage()
            )
        self.storage = storage
        self.store = BridgeTransactionStore(
            storage=self.storage,
            state_machine=BridgeTransactionStateMachine(),
            max_records=self.config.max_stored_transactions,
            retention_days=self.config.transaction_retention_days,
        )

        self.status_providers = (
            dict(status_providers) if status_providers is not None else build_status_providers(self.providers, self.config)
        )
        self.scheduler = StatusPollingScheduler(
            self.store,
            self.status_providers,
            interval_seconds=self.config.poll_interval_seconds,
            max_poll_seconds=self.config.max_poll_seconds,
        )
        self.notifier = BridgeNotifier()
        self._remove_notifier = self.store.add_change_listener(self.notifier.handle)
        self._remove_forget = self.store.add_removal_listener(self.notifier.forget)
        self.service = BridgeService(self.store, self.scheduler, signer=signer)

        self._engines: "weakref.WeakSet[QuoteAcquisitionEngine]" = weakref.WeakSet()
        self._lock = asyncio.Lock()
        self._running = False
        self._started_at: Optional[datetime] = None

    # ---------------------------
    # Lifecycle
    # ---------------------------
    @property
    def running(self) -> bool:
        return self._running

    async def start(self, active_account: Optional[str] = None) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            self._started_at = datetime.now(timezone.utc)
            self.logger.info(
                "Runtime starting with providers: %s",
                ", ".join(p.name for p in self.providers) or "none",
            )
            await self._resume_stored()
            if active_account:
                await self._activate(active_account)

    async def _resume_stored(self) -> int:
        """Resume polling for every stored owner's pending bridges."""
        resumed = 0
        for owner in await self.storage.owners():
            try:
                await self.store.ensure_loaded(owner)
            except (OSError, ValueError) as e:
                self.logger.error("Could not load bridge history for %s: %s", owner, e)
                continue
            resumed += self.scheduler.resume_pending(owner)
        return resumed

    async def switch_account(self, address: Optional[str]) -> None:
        """Change the active account and resume polling for its pending bridges."""
        await self._activate(address)

    async def _activate(self, address: Optional[str]) -> None:
        await self.store.set_active_account(address)
        if address:
            self.scheduler.resume_pending(address)

    async def stop(self) -> None:
        async with self._lock:
            if not self._running:
                return
            self._running = False
            self.logger.info("Runtime stopping")

            engines = list(self._engines)
            for engine in engines:
                await engine.close()
            self._engines.clear()

            await self.scheduler.shutdown()

    # ---------------------------
    # Factories
    # ---------------------------
    def new_quote_engine(self, debounce_seconds: Optional[float] = None) -> QuoteAcquisitionEngine:
        engine = QuoteAcquisitionEngine(
            self.aggregator,
            self.coordinator,
            debounce_seconds=self.config.quote_debounce_seconds if debounce_seconds is None else debounce_seconds,
            backoff=BackoffPolicy(
                max_retries=self.config.quote_max_retries,
                base_seconds=self.config.quote_retry_base_seconds,
                cap_seconds=self.config.quote_retry_cap_seconds,
            ),
            cache_ttl=self.config.quote_cache_ttl_seconds,
        )
        self._engines.add(engine)
        return engine

    # ---------------------------
    # Introspection
    # ---------------------------
    async def health(self) -> Dict[str, Any]:
        provider_status = {}
        for provider in self.providers:
            try:
                provider_status[provider.name] = await provider.health_check()
            except Exception as exc:  # noqa: BLE001
                provider_status[provider.name] = {"status": "error", "reason": str(exc)}

        return {
            "running": self._running,
            "startedAt": self._started_at.isoformat() if self._started_at else None,
            "activeAccount": self.store.active_account,
            "providers": provider_status,
            "statusProviders": sorted(self.status_providers),
            "activePolls": self.scheduler.active_ids,
            "coordinator": self.coordinator.stats(),
        }
