"""Application context owning every long-lived agquota component."""

import logging

from agquota.client import LanguageServerClient
from agquota.config import ConfigStore, WatcherConfig
from agquota.poller import QuotaPoller
from agquota.prober import PortProber
from agquota.resolver import ConnectionResolver
from agquota.retry import StartupRetryController
from agquota.scanner import ProcessScanner, select_scanner

logger = logging.getLogger(__name__)


class WatcherContext:
    """
    Builds the scanner, prober, resolver, poller and retry controller once
    and wires config changes to the poller. Consumers receive this object
    instead of reaching for module-level instances.
    """

    def __init__(
        self,
        config: ConfigStore | None = None,
        scanner: ProcessScanner | None = None,
        client: LanguageServerClient | None = None,
        prober: PortProber | None = None,
        poller: QuotaPoller | None = None,
    ) -> None:
        self.config = config or ConfigStore()
        self.client = client or LanguageServerClient()
        self.scanner = scanner or select_scanner()
        self.prober = prober or PortProber(self.client)
        self.resolver = ConnectionResolver(self.scanner, self.prober)
        self.poller = poller or QuotaPoller(self.client)
        self.controller = StartupRetryController(self.resolver, self.poller, self.config)
        self._unsubscribe_config = self.config.on_change(self._on_config_change)

    def start(self) -> None:
        """Kick off discovery. Must be called from the running event loop."""
        logger.info("Starting agquota, config: %s", self.config.get_config())
        self.controller.start()

    async def refresh(self) -> None:
        """Manual refresh of the quota data."""
        logger.info("Manual refresh triggered")
        await self.poller.fetch_quota()

    def reconnect(self) -> None:
        self.controller.reconnect()

    def close(self) -> None:
        """Stop timers and pending attempts."""
        self.controller.stop()
        self.poller.stop_polling()
        self._unsubscribe_config()

    def _on_config_change(self, config: WatcherConfig) -> None:
        if not self.controller.is_connected:
            return
        if config.enabled:
            if self.poller.interval != config.polling_interval or not self.poller.is_polling:
                self.poller.start_polling(config.polling_interval)
        else:
            self.poller.stop_polling()
