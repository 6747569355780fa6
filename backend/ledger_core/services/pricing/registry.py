# backend/ledger_core/services/pricing/registry.py
"""Lookup of the PriceSource that serves a mapping's provider."""

import logging

from ledger_core.models import PriceProvider
from ledger_core.services.exceptions import ValidationError
from ledger_core.services.pricing.base import PriceSource

logger = logging.getLogger(__name__)


class PriceSourceRegistry:
    """
    Holds one PriceSource per PriceProvider.

    Usage:
        registry = PriceSourceRegistry({
            PriceProvider.HTTP: HttpPriceSource(),
            PriceProvider.YAHOO: YahooPriceSource(),
        })
        source = registry.get(mapping.provider)
    """

    def __init__(self, sources: dict[PriceProvider, PriceSource] | None = None) -> None:
        self._sources: dict[PriceProvider, PriceSource] = dict(sources or {})

    def register(self, provider: PriceProvider, source: PriceSource) -> None:
        logger.debug(f"Registering price source '{source.name}' for provider {provider.value}")
        self._sources[PriceProvider(provider)] = source

    def get(self, provider: PriceProvider | str) -> PriceSource:
        try:
            return self._sources[PriceProvider(provider)]
        except (KeyError, ValueError):
            raise ValidationError(f"No price source registered for provider '{provider}'", field="provider")

    @property
    def providers(self) -> list[PriceProvider]:
        return list(self._sources)
