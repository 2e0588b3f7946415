# services/pipeline.py
"""
Один прогон: все источники -> сохранение -> сверка опубликованного -> публикация новых.
Единственная точка входа для внешнего триггера (расписание, ручной запуск).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from sqlalchemy.exc import SQLAlchemyError

from core.lots import Lot
from core.models import Settings
from services.cdtrf_source import CdtrfSource
from services.channel import DeliveryChannel
from services.classifier import KeywordFilter, RegionValidator
from services.closed_lots import ClosedLotsFeed
from services.dedup import find_duplicate
from services.enricher import HtmlDetailEnricher, TorgiJsonEnricher
from services.http import ClientFactory, create_client
from services.reconciler import DeadlineChange, Reconciler, StatusChange
from services.sberast_source import SberAstSource
from services.source_base import LotSource
from services.torgi_source import TorgiFeedSource

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    published: List[Lot] = field(default_factory=list)
    status_changes: List[StatusChange] = field(default_factory=list)
    deadline_changes: List[DeadlineChange] = field(default_factory=list)
    saved: int = 0


class Orchestrator:
    def __init__(self, store, reconciler: Reconciler, channel: DeliveryChannel, fetch_limit: int = 10_000):
        self.store = store
        self.reconciler = reconciler
        self.channel = channel
        self.fetch_limit = fetch_limit

    async def run(
        self,
        sources: Sequence[LotSource],
        max_publish_count: int,
        target_chat_id: int,
        notify_on_ambiguous: bool = False,
    ) -> RunResult:
        result = RunResult()

        # 1. Сбор со всех площадок параллельно; упавший источник не мешает остальным
        lots = await self._gather(sources, notify_on_ambiguous)

        # 2. Сохранение пачки
        result.saved = await self.store.upsert(lots)

        # 3. Сверка уже опубликованного
        try:
            result.deadline_changes, result.status_changes = await self.reconciler.reconcile(lots)
        except SQLAlchemyError as e:
            logger.error("[pipeline] reconciliation skipped: %s", e)

        # 4. Публикация новых
        try:
            unsent = await self.store.select_unsent(lots)
        except SQLAlchemyError as e:
            logger.error("[pipeline] unsent lots lookup failed, nothing published: %s", e)
            unsent = []
        for lot in unsent:
            if len(result.published) >= max_publish_count:
                break
            try:
                message_id = await self.channel.publish(target_chat_id, lot)
            except Exception as e:
                logger.error("[pipeline] failed to publish %s: %s", lot.number, e)
                continue
            lot.is_sent = True
            result.published.append(lot)
            logger.info("[pipeline] published %s as message %s", lot.number, message_id)
            await self._remember_published(lot, message_id, target_chat_id)

        logger.info(
            "[pipeline] run done: fetched=%d saved=%d published=%d deadline_changes=%d status_changes=%d",
            len(lots), result.saved, len(result.published),
            len(result.deadline_changes), len(result.status_changes),
        )
        return result

    async def _remember_published(self, lot: Lot, message_id: int, chat_id: int):
        """Флаг отправки ставится раньше сопоставления сообщения. Сбой БД не прерывает прогон."""
        try:
            await self.store.mark_sent(lot.number)
        except SQLAlchemyError as e:
            logger.error("[pipeline] failed to mark %s as sent: %s", lot.number, e)
            return
        try:
            await self.store.record_message_mapping(lot.number, message_id, chat_id)
        except SQLAlchemyError as e:
            logger.error("[pipeline] failed to record message %s for %s: %s", message_id, lot.number, e)

    async def _gather(self, sources: Sequence[LotSource], notify_on_ambiguous: bool) -> List[Lot]:
        results = await asyncio.gather(
            *(s.fetch(self.fetch_limit, check_duplicates=True, notify_on_ambiguous=notify_on_ambiguous) for s in sources),
            return_exceptions=True,
        )
        lots: List[Lot] = []
        for source, res in zip(sources, results):
            if isinstance(res, BaseException):
                logger.error("[pipeline] source %s failed: %r", source.name, res)
                continue
            logger.info("[pipeline] %s: %d lots", source.name, len(res))
            lots.extend(res)
        return await self._drop_batch_duplicates(lots)

    async def _drop_batch_duplicates(self, lots: List[Lot]) -> List[Lot]:
        """
        Один и тот же объект с разных площадок в одном прогоне: новый лот,
        похожий на уже взятый в пачку, отбрасывается. Лоты, которые уже есть
        в БД, остаются всегда.
        """
        if not lots:
            return lots
        try:
            known = await self.store.known_numbers(lot.number for lot in lots)
        except SQLAlchemyError as e:
            logger.error("[pipeline] known lots lookup failed: %s", e)
            known = set()

        kept: List[Lot] = []
        titles: List[str] = []
        for lot in lots:
            if lot.number not in known:
                match = find_duplicate(lot.title, titles)
                if match is not None:
                    logger.info("[pipeline] %s (%s) duplicates %r from this run, skipped",
                                lot.number, lot.source, match[:80])
                    continue
            kept.append(lot)
            titles.append(lot.title)
        return kept


def build_sources(
    settings: Settings,
    store,
    channel: DeliveryChannel,
    client_factory: ClientFactory = create_client,
    enabled: Sequence[str] = ("torgi", "cdtrf", "sberast"),
) -> List[LotSource]:
    """Источники с общими фильтрами. store - для no-match маркеров и дедупликации."""
    keyword_filter = KeywordFilter(
        settings.include_keywords, settings.exclude_keywords, store=store, notifier=channel,
    )
    common = dict(
        keyword_filter=keyword_filter,
        region_validator=RegionValidator(settings.region),
        duplicates=store,
        notifier=channel,
        client_factory=client_factory,
    )

    sources: List[LotSource] = []
    if "torgi" in enabled:
        sources.append(TorgiFeedSource(
            settings.rss_url,
            enricher=TorgiJsonEnricher(settings.xhr_url, client_factory),
            excluded_lot_types=settings.excluded_lot_types,
            **common,
        ))
    if "cdtrf" in enabled:
        sources.append(CdtrfSource(settings.cdtrf_base_url, **common))
    if "sberast" in enabled:
        sources.append(SberAstSource(
            settings.sberast_base_url, enricher=HtmlDetailEnricher(client_factory), **common,
        ))
    return sources


def build_orchestrator(
    settings: Settings,
    store,
    channel: DeliveryChannel,
    client_factory: ClientFactory = create_client,
) -> Orchestrator:
    closed_feed = ClosedLotsFeed(settings.closed_rss_url, client_factory)
    return Orchestrator(store, Reconciler(store, closed_feed, channel), channel)
