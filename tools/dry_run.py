# tools/dry_run.py
"""
Ручной прогон пайплайна без реального канала доставки: всё, что ушло бы
в чаты, пишется в лог.

    python -m tools.dry_run --max-publish 5 --sources torgi,cdtrf
"""
import argparse
import asyncio
import logging

from core.config import load_settings
from core.utils import ensure_dirs, setup_logging, split_csv
from database import close_db, init_db, init_engine, lot_service
from services.channel import LoggingChannel
from services.pipeline import build_orchestrator, build_sources

logger = logging.getLogger(__name__)

ALL_SOURCES = "torgi,cdtrf,sberast"


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Dry run of the lot ingestion pipeline")
    p.add_argument("--max-publish", type=int, default=10, help="сколько новых лотов «опубликовать»")
    p.add_argument("--sources", default=ALL_SOURCES, help=f"через запятую, из: {ALL_SOURCES}")
    p.add_argument("--notify-ambiguous", action="store_true", help="уведомлять о неопределённых лотах")
    p.add_argument("--database-url", default=None, help="переопределить DATABASE_URL")
    return p.parse_args(argv)


async def main(argv=None):
    args = parse_args(argv)
    settings = load_settings()
    setup_logging(settings.log_level)

    url = args.database_url or settings.database_url
    if url.startswith("sqlite") and ":memory:" not in url:
        ensure_dirs("data")
    init_engine(url)
    await init_db()

    channel = LoggingChannel()
    sources = build_sources(settings, lot_service, channel, enabled=split_csv(args.sources))
    orchestrator = build_orchestrator(settings, lot_service, channel)
    try:
        result = await orchestrator.run(
            sources,
            max_publish_count=args.max_publish,
            target_chat_id=settings.target_chat_id,
            notify_on_ambiguous=args.notify_ambiguous,
        )
    finally:
        await close_db()

    print("=" * 50)
    print(f"Сохранено:          {result.saved}")
    print(f"Опубликовано:       {len(result.published)}")
    print(f"Изменения сроков:   {len(result.deadline_changes)}")
    print(f"Изменения статусов: {len(result.status_changes)}")
    print(f"Уведомлений:        {len(channel.notifications)}")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
