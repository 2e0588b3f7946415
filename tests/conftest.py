from typing import Callable, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio

from core.models import Settings
from database import close_db, init_db, init_engine, lot_service


class FakeWeb:
    """
    Подмена сети для httpx: ответы регистрируются по методу и префиксу URL.
    Несколько ответов на один маршрут отдаются по очереди, последний повторяется.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Callable[[httpx.Request], httpx.Response]]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, status: int = 200, handler=None, **response_kwargs):
        if handler is None:
            def handler(request, _status=status, _kwargs=response_kwargs):
                return httpx.Response(_status, **_kwargs)
        self.routes.setdefault((method.upper(), url), []).append(handler)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        matches = [
            key for key in self.routes
            if key[0] == request.method and url.startswith(key[1])
        ]
        if not matches:
            return httpx.Response(404, text="not found")
        key = max(matches, key=lambda k: len(k[1]))
        queue = self.routes[key]
        handler = queue.pop(0) if len(queue) > 1 else queue[0]
        return handler(request)

    def client_factory(self, timeout: float = 30, follow_redirects: bool = True, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handle),
            timeout=timeout,
            follow_redirects=follow_redirects,
            **kwargs,
        )

    def sent(self, method: str, url_prefix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and str(r.url).startswith(url_prefix)]


@pytest.fixture
def web():
    return FakeWeb()


@pytest_asyncio.fixture
async def store():
    """LotService поверх чистой in-memory SQLite."""
    init_engine("sqlite+aiosqlite:///:memory:")
    await init_db()
    yield lot_service
    await close_db()


@pytest.fixture
def settings():
    return Settings(
        target_chat_id=-100111,
        admin_chat_id=-100222,
        include_keywords=["нежилое", "помещение", "здание", "квартира", "участок"],
        exclude_keywords=["автомобиль", "трактор", "оборудование"],
        excluded_lot_types=["управление многоквартирными домами"],
        rss_url="https://torgi.test/rss?dynSubjRF=80",
        xhr_url="https://torgi.test/lotcards/",
        closed_rss_url="https://torgi.test/closed",
        cdtrf_base_url="https://cdtrf.test",
        sberast_base_url="https://sberast.test",
    )
