"""
Pytest configuration for the sync client tests.

pytest-asyncio runs in auto mode (see pyproject.toml). HTTP goes through
httpx.MockTransport backed by FakeBackend; controllers get a FakeChannel
so events can be fed in without a server.
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from jose import jwt

from config import Settings
from middleware.session import SessionContext
from models.domain.realtime_event import RealtimeEvent
from models.domain.report import Report
from services.api_client import DisasterApiClient
from services.realtime_channel import ChannelHandlers
from services.request_cache import RequestCache

TEST_SECRET = "test-secret"
ADMIN_ID = "a" * 24
USER_ID = "b" * 24


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


# =============================================================================
# Fakes
# =============================================================================

class FakeBackend:
    """
    Route table for httpx.MockTransport.

    Routes map (method, path) to a (status, body) tuple or to a callable
    taking the request. Every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.requests: List[httpx.Request] = []

    def route(self, method: str, path: str, response: Any, status: int = 200):
        if callable(response):
            self.routes[(method, path)] = response
        else:
            self.routes[(method, path)] = (status, response)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={'success': False, 'message': f'No route {key}'})
        target = self.routes[key]
        status, body = target(request) if callable(target) else target
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


class FakeChannel:
    """In-memory stand-in for RealtimeChannel"""

    def __init__(self):
        self.url: Optional[str] = None
        self.handlers = ChannelHandlers()
        self.sent: List[Dict[str, Any]] = []
        self.open = False
        self.closed_count = 0

    @property
    def is_open(self) -> bool:
        return self.open

    async def connect(self, url: str, handlers: Optional[ChannelHandlers] = None) -> bool:
        self.url = url
        self.handlers = handlers or ChannelHandlers()
        self.open = True
        if self.handlers.on_open:
            await self.handlers.on_open()
        return True

    async def send(self, message) -> bool:
        if not self.open:
            return False
        data = message.to_dict() if isinstance(message, RealtimeEvent) else dict(message)
        self.sent.append(data)
        return True

    async def deliver(self, event_type: str, **payload):
        """Push one server event through the registered handler"""
        await self.handlers.on_message(RealtimeEvent(type=event_type, payload=payload))

    async def close(self):
        if self.open:
            self.open = False
            self.closed_count += 1
            if self.handlers.on_close:
                self.handlers.on_close()


# =============================================================================
# Builders
# =============================================================================

def make_token(user_id: str = ADMIN_ID, role: str = 'admin', name: str = 'Test Admin') -> str:
    return jwt.encode(
        {'_id': user_id, 'name': name, 'email': f'{role}@example.com', 'role': role},
        TEST_SECRET,
        algorithm='HS256',
    )


def report_payload(report_id: str, **fields) -> Dict[str, Any]:
    """Raw report dict in the API's camelCase shape"""
    payload = {
        '_id': report_id,
        'title': f'Report {report_id}',
        'description': 'Water level rising',
        'disasterType': 'FLOOD',
        'severity': 'MEDIUM',
        'location': 'Pune',
        'coordinates': {'latitude': 18.52, 'longitude': 73.85},
        'status': 'PENDING',
        'author': USER_ID,
        'authorName': 'Citizen',
        'votes': {'up': 0, 'down': 0, 'users': []},
        'views': 0,
        'createdAt': '2024-07-01T10:00:00.000Z',
    }
    payload.update(fields)
    return payload


def user_payload(user_id: str, **fields) -> Dict[str, Any]:
    payload = {
        '_id': user_id,
        'name': f'User {user_id[:4]}',
        'email': f'{user_id[:4]}@example.com',
        'role': 'user',
        'isBlocked': False,
        'isVerified': True,
        'credits': 10,
        'verifiedReportsCount': 1,
        'createdAt': '2024-06-01T00:00:00.000Z',
    }
    payload.update(fields)
    return payload


def comment_payload(comment_id: str, author: str = USER_ID, **fields) -> Dict[str, Any]:
    payload = {
        '_id': comment_id,
        'content': f'Comment {comment_id}',
        'author': author,
        'authorName': 'Citizen',
        'report': 'r1',
        'createdAt': '2024-07-01T11:00:00.000Z',
    }
    payload.update(fields)
    return payload


def ok(data: Any = None, message: str = "OK", **extra) -> Dict[str, Any]:
    body = {'success': True, 'message': message, 'data': data}
    body.update(extra)
    return body


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings():
    return Settings(
        api_base_url="http://testserver/api",
        ws_url="ws://testserver/ws",
        poll_interval_seconds=0,
        analytics_refresh_seconds=0,
        cache_retry_delay=0,
        cache_retries=0,
    )


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_report():
    def _make(report_id: str, **fields) -> Report:
        return Report.from_api(report_payload(report_id, **fields))
    return _make


@pytest.fixture
def payloads():
    """Raw payload builders for tests that talk to FakeBackend"""
    class Payloads:
        report = staticmethod(report_payload)
        user = staticmethod(user_payload)
        comment = staticmethod(comment_payload)
        ok = staticmethod(ok)
    return Payloads


@pytest.fixture
def tokens():
    class Tokens:
        admin = make_token()
        user = make_token(user_id=USER_ID, role='user', name='Test User')
        admin_id = ADMIN_ID
        user_id = USER_ID
    return Tokens


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
async def context(settings, backend, channel):
    """SessionContext wired to FakeBackend and FakeChannel (no session yet)"""
    api = DisasterApiClient(settings.api_base_url, transport=backend.transport)
    ctx = SessionContext(
        settings,
        api=api,
        cache=RequestCache(ttl=30.0, retry_delay=0, default_retries=0),
    )
    ctx.create_channel = lambda: channel
    yield ctx
    await ctx.aclose()


@pytest.fixture
async def admin_context(context, tokens):
    context.start(tokens.admin)
    return context


@pytest.fixture
async def user_context(context, tokens):
    context.start(tokens.user)
    return context
