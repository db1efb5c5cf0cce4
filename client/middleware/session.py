"""
Session and session-scoped state

Session          - who is signed in (claims read from the bearer token)
SessionContext   - everything that lives exactly as long as a session:
                   API client token, RequestCache, mounted controllers

Ending a session unmounts every controller and clears the cache, so no
view keeps data fetched under another identity.
"""
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import List, Optional, TYPE_CHECKING

from jose import JWTError, jwt

from config import Settings, get_settings
from models.domain.user import User, UserRole
from services.api_client import DisasterApiClient
from services.errors import ApiError, AuthorizationError, TransportError
from services.realtime_channel import RealtimeChannel
from services.request_cache import RequestCache

if TYPE_CHECKING:
    from controllers.base import BaseController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Minimal user info from the bearer token"""
    token: str
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str = UserRole.USER.value
    expires_at: Optional[datetime] = None

    @classmethod
    def from_token(cls, token: str) -> "Session":
        """
        Read the token's claims without verifying the signature (the server
        verifies it on every request; the client only needs id and role).

        Raises:
            AuthorizationError if the token is missing or not a JWT
        """
        if not token:
            raise AuthorizationError("No token provided")
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError as e:
            raise AuthorizationError(f"Invalid token: {e}") from e

        user_id = claims.get('_id') or claims.get('userId') or claims.get('sub')
        if not user_id:
            raise AuthorizationError("Token carries no user id")

        expires_at = None
        if claims.get('exp') is not None:
            expires_at = datetime.fromtimestamp(int(claims['exp']), tz=timezone.utc)

        return cls(
            token=token,
            user_id=str(user_id),
            name=claims.get('name'),
            email=claims.get('email'),
            role=claims.get('role') or UserRole.USER.value,
            expires_at=expires_at,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    def with_user(self, user: User) -> "Session":
        """Refresh name/role from the server's profile"""
        return replace(self, name=user.name, email=user.email, role=user.role.value)


class SessionContext:
    """
    Explicit container for session-scoped state (no module globals).

    Usage:
        context = SessionContext(get_settings())
        await context.restore(token)
        panel = AdminPanelController(context)
        await panel.mount()
        ...
        await context.aclose()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        api: Optional[DisasterApiClient] = None,
        cache: Optional[RequestCache] = None,
    ):
        self.settings = settings or get_settings()
        self.api = api or DisasterApiClient(
            self.settings.api_base_url,
            timeout=self.settings.request_timeout,
        )
        self.cache = cache or RequestCache(
            ttl=self.settings.cache_ttl_seconds,
            retry_delay=self.settings.cache_retry_delay,
            default_retries=self.settings.cache_retries,
        )
        self.session: Optional[Session] = None
        self.user: Optional[User] = None
        self._controllers: List["BaseController"] = []

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def is_admin(self) -> bool:
        return self.session is not None and self.session.is_admin

    @property
    def token(self) -> Optional[str]:
        return self.session.token if self.session else None

    @property
    def controllers(self) -> List["BaseController"]:
        return list(self._controllers)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, token: str) -> Session:
        """
        Begin a session from a bearer token.

        Raises:
            AuthorizationError if the token cannot be read
        """
        session = Session.from_token(token)
        if session.is_expired():
            raise AuthorizationError("Token has expired")

        if self.session is not None and self.session.user_id != session.user_id:
            # Cached reads belong to the previous identity
            self.cache.clear()

        self.session = session
        self.api.set_token(token)
        logger.info(f"Session started for {session.name or session.user_id} (role={session.role})")
        return session

    async def restore(self, token: str) -> Optional[User]:
        """
        Start a session and confirm it against GET /auth/profile.

        An invalid or rejected token ends the session and returns None. A
        network failure keeps the token-only session (the profile is
        retried on the next restore).
        """
        try:
            self.start(token)
        except AuthorizationError as e:
            logger.warning(f"Cannot restore session: {e.message}")
            return None

        try:
            response = await self.api.get_profile()
        except TransportError as e:
            logger.warning(f"Profile fetch failed, keeping token session: {e}")
            return None
        except ApiError as e:
            logger.warning(f"Token rejected by server: {e.message}")
            await self.end()
            return None

        data = response.data if isinstance(response.data, dict) else {}
        raw_user = data.get('user', data)
        if not raw_user:
            return None

        self.user = User.from_api(raw_user)
        self.session = self.session.with_user(self.user)
        return self.user

    async def end(self):
        """Logout: unmount every controller and drop cached data"""
        for controller in list(self._controllers):
            await controller.unmount()
        self._controllers.clear()

        self.cache.clear()
        self.api.set_token(None)
        if self.session is not None:
            logger.info(f"Session ended for {self.session.name or self.session.user_id}")
        self.session = None
        self.user = None

    async def aclose(self):
        await self.end()
        await self.api.aclose()

    # =========================================================================
    # Controller registry
    # =========================================================================

    def attach(self, controller: "BaseController"):
        if controller not in self._controllers:
            self._controllers.append(controller)

    def detach(self, controller: "BaseController"):
        if controller in self._controllers:
            self._controllers.remove(controller)

    def create_channel(self) -> RealtimeChannel:
        return RealtimeChannel(
            reconnect_attempts=self.settings.ws_reconnect_attempts,
            reconnect_delay=self.settings.ws_reconnect_delay,
        )
