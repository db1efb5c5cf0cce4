"""
DisasterApiClient - thin async REST client over httpx

Every call returns the parsed `ApiResponse` envelope or raises one of the
`services.errors` types:
- network failure / timeout / undecodable body / 5xx -> TransportError (retryable)
- 401 / 403                       -> AuthorizationError
- 409                             -> ConflictError
- other 4xx or `success: false`   -> ApiError

Caching and retries are not done here; wrap idempotent reads in
RequestCache.get().
"""
import logging
from typing import Any, Dict, Optional

import httpx

from models.api.responses import ApiResponse
from services.errors import ApiError, AuthorizationError, ConflictError, TransportError

logger = logging.getLogger(__name__)


class DisasterApiClient:
    """
    REST client for the disaster-reporting API.

    Usage:
        api = DisasterApiClient(settings.api_base_url, token=session.token)
        response = await api.get_reports(limit=5)
        reports = [Report.from_api(r) for r in response.items]
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    def set_token(self, token: Optional[str]):
        """Bearer token for subsequent requests (None after logout)"""
        self.token = token

    # =========================================================================
    # Core request
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        headers = {}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._client.request(
                method, path, params=params or None, json=json, headers=headers
            )
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransportError(f"{method} {path} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {'success': response.is_success, 'data': body}

        status = response.status_code
        message = body.get('message') or response.reason_phrase or f"HTTP {status}"

        if status >= 500:
            raise TransportError(message, status_code=status)
        if status in (401, 403):
            raise AuthorizationError(message, status_code=status)
        if status == 409:
            raise ConflictError(message, status_code=status)
        if status >= 400:
            raise ApiError(message, status_code=status)

        envelope = ApiResponse.model_validate(body)
        if not envelope.success:
            raise ApiError(envelope.message or envelope.error or "Request failed", status_code=status)
        return envelope

    # =========================================================================
    # Auth
    # =========================================================================

    async def get_profile(self) -> ApiResponse:
        return await self._request('GET', '/auth/profile')

    # =========================================================================
    # Reports
    # =========================================================================

    async def get_reports(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        severity: Optional[str] = None,
        status: Optional[str] = None,
        state: Optional[str] = None,
    ) -> ApiResponse:
        return await self._request('GET', '/reports', params={
            'page': page,
            'limit': limit,
            'sortBy': sort_by,
            'sortOrder': sort_order,
            'severity': severity,
            'status': status,
            'state': state,
        })

    async def get_user_reports(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        status: Optional[str] = None,
    ) -> ApiResponse:
        return await self._request('GET', '/reports/user/my-reports', params={
            'page': page,
            'limit': limit,
            'sortBy': sort_by,
            'sortOrder': sort_order,
            'status': status,
        })

    async def create_report(self, fields: Dict[str, Any]) -> ApiResponse:
        """JSON fields only; the response carries the stored report as data.report"""
        return await self._request('POST', '/reports', json=fields)

    async def update_report(self, report_id: str, fields: Dict[str, Any]) -> ApiResponse:
        return await self._request('PUT', f'/reports/{report_id}', json=fields)

    async def delete_report(self, report_id: str) -> ApiResponse:
        return await self._request('DELETE', f'/reports/{report_id}')

    async def vote_report(self, report_id: str, vote_type: str) -> ApiResponse:
        """vote_type is 'up' or 'down'; the response carries the new vote counts"""
        return await self._request('POST', f'/reports/{report_id}/vote', json={'voteType': vote_type})

    # =========================================================================
    # Comments
    # =========================================================================

    async def get_comments(
        self,
        report_id: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> ApiResponse:
        """Public; newest first"""
        return await self._request('GET', f'/comments/report/{report_id}', params={'page': page, 'limit': limit})

    async def create_comment(self, report_id: str, content: str) -> ApiResponse:
        """The response carries the stored comment as data.comment"""
        return await self._request('POST', f'/comments/report/{report_id}', json={'content': content})

    async def update_comment(self, comment_id: str, content: str) -> ApiResponse:
        return await self._request('PUT', f'/comments/{comment_id}', json={'content': content})

    async def delete_comment(self, comment_id: str) -> ApiResponse:
        return await self._request('DELETE', f'/comments/{comment_id}')

    # =========================================================================
    # Admin
    # =========================================================================

    async def get_admin_reports(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        severity: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> ApiResponse:
        return await self._request('GET', '/admin/reports', params={
            'page': page,
            'limit': limit,
            'sortBy': sort_by,
            'sortOrder': sort_order,
            'severity': severity,
            'status': status,
            'search': search,
        })

    async def verify_report(self, report_id: str, status: str) -> ApiResponse:
        """status is 'VERIFIED' or 'REJECTED'"""
        return await self._request('PUT', f'/admin/reports/{report_id}/verify', json={'status': status})

    async def get_users(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> ApiResponse:
        return await self._request('GET', '/admin/users', params={
            'page': page,
            'limit': limit,
            'sortBy': sort_by,
            'sortOrder': sort_order,
        })

    async def update_user_role(self, user_id: str, role: str) -> ApiResponse:
        return await self._request('PUT', f'/admin/users/{user_id}/role', json={'role': role})

    async def delete_user(self, user_id: str) -> ApiResponse:
        return await self._request('DELETE', f'/admin/users/{user_id}')

    async def block_user(self, user_id: str) -> ApiResponse:
        return await self._request('PUT', f'/admin/users/{user_id}/block')

    async def unblock_user(self, user_id: str) -> ApiResponse:
        return await self._request('PUT', f'/admin/users/{user_id}/unblock')

    # =========================================================================
    # Notifications
    # =========================================================================

    async def get_notifications(self, page: Optional[int] = None, limit: Optional[int] = None) -> ApiResponse:
        return await self._request('GET', '/notifications', params={'page': page, 'limit': limit})

    async def get_unread_count(self) -> int:
        response = await self._request('GET', '/notifications/unread-count')
        data = response.data if isinstance(response.data, dict) else {}
        return int(data.get('unreadCount', response.unread_count or 0))

    async def mark_notification_read(self, notification_id: str) -> ApiResponse:
        return await self._request('PUT', f'/notifications/{notification_id}/read')

    async def mark_all_notifications_read(self) -> ApiResponse:
        return await self._request('PUT', '/notifications/mark-all-read')

    async def delete_notification(self, notification_id: str) -> ApiResponse:
        return await self._request('DELETE', f'/notifications/{notification_id}')

    # =========================================================================
    # Analytics / dashboard
    # =========================================================================

    async def get_analytics(self) -> ApiResponse:
        return await self._request('GET', '/analytics')

    async def get_dashboard_stats(self) -> ApiResponse:
        return await self._request('GET', '/dashboard/stats')
