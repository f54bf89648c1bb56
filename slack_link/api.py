# TrIAge
# Copyright (C) 2026 StrateCode
# Licensed under the GNU Affero General Public License v3 (AGPLv3)

"""
HTTP API for the Slack linking service.

Exposes the OAuth install/redirect endpoints, the Slack webhook endpoint
and the authenticated workspace and messaging endpoints. Uses aiohttp for
async HTTP handling.

Caller authentication belongs to the host's identity provider; routes that
act on behalf of a host account ask an injected caller_resolver for the
account id and answer 401 when it returns None.
"""

import json
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web
from pydantic import ValidationError

from slack_link.dispatcher import MessageDispatcher
from slack_link.errors import SlackLinkError
from slack_link.logging_config import get_logger
from slack_link.models import SendMessageRequest, SendThreadMessageRequest, WorkspaceUpdate
from slack_link.oauth_linker import OAuthLinker
from slack_link.webhook_gate import SignatureValidator, WebhookGate
from slack_link.workspace_admin import WorkspaceAdministration


logger = get_logger(__name__)

CallerResolver = Callable[[web.Request], Awaitable[Optional[str]]]


def header_caller_resolver(header_name: str = "X-Authenticated-User-Id") -> CallerResolver:
    """
    Resolver for deployments behind an authenticating gateway that forwards
    the verified host account id in a request header.
    """
    async def resolve(request: web.Request) -> Optional[str]:
        return request.headers.get(header_name) or None
    return resolve


def _error_response(error: SlackLinkError) -> web.Response:
    return web.json_response(data=error.to_dict(), status=error.status_code)


def _validation_response(error: ValidationError) -> web.Response:
    return web.json_response(
        data={'success': False, 'message': 'Invalid request body', 'error': 'invalid_request',
              'details': json.loads(error.json(include_url=False))},
        status=400
    )


class SlackLinkAPI:
    """
    HTTP API server.

    Provides endpoints:
    - GET /slack/install - Redirect to Slack's authorization page
    - GET /slack/oauth_redirect - OAuth callback, redirects to the front end
    - POST /slack/events - Slack Events API and slash commands
    - POST /slack/messages - Events API alias of /slack/events
    - POST /slack/register-notification - Slash command alias of /slack/events
    - GET /slack/workspaces - Caller's linked workspaces
    - PATCH /slack/workspaces/{id} - Activate or deactivate a workspace
    - DELETE /slack/workspaces/{id} - Unlink a workspace
    - POST /slack/notify - Send a channel message
    - POST /slack/notify-thread - Reply in a thread
    """

    def __init__(
        self,
        linker: OAuthLinker,
        gate: WebhookGate,
        dispatcher: MessageDispatcher,
        admin: WorkspaceAdministration,
        caller_resolver: CallerResolver,
        signature_validator: Optional[SignatureValidator] = None
    ):
        self.linker = linker
        self.gate = gate
        self.dispatcher = dispatcher
        self.admin = admin
        self.caller_resolver = caller_resolver
        self.signature_validator = signature_validator
        self.app = web.Application()
        self._setup_routes()

        logger.info("Slack link API initialized", extra={
            'verifies_signatures': signature_validator is not None
        })

    def _setup_routes(self) -> None:
        router = self.app.router
        router.add_get('/slack/install', self.handle_install)
        router.add_get('/slack/oauth_redirect', self.handle_oauth_redirect)
        router.add_post('/slack/events', self.handle_slack_callback)
        router.add_post('/slack/messages', self.handle_slack_callback)
        router.add_post('/slack/register-notification', self.handle_slack_callback)
        router.add_get('/slack/workspaces', self.handle_list_workspaces)
        router.add_patch('/slack/workspaces/{id}', self.handle_update_workspace)
        router.add_delete('/slack/workspaces/{id}', self.handle_delete_workspace)
        router.add_post('/slack/notify', self.handle_send_message)
        router.add_post('/slack/notify-thread', self.handle_send_thread_message)
        router.add_get('/health', self.health_check)

    # OAuth

    async def handle_install(self, request: web.Request) -> web.Response:
        raise web.HTTPFound(self.linker.build_authorization_url())

    async def handle_oauth_redirect(self, request: web.Request) -> web.Response:
        code = request.query.get('code', '')
        try:
            await self.linker.complete_handshake(code)
        except SlackLinkError as e:
            logger.error("OAuth redirect failed", extra={'error': e.message, 'error_code': e.error_code})
            return _error_response(e)

        raise web.HTTPFound(self.linker.redirect_after_link)

    # Slack callbacks

    async def _read_callback_payload(self, request: web.Request, body: bytes) -> Dict[str, Any]:
        if request.content_type == 'application/json':
            try:
                payload = json.loads(body.decode('utf-8') or '{}')
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.warning("Failed to parse webhook body")
                return {}
            return payload if isinstance(payload, dict) else {}

        form = await request.post()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    async def handle_slack_callback(self, request: web.Request) -> web.Response:
        body = await request.read()

        if self.signature_validator is not None:
            if not self.signature_validator.validate_signature(
                request.headers.get('X-Slack-Request-Timestamp', ''),
                body,
                request.headers.get('X-Slack-Signature', '')
            ):
                return web.json_response(data={'error': 'Invalid signature'}, status=401)

        payload = await self._read_callback_payload(request, body)
        result = await self.gate.handle(payload)

        if result.body is None:
            return web.Response(status=result.status_code)
        return web.json_response(data=result.body, status=result.status_code)

    # Authenticated endpoints

    async def _caller(self, request: web.Request) -> str:
        caller = await self.caller_resolver(request)
        if not caller:
            raise web.HTTPUnauthorized(
                text=json.dumps({'success': False, 'message': 'Unauthorized', 'error': 'unauthorized'}),
                content_type='application/json'
            )
        return caller

    async def _json_body(self, request: web.Request) -> Any:
        try:
            return await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(
                text=json.dumps({'success': False, 'message': 'Invalid JSON', 'error': 'invalid_json'}),
                content_type='application/json'
            )

    async def handle_list_workspaces(self, request: web.Request) -> web.Response:
        owner_user_id = await self._caller(request)
        workspaces = await self.admin.list_workspaces(owner_user_id)
        return web.json_response(data=[w.model_dump(mode='json') for w in workspaces])

    async def handle_update_workspace(self, request: web.Request) -> web.Response:
        owner_user_id = await self._caller(request)
        try:
            update = WorkspaceUpdate.model_validate(await self._json_body(request))
            summary = await self.admin.update_workspace(request.match_info['id'], owner_user_id, update)
        except ValidationError as e:
            return _validation_response(e)
        except SlackLinkError as e:
            return _error_response(e)
        return web.json_response(data=summary.model_dump(mode='json'))

    async def handle_delete_workspace(self, request: web.Request) -> web.Response:
        owner_user_id = await self._caller(request)
        try:
            deleted = await self.admin.delete_workspace(request.match_info['id'], owner_user_id)
        except SlackLinkError as e:
            return _error_response(e)
        return web.json_response(data=deleted)

    async def handle_send_message(self, request: web.Request) -> web.Response:
        owner_user_id = await self._caller(request)
        try:
            body = SendMessageRequest.model_validate(await self._json_body(request))
            result = await self.dispatcher.post_to_channel(owner_user_id, body.channel_id, body.message)
        except ValidationError as e:
            return _validation_response(e)
        except SlackLinkError as e:
            logger.error("Error sending Slack message", extra={'error_code': e.error_code})
            return _error_response(e)

        return web.json_response(data={
            'success': True,
            'message': 'Message sent successfully',
            'data': result.model_dump(mode='json'),
        })

    async def handle_send_thread_message(self, request: web.Request) -> web.Response:
        owner_user_id = await self._caller(request)
        try:
            body = SendThreadMessageRequest.model_validate(await self._json_body(request))
            result = await self.dispatcher.post_thread_reply(
                owner_user_id, body.channel_id, body.thread_ts, body.message
            )
        except ValidationError as e:
            return _validation_response(e)
        except SlackLinkError as e:
            logger.error("Error sending Slack thread message", extra={'error_code': e.error_code})
            return _error_response(e)

        return web.json_response(data={
            'success': True,
            'message': 'Thread reply sent successfully',
            'data': result.model_dump(mode='json'),
        })

    async def health_check(self, request: web.Request) -> web.Response:
        return web.json_response(
            data={'status': 'healthy', 'service': 'slack-link-api'},
            status=200
        )
