"""HTTP surface of the remote agent."""

import asyncio
from typing import Optional

from aiohttp import BasicAuth, hdrs, web
from ..config.agent import AgentConfig
from ..utils.logging import get_logger
from .service import RemoteAgent, error_status

log = get_logger('AgentServer')

# Payloads carry whole artifact archives
CLIENT_MAX_SIZE = 1024 ** 3

AGENT_KEY = web.AppKey('agent', RemoteAgent)
CONFIG_KEY = web.AppKey('config', AgentConfig)


def _unauthorized(message: str, status: int = 401) -> web.Response:
    headers = {hdrs.WWW_AUTHENTICATE: 'Basic realm="site-sync"'} if status == 401 else None
    return web.json_response({'message': message}, status=status, headers=headers)


@web.middleware
async def auth_middleware(request: web.Request, handler):
    """Require a known, admin-level username/token pair."""
    header = request.headers.get(hdrs.AUTHORIZATION)
    if not header:
        return _unauthorized('Authentication required')

    try:
        auth = BasicAuth.decode(header)
    except ValueError:
        return _unauthorized('Malformed credentials')

    credential = request.app[CONFIG_KEY].find_credential(auth.login, auth.password)
    if credential is None:
        log.warning(f'Rejected credentials for {auth.login}')
        return _unauthorized('Invalid credentials')
    if not credential.is_admin:
        return _unauthorized('Insufficient privileges', status=403)

    return await handler(request)


async def _dispatch(request: web.Request, endpoint: str, body) -> web.Response:
    agent = request.app[AGENT_KEY]
    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(None, agent.handle, endpoint, body)
    except Exception as e:
        status = error_status(e)
        if status >= 500:
            log.exception(f'{endpoint} failed: {e}')
        else:
            log.warning(f'{endpoint} rejected: {e}')
        return web.json_response({'message': str(e)}, status=status)
    return web.json_response(result)


async def handle_status(request: web.Request) -> web.Response:
    return await _dispatch(request, 'status', {})


async def handle_endpoint(request: web.Request) -> web.Response:
    body = {}
    if request.can_read_body:
        try:
            body = await request.json()
        except ValueError:
            return web.json_response({'message': 'Request body is not JSON'}, status=400)
    return await _dispatch(request, request.match_info['endpoint'], body)


def create_app(agent: RemoteAgent, config: AgentConfig) -> web.Application:
    """Build the aiohttp application serving ``agent`` under the agent path."""
    app = web.Application(middlewares=[auth_middleware], client_max_size=CLIENT_MAX_SIZE)
    app[AGENT_KEY] = agent
    app[CONFIG_KEY] = config

    prefix = config.agent_path
    app.router.add_get(f'{prefix}/status', handle_status)
    app.router.add_post(f'{prefix}/{{endpoint}}', handle_endpoint)
    return app


def run_server(
    agent: RemoteAgent,
    config: AgentConfig,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """Serve until interrupted."""
    host = host or config.host
    port = port or config.port
    log.info(
        f'Remote agent listening on http://{host}:{port}{config.agent_path}'
    )
    web.run_app(create_app(agent, config), host=host, port=port, print=None)
