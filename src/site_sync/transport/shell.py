"""Shell transport: remote commands over SSH and rsync tree transfers."""

import asyncio
import json
import os
import shlex
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import paramiko
from loguru import logger

from ..config.config import EnvironmentConfig, ShellCredential, TransportConfig
from ..exceptions import AuthenticationError, ComponentError, ConnectivityError
from ..models.payload import TransferPayload
from .base import RemoteCommand, TransferReport, TransportStrategy, TreeDirection

DEFAULT_ROOT = '/var/www/html'
ROOT_MARKER = 'wp-config.php'
SEARCH_DIRS = ('/var/www', '/home')

RSYNC_EXCLUDES = ['.git', '.svn', 'node_modules', '.DS_Store', 'Thumbs.db', '*.log', '*.tmp']


def _connect(credential: ShellCredential, timeout: float) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    kwargs: Dict[str, Any] = dict(
        hostname=credential.host,
        port=credential.port,
        username=credential.username,
        timeout=timeout,
        banner_timeout=timeout,
        auth_timeout=timeout,
        allow_agent=False,
        look_for_keys=False,
    )
    if credential.private_key:
        kwargs['key_filename'] = credential.private_key
    if credential.password:
        kwargs['password'] = credential.password

    try:
        client.connect(**kwargs)
    except Exception:
        client.close()
        raise
    return client


def _write_json(fd: int, body: Dict[str, Any]) -> None:
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        json.dump(body, f)


def _read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


class ShellTransport(TransportStrategy):
    """Reaches an installation through an authenticated shell session."""

    name = 'shell'

    def __init__(
        self,
        environment: EnvironmentConfig,
        transport_config: Optional[TransportConfig] = None,
    ):
        super().__init__(environment, transport_config)
        if environment.shell is None:
            raise ValueError(f'No shell credential configured for {environment.label}')
        self.credential = environment.shell
        self._client: Optional[paramiko.SSHClient] = None
        root_path = (self.credential.root_path or '').rstrip('/')
        self._root: Optional[str] = root_path or None

    @classmethod
    async def is_available(
        cls, credential: Optional[ShellCredential], timeout: float = 10
    ) -> bool:
        """Connect and authenticate, then disconnect.

        Returns:
            True if a session could be established
        """
        if credential is None:
            return False

        loop = asyncio.get_running_loop()
        try:
            client = await loop.run_in_executor(
                None, _connect, credential, timeout
            )
        except paramiko.AuthenticationException as e:
            cls._log_probe(credential, f'authentication rejected: {e}')
            return False
        except (paramiko.SSHException, OSError) as e:
            cls._log_probe(credential, f'unreachable: {e}')
            return False

        client.close()
        return True

    @staticmethod
    def _log_probe(credential: ShellCredential, reason: str) -> None:
        logger.bind(component='ShellTransport').info(
            f'Shell probe {credential.username}@{credential.host}:{credential.port} {reason}'
        )

    def _session(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client

        try:
            self._client = _connect(self.credential, self.transport_config.control_timeout)
        except paramiko.AuthenticationException as e:
            raise AuthenticationError(
                f'Shell authentication failed for {self.environment.label}: {e}'
            )
        except (paramiko.SSHException, OSError) as e:
            raise ConnectivityError(f'Cannot reach {self.environment.label}: {e}')
        return self._client

    def _exec(self, command: str, timeout: float) -> Tuple[int, str, str]:
        client = self._session()
        try:
            _, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
            code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            raise ConnectivityError(f'Shell session to {self.environment.label} lost: {e}')
        return code, out, err

    async def run(self, command: str, timeout: Optional[float] = None) -> str:
        """Run a shell command; returns stdout.

        Raises:
            ComponentError: If the command exits non-zero
        """
        timeout = timeout or self.transport_config.control_timeout
        self.logger.debug(f'Running remote command: {command}')
        code, out, err = await self._run_blocking(self._exec, command, timeout)
        if code != 0:
            raise ComponentError(
                f'Remote command exited {code}: {err.strip() or out.strip()}'
            )
        return out

    async def root(self) -> str:
        """Installation root on the remote host, discovered once if not configured."""
        if self._root:
            return self._root

        dirs = ' '.join(shlex.quote(d) for d in SEARCH_DIRS)
        command = (
            f'find {dirs} -maxdepth 4 -name {shlex.quote(ROOT_MARKER)} '
            f'-print -quit 2>/dev/null || true'
        )
        found = (await self.run(command)).strip()
        self._root = os.path.dirname(found) if found else DEFAULT_ROOT
        self.logger.info(f'Using installation root {self._root} on {self.environment.label}')
        return self._root

    async def _agent(self, arguments: List[str], timeout: Optional[float] = None) -> str:
        root = await self.root()
        command = (
            f'cd {shlex.quote(root)} && {self.credential.agent_command} '
            + ' '.join(shlex.quote(a) for a in arguments)
        )
        return await self.run(command, timeout)

    @staticmethod
    def _parse(output: str) -> Dict[str, Any]:
        try:
            data = json.loads(output) if output.strip() else {}
        except ValueError:
            raise ComponentError(f'Remote agent returned invalid JSON: {output[:200]}')
        if not isinstance(data, dict):
            raise ComponentError('Remote agent returned an unexpected document')
        return data

    async def check(self) -> Dict[str, Any]:
        return await self.execute(RemoteCommand(action='status'))

    async def execute(self, command: RemoteCommand) -> Dict[str, Any]:
        output = await self._agent(
            ['exec', command.action, '--args', json.dumps(command.args)]
        )
        return self._parse(output)

    def _rsync_command(
        self, local_path: Path, remote_path: str, direction: TreeDirection
    ) -> Tuple[List[str], Dict[str, str]]:
        credential = self.credential
        ssh = f'ssh -p {credential.port} -o StrictHostKeyChecking=no'
        if credential.private_key:
            ssh += f' -i {shlex.quote(credential.private_key)}'

        command = ['rsync', '-az', '--delete', '-e', ssh]
        for pattern in RSYNC_EXCLUDES:
            command += ['--exclude', pattern]
        # Remote paths reach rsync verbatim, spaces included
        command.append('--protect-args')

        local = str(local_path).rstrip('/') + '/'
        remote = f'{credential.username}@{credential.host}:{remote_path.rstrip("/")}/'
        command += [local, remote] if direction == TreeDirection.UPLOAD else [remote, local]

        env = dict(os.environ)
        if credential.password and not credential.private_key:
            command = ['sshpass', '-e'] + command
            env['SSHPASS'] = credential.password
        return command, env

    async def sync_tree(
        self, local_path: Path, remote_path: str, direction: TreeDirection
    ) -> TransferReport:
        local_path = Path(local_path)
        if direction == TreeDirection.UPLOAD and not local_path.is_dir():
            raise ComponentError(f'Local directory not found: {local_path}')
        local_path.mkdir(parents=True, exist_ok=True)

        command, env = self._rsync_command(local_path, remote_path, direction)
        self.logger.info(f'rsync {direction.value} {local_path} <-> {remote_path}')

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            raise ComponentError(f'rsync is not available: {e}')

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.transport_config.bulk_timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ComponentError(
                f'Tree sync timed out after {self.transport_config.bulk_timeout} seconds'
            )

        if process.returncode != 0:
            error_output = stderr.decode(errors='replace').strip() if stderr else ''
            raise ComponentError(
                f'rsync failed with return code {process.returncode}: {error_output}'
            )

        return await self._report(local_path, remote_path, direction)

    def _sftp_put(self, local: str, remote: str) -> None:
        with self._session().open_sftp() as sftp:
            sftp.put(local, remote)

    def _sftp_get(self, remote: str, local: str) -> None:
        with self._session().open_sftp() as sftp:
            sftp.get(remote, local)

    def _sftp_remove(self, *remote_paths: str) -> None:
        with self._session().open_sftp() as sftp:
            for path in remote_paths:
                try:
                    sftp.remove(path)
                except IOError as e:
                    self.logger.debug(f'Remote file {path} not removed: {e}')

    @staticmethod
    def _remote_temp(suffix: str) -> str:
        return f'/tmp/site-sync-{uuid.uuid4().hex}{suffix}'

    async def _call(
        self, endpoint: str, body: Dict[str, Any], want_output: bool
    ) -> Dict[str, Any]:
        """Run ``agent call`` with ``body`` as input; payloads travel over SFTP."""
        fd, local_in = tempfile.mkstemp(prefix='site-sync-', suffix='.json')
        local_out = local_in[:-5] + '.out.json'
        remote_in = self._remote_temp('.json')
        remote_out = remote_in[:-5] + '.out.json'

        try:
            await self._run_blocking(_write_json, fd, body)
            await self._run_blocking(self._sftp_put, local_in, remote_in)

            arguments = ['call', endpoint, '--input', remote_in]
            if want_output:
                arguments += ['--output', remote_out]
            output = await self._agent(arguments, self.transport_config.bulk_timeout)

            if not want_output:
                return self._parse(output)

            await self._run_blocking(self._sftp_get, remote_out, local_out)
            return self._parse(await self._run_blocking(_read_text, local_out))
        finally:
            for path in (local_in, local_out):
                if os.path.exists(path):
                    os.remove(path)
            try:
                await self._run_blocking(self._sftp_remove, remote_in, remote_out)
            except (ConnectivityError, AuthenticationError) as e:
                self.logger.warning(f'Could not remove remote payload files: {e}')

    async def send_object(self, payload: TransferPayload, endpoint: str) -> Dict[str, Any]:
        body = await self._run_blocking(payload.to_wire)
        return await self._call(endpoint, body, want_output=False)

    async def fetch_object(
        self, endpoint: str, request: Optional[Dict[str, Any]] = None
    ) -> TransferPayload:
        data = await self._call(endpoint, request or {}, want_output=True)
        try:
            return await self._run_blocking(TransferPayload.from_wire, data)
        except ValueError as e:
            raise ComponentError(f'Invalid payload from {endpoint}: {e}')

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
