"""Public extension/theme registry lookups."""

from typing import Any, Dict, Optional

import requests
from loguru import logger

from ..exceptions import ConnectivityError

_INFO_ACTIONS = {
    'extension': ('plugins', 'plugin_information'),
    'theme': ('themes', 'theme_information'),
}


class RegistryClient:
    """Client for the public registry information API."""

    def __init__(self, base_url: str = 'https://api.wordpress.org', timeout: int = 30):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.logger = logger.bind(component='RegistryClient')

    def _info_url(self, kind: str) -> str:
        if kind not in _INFO_ACTIONS:
            raise ValueError(f'Unsupported registry kind: {kind}')
        section, _ = _INFO_ACTIONS[kind]
        return f'{self.base_url}/{section}/info/1.2/'

    def get_info(self, kind: str, slug: str) -> Optional[Dict[str, Any]]:
        """Fetch registry information for one artifact.

        Args:
            kind: ``extension`` or ``theme``
            slug: Artifact name

        Returns:
            Information document, or None when the registry does not know it

        Raises:
            ConnectivityError: If the registry cannot be reached
        """
        _, action = _INFO_ACTIONS.get(kind, (None, None))
        params = {'action': action, 'request[slug]': slug}

        try:
            response = requests.get(
                self._info_url(kind), params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ConnectivityError(f'Registry unreachable: {e}')

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            self.logger.warning(
                f'Registry lookup for {kind} {slug} returned HTTP {response.status_code}'
            )
            return None

        try:
            data = response.json()
        except ValueError:
            return None

        # Unknown slugs come back as 200 with an error member
        if not isinstance(data, dict) or data.get('error'):
            return None
        return data

    def is_available(self, kind: str, slug: str) -> bool:
        """Whether the artifact can be installed straight from the registry."""
        try:
            info = self.get_info(kind, slug)
        except ConnectivityError as e:
            self.logger.warning(f'Treating {kind} {slug} as custom: {e}')
            return False

        available = bool(info and info.get('download_link'))
        self.logger.debug(f'{kind} {slug} registry availability: {available}')
        return available

    def download_link(self, kind: str, slug: str) -> Optional[str]:
        """Download link for a registry artifact, if any."""
        info = self.get_info(kind, slug)
        return info.get('download_link') if info else None
