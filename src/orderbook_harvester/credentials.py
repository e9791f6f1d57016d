"""Credential file loading and startup validation."""

import asyncio
import json
import logging
from datetime import datetime
from typing import List

from .clients.coinapi_rest import CoinAPIRestClient
from .credential_pool import mask_credential
from .exceptions import ConfigurationError, NoCredentialsError


logger = logging.getLogger(__name__)


def load_credentials(path: str) -> List[str]:
    """
    Load API keys from a JSON file of the form ``{"keys": ["...", ...]}``.

    Raises:
        ConfigurationError: If the file is missing or malformed.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read credentials file {path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Malformed credentials file {path}: {e}") from e

    keys = data.get('keys') if isinstance(data, dict) else None
    if not isinstance(keys, list):
        raise ConfigurationError(f"Credentials file {path} must contain a 'keys' list")

    credentials = [key.strip() for key in keys if isinstance(key, str) and key.strip()]
    logger.info(f"Loaded {len(credentials)} credentials from {path}")
    return credentials


async def probe_credentials(
    client: CoinAPIRestClient,
    credentials: List[str],
    end_time: datetime
) -> List[str]:
    """Return the credentials that answered the probe query, in input order."""
    results = await asyncio.gather(
        *(client.probe(credential, end_time) for credential in credentials)
    )

    working = []
    for credential, ok in zip(credentials, results):
        if ok:
            logger.info(f"API key {mask_credential(credential)} works")
            working.append(credential)
        else:
            logger.warning(f"API key {mask_credential(credential)} failed the probe, excluded")

    logger.info(f"Working API keys: {len(working)} of {len(credentials)}")
    return working


def require_credentials(credentials: List[str]) -> List[str]:
    """
    Raises:
        NoCredentialsError: If the list is empty.
    """
    if not credentials:
        raise NoCredentialsError("No valid API credentials available, cannot start harvest")
    return credentials
