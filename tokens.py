"""Identity-token collaborator for plot registration.

The ledger only ever sees ``mint(...) -> reference``; anything else (supply,
metadata rendering) belongs to the service behind it. A raised
:class:`TokenServiceError` aborts the registration.
"""
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Optional

import requests

from errors import TokenServiceError
from utils import farm_plot_address, mint_address

logger = logging.getLogger(__name__)

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
TOKEN_SERVICE_URL = os.getenv("TOKEN_SERVICE_URL")
TOKEN_SYMBOL = "FTPLOT"


def token_metadata(plot_id: str, owner: str, commodity_label: str) -> Dict[str, str]:
    return {
        "name": f"FarmTrace Plot {plot_id}"[:32],
        "symbol": TOKEN_SYMBOL,
        "uri": f"{BASE_URL}/api/plots/{farm_plot_address(plot_id, owner)}",
        "commodity": commodity_label,
    }


class TokenService(ABC):
    @abstractmethod
    def mint(self, plot_id: str, owner: str, commodity_label: str) -> str:
        """Mint a one-of-one identity token to ``owner``; return its reference."""


class LocalTokenService(TokenService):
    """Derives the mint address locally and keeps metadata in memory."""

    def __init__(self):
        self.metadata: Dict[str, Dict[str, str]] = {}
        self.holders: Dict[str, str] = {}

    def mint(self, plot_id: str, owner: str, commodity_label: str) -> str:
        ref = mint_address(plot_id, owner)
        if ref in self.holders:
            raise TokenServiceError(f"token {ref} already minted")
        self.metadata[ref] = token_metadata(plot_id, owner, commodity_label)
        self.holders[ref] = owner
        return ref


class HttpTokenService(TokenService):
    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.timeout = timeout

    def mint(self, plot_id: str, owner: str, commodity_label: str) -> str:
        body = {"plot_id": plot_id, "owner": owner, **token_metadata(plot_id, owner, commodity_label)}
        try:
            r = requests.post(f"{self.url}/mint", json=body, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("token mint failed for plot %s: %s", plot_id, exc)
            raise TokenServiceError(f"token service failed: {exc}") from exc
        if not isinstance(data, dict):
            logger.error("token mint failed for plot %s: unexpected reply %r", plot_id, data)
            raise TokenServiceError("token service returned a malformed reply")
        ref = data.get("mint")
        if not ref or not isinstance(ref, str):
            raise TokenServiceError("token service returned no mint reference")
        return ref


_default: Optional[TokenService] = None

def get_token_service() -> TokenService:
    global _default
    if _default is None:
        _default = HttpTokenService(TOKEN_SERVICE_URL) if TOKEN_SERVICE_URL else LocalTokenService()
    return _default
