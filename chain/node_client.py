# chain/node_client.py
"""
Read-only client for the x42 node REST API (address indexer, wallet, node).
Every failure to get a well-formed answer raises ChainUnavailable; a
well-formed negative answer (no balance entry, invalid signature) does not.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from errors import ChainUnavailable

logger = logging.getLogger(__name__)

TIP_PATH = "/api/BlockStore/addressindexertip"
BALANCES_PATH = "/api/BlockStore/getaddressesbalances"
VERIFY_MESSAGE_PATH = "/api/Wallet/verifymessage"
VALIDATE_ADDRESS_PATH = "/api/Node/validateaddress"


@dataclass(frozen=True)
class IndexerTip:
    tip_hash: Optional[str]
    tip_height: int


@dataclass(frozen=True)
class AddressValidation:
    is_valid: bool
    is_witness: bool


def _as_bool(value: Any) -> Optional[bool]:
    """Node answers booleans either as JSON booleans or as "True"/"False"."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().strip('"').lower()
        if v == "true":
            return True
        if v == "false":
            return False
    return None


class ChainClient:
    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    def _request(self, operation: str, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s: request to %s failed: %s", operation, url, e)
            raise ChainUnavailable(operation, str(e)) from e
        if not 200 <= r.status_code < 300:
            logger.warning("%s: %s returned HTTP %d", operation, url, r.status_code)
            raise ChainUnavailable(operation, f"HTTP {r.status_code}", r.status_code)
        return r

    def _json(self, operation: str, r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise ChainUnavailable(operation, "response is not JSON") from e

    # ────────────────────────────────────────────────────────
    # Address indexer
    # ────────────────────────────────────────────────────────

    def get_tip(self) -> IndexerTip:
        data = self._json("get_tip", self._request("get_tip", "GET", TIP_PATH))
        if not isinstance(data, dict):
            raise ChainUnavailable("get_tip", "malformed tip response")
        height = data.get("tipHeight")
        if isinstance(height, bool) or not isinstance(height, int) or height <= 0:
            raise ChainUnavailable("get_tip", f"unusable tipHeight {height!r}")
        return IndexerTip(tip_hash=data.get("tipHash"), tip_height=height)

    def get_tip_height(self) -> int:
        return self.get_tip().tip_height

    def get_balance(self, address: str, min_confirmations: int = 1) -> Optional[int]:
        """Indexed balance in base units, or None if the node reports none for the address."""
        r = self._request(
            "get_balance", "GET", BALANCES_PATH,
            params={"addresses": address, "minConfirmations": min_confirmations},
        )
        data = self._json("get_balance", r)
        if not isinstance(data, dict):
            raise ChainUnavailable("get_balance", "malformed balances response")
        balances = data.get("balances")
        if not balances:
            return None
        try:
            balance = balances[0]["balance"]
        except (KeyError, IndexError, TypeError) as e:
            raise ChainUnavailable("get_balance", "malformed balance entry") from e
        if isinstance(balance, bool) or not isinstance(balance, int):
            raise ChainUnavailable("get_balance", f"non-integer balance {balance!r}")
        return balance

    # ────────────────────────────────────────────────────────
    # Wallet / node
    # ────────────────────────────────────────────────────────

    def verify_signature(self, address: str, message: str, signature: str) -> bool:
        r = self._request(
            "verify_signature", "POST", VERIFY_MESSAGE_PATH,
            json={
                "signature": signature,
                "externalAddress": address,
                "message": message,
            },
            headers={"Content-Type": "application/json-patch+json"},
        )
        try:
            body = r.json()
        except ValueError:
            body = r.text
        result = _as_bool(body)
        if result is None:
            logger.warning("verify_signature: non-boolean answer %r", body)
            raise ChainUnavailable("verify_signature", "malformed verifymessage response")
        return result

    def validate_address(self, address: str) -> AddressValidation:
        r = self._request(
            "validate_address", "GET", VALIDATE_ADDRESS_PATH, params={"address": address}
        )
        data = self._json("validate_address", r)
        if not isinstance(data, dict) or "isvalid" not in data:
            raise ChainUnavailable("validate_address", "malformed validation response")
        return AddressValidation(
            is_valid=bool(data.get("isvalid")),
            is_witness=bool(data.get("iswitness")),
        )
