"""
Ledger Client — Stacks testnet settlement for collateral and payouts.

Transactions are signed by a SigningCredential (custodial signer or paper
key) and broadcast to a Stacks node. Falls back to an in-memory paper
ledger when PAPER_TRADE=true.

Every ledger call either returns a transaction id or raises
SettlementError. Amounts are always integer micro-units (microSTX).

Stacks node API: https://docs.hiro.so/stacks/api
"""
import hashlib
import itertools
import json
import threading
import time
from abc import ABC, abstractmethod

import requests
from loguru import logger

from config import (
    STACKS_API_URL, SIGNER_API_URL, HTTP_TIMEOUT,
    CONTRACT_ADDRESS, CONTRACT_NAME,
)
from execution.errors import SettlementError


# ══════════════════════════════════════════════════════════════════════
# Signing Credentials
# ══════════════════════════════════════════════════════════════════════
class SigningCredential(ABC):
    """
    Capability to sign a transaction payload for one wallet.
    The engine never looks inside: passkey-backed custodial wallets and
    local paper keys are interchangeable.
    """

    address: str

    @abstractmethod
    def sign(self, payload: dict) -> str:
        """Return the signed, serialized transaction (hex)."""


class RemoteSignerCredential(SigningCredential):
    """Signs through the custodial wallet API (sub-organization wallet)."""

    def __init__(self, wallet_id: str, address: str,
                 signer_url: str = SIGNER_API_URL, timeout: float = HTTP_TIMEOUT):
        self.wallet_id = wallet_id
        self.address   = address
        self._url      = f'{signer_url.rstrip("/")}/sign-transaction'
        self._timeout  = timeout

    def sign(self, payload: dict) -> str:
        try:
            resp = requests.post(
                self._url,
                json={'walletId': self.wallet_id, 'address': self.address, 'payload': payload},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise SettlementError(f'signing request failed: {e}') from e

        if resp.status_code != 200:
            raise SettlementError(f'signing rejected: HTTP {resp.status_code} {resp.text[:200]}')
        try:
            body = resp.json()
        except ValueError as e:
            raise SettlementError(f'signing service returned non-JSON body: {resp.text[:200]}') from e
        signed = body.get('signedTransaction') if isinstance(body, dict) else None
        if not signed or not isinstance(signed, str):
            raise SettlementError('signing service returned no transaction')
        return signed

    def __repr__(self):
        return f'RemoteSignerCredential(wallet_id={self.wallet_id!r}, address={self.address!r})'


class PaperCredential(SigningCredential):
    """Local stand-in for paper mode — produces a deterministic digest."""

    def __init__(self, address: str):
        self.address = address

    def sign(self, payload: dict) -> str:
        body = json.dumps(payload, sort_keys=True).encode()
        return hashlib.sha256(self.address.encode() + body).hexdigest()

    def __repr__(self):
        return f'PaperCredential(address={self.address!r})'


# ══════════════════════════════════════════════════════════════════════
# Ledger Services
# ══════════════════════════════════════════════════════════════════════
class LedgerService(ABC):

    @abstractmethod
    def transfer(self, amount: int, from_address: str, to_address: str,
                 credential: SigningCredential) -> str:
        """Direct token transfer between two addresses."""

    @abstractmethod
    def deposit(self, amount: int, from_address: str, credential: SigningCredential) -> str:
        """Contract-mediated collateral deposit."""

    @abstractmethod
    def payout(self, to_address: str, amount: int, credential: SigningCredential) -> str:
        """Contract-mediated admin payout to a user."""

    @abstractmethod
    def balance_of(self, address: str) -> int:
        ...


class StacksLedgerClient(LedgerService):
    """
    Thin wrapper around the Stacks node HTTP API.
    Payloads are signed by the credential, then the signed transaction is
    broadcast as raw bytes to /v2/transactions.
    """

    def __init__(
        self,
        api_url: str = STACKS_API_URL,
        contract_address: str = CONTRACT_ADDRESS,
        contract_name: str = CONTRACT_NAME,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.api_url  = api_url.rstrip('/')
        self.contract = f'{contract_address}.{contract_name}'
        self._timeout = timeout
        self._session = requests.Session()

    def _contract_call(self, function: str, args: list, sender: str) -> dict:
        return {
            'type': 'contract-call',
            'contract': self.contract,
            'function': function,
            'args': args,
            'sender': sender,
            'network': 'testnet',
        }

    def _broadcast(self, payload: dict, credential: SigningCredential) -> str:
        signed = credential.sign(payload)
        try:
            raw = bytes.fromhex(signed)
        except ValueError as e:
            raise SettlementError(f'signed transaction is not hex: {e}') from e

        try:
            resp = self._session.post(
                f'{self.api_url}/v2/transactions',
                data=raw,
                headers={'Content-Type': 'application/octet-stream'},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise SettlementError(f'broadcast failed: {e}') from e

        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        if resp.status_code != 200 or isinstance(body, dict):
            reason = (body.get('reason') or body.get('error')) if isinstance(body, dict) else body
            raise SettlementError(f'transaction rejected: {reason}')

        txid = str(body).strip('"')
        logger.info(f'[LEDGER] Broadcast {payload.get("function") or payload["type"]} — {txid}')
        return txid

    def transfer(self, amount, from_address, to_address, credential):
        payload = {
            'type': 'token-transfer',
            'sender': from_address,
            'recipient': to_address,
            'amount': int(amount),
            'network': 'testnet',
        }
        return self._broadcast(payload, credential)

    def deposit(self, amount, from_address, credential):
        payload = self._contract_call('deposit', [{'type': 'uint', 'value': int(amount)}], from_address)
        return self._broadcast(payload, credential)

    def payout(self, to_address, amount, credential):
        args = [
            {'type': 'principal', 'value': to_address},
            {'type': 'uint', 'value': int(amount)},
        ]
        payload = self._contract_call('admin-payout', args, credential.address)
        return self._broadcast(payload, credential)

    def balance_of(self, address: str) -> int:
        """Return the STX balance of an address in microSTX."""
        try:
            resp = self._session.get(
                f'{self.api_url}/v2/accounts/{address}',
                params={'proof': 0, 'tip': 'latest'},
                headers={'Accept': 'application/json'},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise SettlementError(f'balance lookup failed for {address}: {e}') from e

        raw = data.get('balance')
        if raw is None and isinstance(data.get('stx'), dict):
            raw = data['stx'].get('balance')
        if raw is None:
            raise SettlementError(f'balance missing in response for {address}')

        raw = str(raw)
        return int(raw, 16) if raw.startswith('0x') else int(raw)


class PaperLedger(LedgerService):
    """
    In-memory ledger for paper trading and tests.
    Unknown addresses start with ``default_balance`` microSTX. The contract
    pool is treated as unlimited for payouts.
    """

    def __init__(self, default_balance: int = 0, pool_address: str = CONTRACT_ADDRESS):
        self.default_balance = int(default_balance)
        self.pool_address    = pool_address
        self.balances: dict[str, int] = {}
        self.transactions: list[dict] = []
        self._seq  = itertools.count(1)
        self._lock = threading.Lock()

    def credit(self, address: str, amount: int):
        with self._lock:
            self.balances[address] = self._balance(address) + int(amount)

    def _balance(self, address: str) -> int:
        return self.balances.get(address, self.default_balance)

    def _move(self, kind: str, amount: int, from_address: str, to_address: str,
              credential: SigningCredential, debit: bool = True) -> str:
        amount = int(amount)
        if amount <= 0:
            raise SettlementError(f'{kind}: amount must be positive')
        credential.sign({'type': kind, 'from': from_address, 'to': to_address, 'amount': amount})

        with self._lock:
            if debit:
                available = self._balance(from_address)
                if available < amount:
                    raise SettlementError(
                        f'{kind}: insufficient balance ({available} < {amount})'
                    )
                self.balances[from_address] = available - amount
            self.balances[to_address] = self._balance(to_address) + amount

            txid = f'paper_{kind}_{int(time.time() * 1000)}_{next(self._seq)}'
            self.transactions.append({
                'txid': txid, 'kind': kind, 'amount': amount,
                'from': from_address, 'to': to_address,
            })

        logger.info(f'[LEDGER-PAPER] {kind} {amount} {from_address[:10]} → {to_address[:10]} — {txid}')
        return txid

    def transfer(self, amount, from_address, to_address, credential):
        return self._move('transfer', amount, from_address, to_address, credential)

    def deposit(self, amount, from_address, credential):
        return self._move('deposit', amount, from_address, self.pool_address, credential)

    def payout(self, to_address, amount, credential):
        return self._move('payout', amount, self.pool_address, to_address, credential, debit=False)

    def balance_of(self, address: str) -> int:
        with self._lock:
            return self._balance(address)
