"""Ledger clients.

The engine only depends on three ledger operations: ``issue``, ``verify`` and
``fetch``. ``InMemoryLedger`` keeps entries in a dict and is what tests and
local development run against; ``Web3Ledger`` talks to the deployed
certificate-registry contract on an Ethereum-compatible node.
"""
import asyncio
from datetime import datetime, timezone

import aiohttp
import structlog
from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .crypto_utils import canonicalize, sha256_hash
from .errors import LedgerRecordMissing, LedgerRejected, LedgerUnreachable
from .models import CredentialFields, utcnow

logger = structlog.get_logger("certchain.blockchain")


async def with_timeout(awaitable, timeout, operation):
    """Await a ledger call, turning an expired deadline into ``LedgerUnreachable``.

    Cancellation of the surrounding task propagates unchanged.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("ledger_timeout", operation=operation, timeout=timeout)
        raise LedgerUnreachable(f"ledger {operation} timed out after {timeout}s") from exc


class LedgerClient:
    async def issue(self, fingerprint, enrollment_id, holder_name, program,
                    institution, issue_year) -> str:
        """Submit the credential and wait for confirmation. Returns the tx reference."""
        raise NotImplementedError

    async def verify(self, fingerprint) -> bool:
        raise NotImplementedError

    async def fetch(self, fingerprint) -> CredentialFields:
        """Ledger copy of the credential; ``LedgerRecordMissing`` if absent."""
        raise NotImplementedError

    async def close(self):
        pass


# ---------------- IN-MEMORY LEDGER ----------------
class InMemoryLedger(LedgerClient):
    def __init__(self, signer="issuer", admin="issuer", confirmation_delay=0.0):
        self.entries = {}
        self.signer = signer
        self.admin = admin
        self.confirmation_delay = confirmation_delay
        self.online = True
        self.issue_calls = 0

    def _ensure_online(self):
        if not self.online:
            raise LedgerUnreachable("in-memory ledger is offline")

    async def issue(self, fingerprint, enrollment_id, holder_name, program,
                    institution, issue_year):
        self._ensure_online()
        self.issue_calls += 1
        if self.signer != self.admin:
            raise LedgerRejected(f"unauthorized signer {self.signer}")
        if fingerprint in self.entries:
            raise LedgerRejected("Blockchain: Certificate already exists")

        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)
        self._ensure_online()

        issued_at = utcnow()
        self.entries[fingerprint] = {
            "fields": CredentialFields(
                holder_name=holder_name,
                enrollment_id=enrollment_id,
                program=program,
                institution=institution,
                issue_year=int(issue_year),
                issued_at=issued_at,
                issuer_address=self.signer,
            ),
            "timestamp": issued_at.timestamp(),
        }
        tx_ref = "0x" + sha256_hash(canonicalize({
            "fingerprint": fingerprint,
            "block": len(self.entries),
            "timestamp": issued_at.timestamp(),
        }))
        self.entries[fingerprint]["tx_ref"] = tx_ref
        return tx_ref

    async def verify(self, fingerprint):
        self._ensure_online()
        return fingerprint in self.entries

    async def fetch(self, fingerprint):
        self._ensure_online()
        if fingerprint not in self.entries:
            raise LedgerRecordMissing(f"certificate {fingerprint} not on ledger")
        return self.entries[fingerprint]["fields"]


# ---------------- WEB3 LEDGER ----------------
CERTIFICATE_REGISTRY_ABI = [
    {
        "name": "issueCertificate", "type": "function", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_certificateHash", "type": "string"},
            {"name": "_enrollmentNumber", "type": "string"},
            {"name": "_studentName", "type": "string"},
            {"name": "_course", "type": "string"},
            {"name": "_institution", "type": "string"},
            {"name": "_issueYear", "type": "uint256"},
            {"name": "_ipfsHash", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "name": "verifyCertificateView", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "_certificateHash", "type": "string"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "getCertificate", "type": "function", "stateMutability": "view",
        "inputs": [{"name": "_certificateHash", "type": "string"}],
        "outputs": [
            {"name": "studentName", "type": "string"},
            {"name": "enrollmentNumber", "type": "string"},
            {"name": "course", "type": "string"},
            {"name": "institution", "type": "string"},
            {"name": "issueYear", "type": "uint256"},
            {"name": "issueDate", "type": "uint256"},
            {"name": "ipfsHash", "type": "string"},
            {"name": "issuerAddress", "type": "address"},
        ],
    },
]

_NETWORK_ERRORS = (aiohttp.ClientError, OSError)


class Web3Ledger(LedgerClient):
    def __init__(self, rpc_url, contract_address, private_key="", admin_address="",
                 receipt_timeout=120.0):
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.contract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=CERTIFICATE_REGISTRY_ABI,
        )
        self.account = Account.from_key(private_key) if private_key else None
        self.admin_address = admin_address
        self.receipt_timeout = receipt_timeout
        logger.info("ledger_configured", rpc_url=rpc_url, contract=contract_address)

    def _check_signer(self):
        if self.account is None:
            raise LedgerRejected("no signing key configured for ledger writes")
        if self.admin_address and self.account.address.lower() != self.admin_address.lower():
            raise LedgerRejected(
                f"unauthorized signer {self.account.address}, only the contract admin may issue"
            )

    async def issue(self, fingerprint, enrollment_id, holder_name, program,
                    institution, issue_year):
        self._check_signer()
        sender = self.account.address
        try:
            tx = await self.contract.functions.issueCertificate(
                fingerprint, enrollment_id, holder_name, program, institution,
                int(issue_year), "",
            ).build_transaction({
                "from": sender,
                "nonce": await self.w3.eth.get_transaction_count(sender, "pending"),
                "chainId": await self.w3.eth.chain_id,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("ledger_tx_submitted", fingerprint=fingerprint, tx_ref=AsyncWeb3.to_hex(tx_hash))
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except ContractLogicError as exc:
            raise LedgerRejected(f"contract rejected issuance: {exc}") from exc
        except TimeExhausted as exc:
            raise LedgerUnreachable(f"no receipt within {self.receipt_timeout}s") from exc
        except _NETWORK_ERRORS as exc:
            raise LedgerUnreachable(f"ledger node {self.rpc_url} unreachable: {exc}") from exc
        except Web3Exception as exc:
            raise LedgerRejected(str(exc)) from exc

        if receipt["status"] != 1:
            raise LedgerRejected(f"transaction {AsyncWeb3.to_hex(tx_hash)} reverted")
        return AsyncWeb3.to_hex(tx_hash)

    async def verify(self, fingerprint):
        try:
            return bool(await self.contract.functions.verifyCertificateView(fingerprint).call())
        except ContractLogicError:
            return False
        except _NETWORK_ERRORS as exc:
            raise LedgerUnreachable(f"ledger node {self.rpc_url} unreachable: {exc}") from exc
        except Web3Exception as exc:
            raise LedgerUnreachable(str(exc)) from exc

    async def fetch(self, fingerprint):
        try:
            result = await self.contract.functions.getCertificate(fingerprint).call()
        except ContractLogicError as exc:
            raise LedgerRecordMissing(f"certificate {fingerprint} not on ledger") from exc
        except _NETWORK_ERRORS as exc:
            raise LedgerUnreachable(f"ledger node {self.rpc_url} unreachable: {exc}") from exc
        except Web3Exception as exc:
            raise LedgerUnreachable(str(exc)) from exc

        name, enrollment, course, institution, year, issue_date, _ipfs, issuer = result
        if not name:
            raise LedgerRecordMissing(f"certificate {fingerprint} not on ledger")
        return CredentialFields(
            holder_name=name,
            enrollment_id=enrollment,
            program=course,
            institution=institution,
            issue_year=int(year),
            issued_at=datetime.fromtimestamp(int(issue_date), tz=timezone.utc),
            issuer_address=issuer,
        )

    async def close(self):
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
