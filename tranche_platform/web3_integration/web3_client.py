from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.logs import DISCARD
from web3.middleware import ExtraDataToPOAMiddleware

from ..config import Settings, settings
from ..exceptions import ConfigurationError, LedgerCallError, LedgerTimeoutError
from .ledger import Ledger, LedgerCall, LedgerEvent, Receipt

logger = logging.getLogger("Tranche.Web3")


# Hardhat artifact locations, relative to ``settings.artifacts_dir``
ARTIFACT_PATHS: Dict[str, str] = {
    "MockERC20": "contracts/TokenTranche.sol/MockERC20.json",
    "LoanNFT": "contracts/TokenTranche.sol/LoanNFT.json",
    "Pool": "contracts/TokenTranche.sol/Pool.json",
    "TrancheToken": "contracts/TokenTranche.sol/TrancheToken.json",
    "ERC3475": "erc3475/ERC3475.sol/ERC3475.json",
}

_LEDGER_ERRORS = (Web3Exception, ValueError, RequestException)


def load_artifact(artifacts_dir: Path, contract: str) -> Dict[str, Any]:
    """Read the ``abi``/``bytecode`` pair for ``contract`` from a Hardhat build."""
    relative = ARTIFACT_PATHS.get(contract)
    if relative is None:
        raise ConfigurationError(f"Unknown contract artifact: {contract}")
    path = artifacts_dir / relative
    if not path.exists():
        raise ConfigurationError(f"Artifact for {contract} not found at {path}")
    artifact = json.loads(path.read_text())
    return {"abi": artifact["abi"], "bytecode": artifact.get("bytecode", "0x")}


class Web3Ledger(Ledger):
    """``Ledger`` backed by a JSON-RPC node through web3.py."""

    def __init__(
        self,
        rpc_url: str,
        artifacts_dir: Path,
        default_gas: int = 1_000_000,
        deploy_gas: int = 8_000_000,
        poa: bool = False,
    ) -> None:
        self.rpc_url = rpc_url
        self.w3 = Web3(Web3.HTTPProvider(rpc_url))
        if poa:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        self.artifacts_dir = Path(artifacts_dir)
        self.default_gas = default_gas
        self.deploy_gas = deploy_gas
        self._artifacts: Dict[str, Dict[str, Any]] = {}
        # lower-cased address -> contract name, for event decoding
        self._known_addresses: Dict[str, str] = {}

    def is_connected(self) -> bool:
        return self.w3.is_connected()

    def pending_nonce(self, address: str) -> int:
        try:
            return int(self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), "pending"))
        except _LEDGER_ERRORS as e:
            raise LedgerCallError(f"nonce({address})", e) from e

    def send(self, call: LedgerCall, sender: LocalAccount, nonce: int) -> str:
        try:
            contract_fn = self._contract_fn(call)
            tx = contract_fn.build_transaction(
                {
                    "from": sender.address,
                    "nonce": nonce,
                    "gas": self.deploy_gas if call.is_deployment else self.default_gas,
                    "gasPrice": self.w3.eth.gas_price,
                }
            )
            signed_tx = sender.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except _LEDGER_ERRORS as e:
            raise LedgerCallError(call, e) from e
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, call: LedgerCall, tx_hash: str, timeout: float) -> Receipt:
        try:
            raw = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted as e:
            raise LedgerTimeoutError(call, f"no receipt for {tx_hash} after {timeout}s") from e
        except _LEDGER_ERRORS as e:
            raise LedgerCallError(call, e) from e

        contract_address = raw.get("contractAddress")
        if contract_address:
            self._known_addresses[contract_address.lower()] = call.contract
        return Receipt(
            tx_hash=Web3.to_hex(raw["transactionHash"]),
            status=int(raw["status"]),
            block_number=int(raw["blockNumber"]),
            contract_address=contract_address,
            events=self._decode_events(raw),
        )

    def call(self, contract: str, address: str, function: str, *args: Any) -> Any:
        try:
            handle = self._get_contract(contract, address)
            return handle.functions[function](*args).call()
        except _LEDGER_ERRORS as e:
            raise LedgerCallError(f"{contract}@{address}.{function}", e) from e

    def _contract_fn(self, call: LedgerCall) -> Any:
        if call.is_deployment:
            artifact = self._artifact(call.contract)
            factory = self.w3.eth.contract(abi=artifact["abi"], bytecode=artifact["bytecode"])
            return factory.constructor(*call.args)
        return self._get_contract(call.contract, call.address).functions[call.function](*call.args)

    def _get_contract(self, contract: str, address: Optional[str]) -> Any:
        if not address:
            raise ValueError(f"{contract} contract address missing.")
        self._known_addresses.setdefault(address.lower(), contract)
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=self._artifact(contract)["abi"])

    def _artifact(self, contract: str) -> Dict[str, Any]:
        if contract not in self._artifacts:
            self._artifacts[contract] = load_artifact(self.artifacts_dir, contract)
        return self._artifacts[contract]

    def _decode_events(self, raw_receipt: Any) -> List[LedgerEvent]:
        decoded: Dict[int, LedgerEvent] = {}
        for name in set(self._known_addresses.values()):
            abi = self._artifact(name)["abi"]
            decoder = self.w3.eth.contract(abi=abi)
            for entry in abi:
                if entry.get("type") != "event":
                    continue
                for event in decoder.events[entry["name"]]().process_receipt(raw_receipt, errors=DISCARD):
                    emitter = self._known_addresses.get(event["address"].lower())
                    if emitter != name:
                        continue
                    decoded.setdefault(
                        int(event["logIndex"]),
                        LedgerEvent(
                            address=event["address"],
                            name=event["event"],
                            args=dict(event["args"]),
                            log_index=int(event["logIndex"]),
                        ),
                    )
        return [decoded[index] for index in sorted(decoded)]


def load_identities(config: Optional[Settings] = None) -> Tuple[LocalAccount, LocalAccount]:
    """Build the (operator, investor) signing identities from configuration."""
    config = config or settings
    if not config.web3_operator_private_key:
        raise ConfigurationError("TRANCHE_WEB3_OPERATOR_PRIVATE_KEY is required for ledger transactions.")
    if not config.web3_investor_private_key:
        raise ConfigurationError("TRANCHE_WEB3_INVESTOR_PRIVATE_KEY is required for ledger transactions.")
    return (
        Account.from_key(config.web3_operator_private_key),
        Account.from_key(config.web3_investor_private_key),
    )


_ledger_instance: Optional[Web3Ledger] = None


def get_ledger() -> Web3Ledger:
    global _ledger_instance
    if _ledger_instance is not None:
        return _ledger_instance

    _ledger_instance = Web3Ledger(
        rpc_url=settings.web3_rpc_url,
        artifacts_dir=Path(settings.artifacts_dir),
        default_gas=settings.web3_default_gas,
        deploy_gas=settings.web3_deploy_gas,
        poa=settings.web3_poa,
    )
    logger.info(f"Ledger client created for {settings.web3_rpc_url}")
    return _ledger_instance
