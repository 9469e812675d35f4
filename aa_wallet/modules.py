"""
ERC-7579 module install / uninstall helpers for modular smart accounts
"""

import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from aa_wallet.chain import ChainClient
from aa_wallet.exceptions import InvalidRequestError
from aa_wallet.packing import hex_to_bytes

logger = logging.getLogger(__name__)

MODULE_TYPE_VALIDATOR = 1
MODULE_TYPE_EXECUTOR = 2
MODULE_TYPE_FALLBACK = 3
MODULE_TYPE_HOOK = 4

# Head of the validators linked list kept by the account
SENTINEL_ADDRESS = "0x0000000000000000000000000000000000000001"

INSTALL_MODULE_SELECTOR = Web3.keccak(text="installModule(uint256,address,bytes)")[:4]
UNINSTALL_MODULE_SELECTOR = Web3.keccak(text="uninstallModule(uint256,address,bytes)")[:4]

MODULE_EVENTS_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "moduleTypeId", "type": "uint256"},
            {"indexed": False, "name": "module", "type": "address"},
        ],
        "name": "ModuleInstalled",
        "type": "event"
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "moduleTypeId", "type": "uint256"},
            {"indexed": False, "name": "module", "type": "address"},
        ],
        "name": "ModuleUninstalled",
        "type": "event"
    },
]

GET_VALIDATORS_PAGINATED_ABI = [{
    "inputs": [{"name": "cursor", "type": "address"}, {"name": "size", "type": "uint256"}],
    "name": "getValidatorsPaginated",
    "outputs": [{"name": "array", "type": "address[]"}, {"name": "next", "type": "address"}],
    "stateMutability": "view",
    "type": "function"
}]


def encode_install_module(module_type: int, module: str, init_data: str = "0x") -> str:
    """Calldata of installModule(uint256,address,bytes), sent by the account to itself"""
    encoded = encode(
        ["uint256", "address", "bytes"],
        [module_type, Web3.to_checksum_address(module), hex_to_bytes(init_data, "initData")],
    )
    return Web3.to_hex(INSTALL_MODULE_SELECTOR + encoded)


def encode_uninstall_module(module_type: int, module: str, deinit_data: str = "0x") -> str:
    """Calldata of uninstallModule(uint256,address,bytes)"""
    encoded = encode(
        ["uint256", "address", "bytes"],
        [module_type, Web3.to_checksum_address(module), hex_to_bytes(deinit_data, "deInitData")],
    )
    return Web3.to_hex(UNINSTALL_MODULE_SELECTOR + encoded)


def find_previous_entry(entries: Sequence[str], entry: str) -> str:
    """Predecessor of `entry` in an ordered address list.

    Addresses compare case-insensitively. The first element's predecessor
    is the sentinel head.
    """
    target = entry.lower()
    for index, candidate in enumerate(entries):
        if candidate.lower() == target:
            return SENTINEL_ADDRESS if index == 0 else entries[index - 1]
    raise InvalidRequestError(f"Entry {entry} not found in list")


def build_uninstall_deinit_data(previous: str, data: str = "0x") -> str:
    """abi.encode(address prev, bytes data) expected by linked-list accounts"""
    return Web3.to_hex(
        encode(["address", "bytes"], [Web3.to_checksum_address(previous), hex_to_bytes(data, "data")])
    )


def encode_webauthn_validator_init_data(pub_key_x: int, pub_key_y: int, authenticator_id_hash: str) -> str:
    """Install data of a WebAuthn validator: abi.encode((uint256 x, uint256 y), bytes32 authenticatorIdHash)"""
    return Web3.to_hex(
        encode(
            ["(uint256,uint256)", "bytes32"],
            [(pub_key_x, pub_key_y), hex_to_bytes(authenticator_id_hash, "authenticatorIdHash")],
        )
    )


def replay_installed_modules(events: Iterable[Dict], module_type: int = MODULE_TYPE_VALIDATOR) -> List[str]:
    """Replay ModuleInstalled / ModuleUninstalled events in chain order"""
    ordered = sorted(events, key=lambda e: (e["blockNumber"], e["transactionIndex"], e.get("logIndex", 0)))

    installed: Dict[str, str] = {}
    for event in ordered:
        args = event["args"]
        if int(args["moduleTypeId"]) != module_type:
            continue
        module = args["module"]
        if event["event"] == "ModuleInstalled":
            installed[module.lower()] = module
        else:
            installed.pop(module.lower(), None)
    return list(installed.values())


async def get_installed_modules(
    chain: ChainClient,
    account: str,
    module_type: int = MODULE_TYPE_VALIDATOR,
    from_block: int = 0,
) -> List[str]:
    install_events = await chain.get_event_logs(account, MODULE_EVENTS_ABI, "ModuleInstalled", from_block=from_block)
    uninstall_events = await chain.get_event_logs(
        account, MODULE_EVENTS_ABI, "ModuleUninstalled", from_block=from_block
    )
    return replay_installed_modules(install_events + uninstall_events, module_type)


async def get_validators_paginated(
    chain: ChainClient,
    account: str,
    cursor: str = SENTINEL_ADDRESS,
    size: int = 10,
) -> Tuple[List[str], str]:
    validators, next_cursor = await chain.call(
        account, GET_VALIDATORS_PAGINATED_ABI, "getValidatorsPaginated", Web3.to_checksum_address(cursor), size
    )
    return list(validators), next_cursor


async def build_validator_uninstall_data(chain: ChainClient, account: str, validator: str, size: int = 10) -> str:
    """Uninstall calldata for a validator, looking up its predecessor on-chain"""
    validators, _ = await get_validators_paginated(chain, account, size=size)
    previous = find_previous_entry(validators, validator)
    logger.info(f"Uninstalling validator {validator} from {account} (previous entry {previous})")
    return encode_uninstall_module(MODULE_TYPE_VALIDATOR, validator, build_uninstall_deinit_data(previous))
