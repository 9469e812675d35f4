"""
Tests for account vendors (ERC-7579 call data, nonce keys, account creation)
"""

import pytest
from eth_abi import decode
from web3 import Web3

from aa_wallet.exceptions import InvalidRequestError, VendorError
from aa_wallet.modules import UNINSTALL_MODULE_SELECTOR
from aa_wallet.packing import hex_to_bytes
from aa_wallet.user_operations import Call
from aa_wallet.vendors import (
    EXECUTE_SELECTOR,
    EXECUTIONS_TYPE,
    KERNEL_CREATE_SELECTOR,
    MY_ACCOUNT_CREATE_SELECTOR,
    Kernel,
    MyAccount,
    encode_mode,
    vendor_registry,
)
from tests.fakes import SENDER, TARGET, VALIDATOR_ADDRESS, FakeChain

OWNER = "0x" + "0e" * 20
SALT = "0x" + "00" * 31 + "01"


def decode_execute(call_data: str):
    raw = hex_to_bytes(call_data)
    assert raw[:4] == EXECUTE_SELECTOR
    return decode(["bytes32", "bytes"], raw[4:])


class TestEncodeMode:
    def test_mode_is_32_bytes_with_call_type_first(self):
        mode = encode_mode("0x01")

        assert len(mode) == 32
        assert mode[0] == 1
        assert mode[1:] == b"\x00" * 31


class TestMyAccountCallData:
    def test_single_call_uses_packed_execution(self):
        call = Call(to=TARGET, data="0x1234", value="0x38d7ea4c68000")

        mode, execution = decode_execute(MyAccount().build_call_data(SENDER, [call]))

        assert mode[0] == 0
        assert execution[:20] == hex_to_bytes(TARGET)
        assert int.from_bytes(execution[20:52], "big") == 10**15
        assert execution[52:] == bytes.fromhex("1234")

    def test_batch_uses_abi_encoded_executions(self):
        calls = [Call(to=TARGET, value="0x1"), Call(to=VALIDATOR_ADDRESS, data="0xabcd")]

        mode, execution = decode_execute(MyAccount().build_call_data(SENDER, calls))
        (executions,) = decode([EXECUTIONS_TYPE], execution)

        assert mode[0] == 1
        assert [(to.lower(), value, data) for to, value, data in executions] == [
            (TARGET.lower(), 1, b""),
            (VALIDATOR_ADDRESS.lower(), 0, bytes.fromhex("abcd")),
        ]

    def test_self_call_is_passed_through_unwrapped(self):
        call = Call(to=Web3.to_checksum_address(SENDER), data="0xdeadbeef")

        assert MyAccount().build_call_data(SENDER, [call]) == "0xdeadbeef"

    def test_self_call_cannot_be_batched(self):
        calls = [Call(to=TARGET, value="0x1"), Call(to=SENDER.upper().replace("0X", "0x"), data="0x")]

        with pytest.raises(VendorError):
            MyAccount().build_call_data(SENDER, calls)

    def test_empty_batch_is_rejected(self):
        with pytest.raises(VendorError):
            MyAccount().build_call_data(SENDER, [])

    def test_nonce_key_is_left_padded_validator(self):
        key = hex_to_bytes(MyAccount().nonce_key(VALIDATOR_ADDRESS))

        assert len(key) == 24
        assert key == b"\x00" * 4 + hex_to_bytes(VALIDATOR_ADDRESS)


class TestMyAccountCreation:
    def test_init_code(self):
        vendor = MyAccount()

        factory, factory_data = vendor.build_init_code(validator=VALIDATOR_ADDRESS, owner=OWNER, salt=SALT)
        raw = hex_to_bytes(factory_data)
        salt, validator, data = decode(["uint256", "address", "bytes"], raw[4:])

        assert factory == vendor.factory
        assert raw[:4] == MY_ACCOUNT_CREATE_SELECTOR
        assert salt == 1
        assert validator.lower() == VALIDATOR_ADDRESS.lower()
        assert data == hex_to_bytes(OWNER)

    @pytest.mark.asyncio
    async def test_predict_address_reads_factory(self):
        chain = FakeChain()
        chain.call_results["getAddress"] = SENDER

        address = await MyAccount().predict_address(chain, validator=VALIDATOR_ADDRESS, owner=OWNER, salt=SALT)

        assert address == SENDER
        _, factory, function_name, args = chain.calls[0]
        assert factory == MyAccount().factory
        assert function_name == "getAddress"
        assert args[0] == 1

    @pytest.mark.asyncio
    async def test_uninstall_looks_up_previous_validator(self):
        chain = FakeChain()
        other = "0x" + "22" * 20
        chain.call_results["getValidatorsPaginated"] = ([other, VALIDATOR_ADDRESS], "0x" + "00" * 19 + "01")

        call_data = await MyAccount().build_uninstall_validator_call_data(chain, SENDER, VALIDATOR_ADDRESS)
        raw = hex_to_bytes(call_data)
        module_type, module, deinit = decode(["uint256", "address", "bytes"], raw[4:])
        previous, data = decode(["address", "bytes"], deinit)

        assert raw[:4] == UNINSTALL_MODULE_SELECTOR
        assert module_type == 1
        assert module.lower() == VALIDATOR_ADDRESS.lower()
        assert previous.lower() == other.lower()
        assert data == b""

    @pytest.mark.asyncio
    async def test_uninstall_of_unknown_validator_fails(self):
        chain = FakeChain()
        chain.call_results["getValidatorsPaginated"] = (["0x" + "22" * 20], "0x" + "00" * 19 + "01")

        with pytest.raises(InvalidRequestError):
            await MyAccount().build_uninstall_validator_call_data(chain, SENDER, VALIDATOR_ADDRESS)


class TestKernel:
    def test_single_call_still_uses_batch_mode(self):
        mode, execution = decode_execute(Kernel().build_call_data(SENDER, [Call(to=TARGET, value="0x1")]))
        (executions,) = decode([EXECUTIONS_TYPE], execution)

        assert mode[0] == 1
        assert [(to.lower(), value, data) for to, value, data in executions] == [(TARGET.lower(), 1, b"")]

    def test_nonce_key_carries_validation_type(self):
        key = hex_to_bytes(Kernel().nonce_key(VALIDATOR_ADDRESS))

        assert len(key) == 24
        assert key[:3] == b"\x00" * 3
        assert key[3] == 1
        assert key[4:] == hex_to_bytes(VALIDATOR_ADDRESS)

    def test_init_code(self):
        vendor = Kernel()

        factory, factory_data = vendor.build_init_code(validator=VALIDATOR_ADDRESS, owner=OWNER, salt=SALT)
        raw = hex_to_bytes(factory_data)
        initialize_data, salt = decode(["bytes", "bytes32"], raw[4:])

        assert factory == vendor.factory
        assert raw[:4] == KERNEL_CREATE_SELECTOR
        assert initialize_data == vendor.initialize_data(VALIDATOR_ADDRESS, OWNER)
        assert salt == hex_to_bytes(SALT)

    def test_short_salt_is_rejected(self):
        with pytest.raises(VendorError):
            Kernel().build_init_code(validator=VALIDATOR_ADDRESS, owner=OWNER, salt="0x01")

    def test_invalid_owner_is_rejected(self):
        with pytest.raises(VendorError):
            Kernel().initialize_data(VALIDATOR_ADDRESS, "0x1234")

    def test_install_module_init_data_layout(self):
        validation_data = "0x" + "ab" * 40

        raw = hex_to_bytes(Kernel.install_module_init_data(validation_data))

        assert len(raw) == 20 + 32 * 3 + 32 + 40 + 32 * 2
        assert raw[:20] == b"\x00" * 20
        assert int.from_bytes(raw[20:52], "big") == 0x60
        assert int.from_bytes(raw[116:148], "big") == 40
        assert raw[148:188] == b"\xab" * 40

    @pytest.mark.asyncio
    async def test_uninstall_has_empty_deinit_data(self):
        chain = FakeChain()

        call_data = await Kernel().build_uninstall_validator_call_data(chain, SENDER, VALIDATOR_ADDRESS)
        _, _, deinit = decode(["uint256", "address", "bytes"], hex_to_bytes(call_data)[4:])

        assert deinit == b""
        assert chain.calls == []


def test_vendor_registry_keys_by_account_id():
    registry = vendor_registry([MyAccount(), Kernel()])

    assert set(registry) == {"johnson86tw.0.0.1", "kernel.advanced.v0.3.1"}
