import pytest

from aa_wallet.config import ENTRYPOINT_V07, SEPOLIA_CHAIN_ID, SmartAccountConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "RPC_URL",
        "CHAIN_ID",
        "BUNDLER_URL",
        "PIMLICO_API_KEY",
        "ENTRY_POINT_ADDRESS",
        "POLL_INTERVAL",
        "RECEIPT_TIMEOUT",
        "REMOTE_USER_OP_HASH",
        "LOG_FROM_BLOCK",
        "LEGACY_FAILED_STATUS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://rpc.test")
    monkeypatch.setenv("BUNDLER_URL", "http://bundler.test")

    config = SmartAccountConfig.from_env()

    assert config.chain_id == SEPOLIA_CHAIN_ID
    assert config.entry_point_address == ENTRYPOINT_V07
    assert config.poll_interval == 1.0
    assert config.receipt_timeout is None
    assert config.remote_user_op_hash is False
    assert config.legacy_failed_status is False


def test_pimlico_url_from_api_key(monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://rpc.test")
    monkeypatch.setenv("CHAIN_ID", "84532")
    monkeypatch.setenv("PIMLICO_API_KEY", "pim_test")

    config = SmartAccountConfig.from_env()

    assert config.bundler_url == "https://api.pimlico.io/v2/84532/rpc?apikey=pim_test"
    assert config.chain_id == 84532


def test_overrides(monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://rpc.test")
    monkeypatch.setenv("BUNDLER_URL", "http://bundler.test")
    monkeypatch.setenv("POLL_INTERVAL", "0.5")
    monkeypatch.setenv("RECEIPT_TIMEOUT", "60")
    monkeypatch.setenv("LEGACY_FAILED_STATUS", "true")

    config = SmartAccountConfig.from_env()

    assert config.poll_interval == 0.5
    assert config.receipt_timeout == 60.0
    assert config.legacy_failed_status is True


def test_rpc_url_is_required():
    with pytest.raises(ValueError):
        SmartAccountConfig.from_env()


def test_bundler_is_required(monkeypatch):
    monkeypatch.setenv("RPC_URL", "http://rpc.test")

    with pytest.raises(ValueError):
        SmartAccountConfig.from_env()
