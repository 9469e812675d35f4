"""
Shared fixtures for the wallet test suite
"""

import pytest

from aa_wallet.config import SmartAccountConfig
from aa_wallet.smart_account import SmartAccountService
from tests.fakes import FakeBundler, FakeChain


@pytest.fixture
def config():
    return SmartAccountConfig(
        rpc_url="http://rpc.test",
        bundler_url="http://bundler.test",
        poll_interval=0,
    )


@pytest.fixture
def fake_bundler():
    return FakeBundler()


@pytest.fixture
def fake_chain():
    return FakeChain()


@pytest.fixture
def service(config, fake_bundler, fake_chain):
    return SmartAccountService(config, bundler=fake_bundler, chain=fake_chain)
