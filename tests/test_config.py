import pytest

import config
from services.errors import SweepConfigError, UnsupportedChainError


def test_mainnet_profiles():
    profiles = config.get_chain_profiles(test_mode=False, enabled=["ethereum", "polygon", "bogus"])

    assert list(profiles) == ["ethereum", "polygon"]
    eth = profiles["ethereum"]
    assert (eth.usd_threshold, eth.native_usd_threshold, eth.poll_interval) == (10, 5, 20)
    assert eth.chain_id == 1
    assert eth.native_symbol == "ETH"
    assert not eth.testnet
    assert profiles["polygon"].native_usd_threshold == 20


def test_testnet_profiles():
    profiles = config.get_chain_profiles(test_mode=True, enabled=["ethereum", "mantle"])

    eth = profiles["ethereum"]
    assert eth.testnet
    assert eth.chain_id == 11155111
    assert (eth.usd_threshold, eth.native_usd_threshold, eth.poll_interval) == (1, 10, 30)
    assert eth.display_name == "Ethereum"
    assert profiles["mantle"].display_name == "Mantle"


def test_unknown_chain_raises():
    with pytest.raises(UnsupportedChainError):
        config.get_chain_profile("solana", test_mode=False)


def test_config_errors_are_value_errors():
    assert issubclass(UnsupportedChainError, SweepConfigError)
    assert issubclass(UnsupportedChainError, ValueError)


def test_explorer_template_formats():
    profile = config.get_chain_profile("polygon", test_mode=False)
    assert profile.explorer_url.format(tx="0xabc") == "https://polygonscan.com/tx/0xabc"
