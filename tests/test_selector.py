"""
Tests for channel selection and the channel lifecycle.
"""
import threading

import pytest
from unittest.mock import patch

from mpe_sdk.exceptions import (
    ChainTransactionError, ConfigurationError, DaemonConnectionError, InsufficientFundsError
)
from mpe_sdk.mpe.selector import ChannelSelector, selection_lock
from conftest import TEST_PRICE, TEST_START_BLOCK, TEST_EXPIRATION_THRESHOLD, make_env

DEFAULT_EXPIRATION = TEST_START_BLOCK + TEST_EXPIRATION_THRESHOLD  # 150
EXTENDED_EXPIRY = DEFAULT_EXPIRATION + 240


def make_selector(env, **kwargs):
    return ChannelSelector(env.account, env.repository, env.service, **kwargs)


class TestOpenNewChannel:
    """A payer without channels gets a new one."""

    def test_opens_from_escrow_when_balance_covers_price(self, env):
        """Price 100 with 1000 escrowed opens a channel, no deposit."""
        channel = make_selector(env).select_channel()

        assert env.mpe.calls == [("open_channel", None, TEST_PRICE, EXTENDED_EXPIRY)]
        assert channel.state.available_amount == TEST_PRICE
        assert channel.state.expiry == EXTENDED_EXPIRY
        assert env.repository.channels == (channel,)

    def test_deposits_and_opens_when_escrow_is_short(self):
        """An escrow balance below the price uses depositAndOpenChannel."""
        env = make_env(escrow_balance=10)
        with patch.object(env.account, "balance", return_value=10_000):
            channel = make_selector(env).select_channel()

        assert env.mpe.calls == [("deposit_and_open_channel", None, TEST_PRICE, EXTENDED_EXPIRY)]
        assert channel.state.available_amount >= TEST_PRICE

    def test_balance_equal_to_price_opens_directly(self):
        env = make_env(escrow_balance=TEST_PRICE)
        make_selector(env).select_channel()
        assert env.mpe.calls[0][0] == "open_channel"

    def test_insufficient_wallet_and_escrow(self):
        env = make_env(escrow_balance=0)
        with patch.object(env.account, "balance", return_value=5):
            with pytest.raises(InsufficientFundsError):
                make_selector(env).select_channel()
        assert env.mpe.calls == []

    def test_failed_open_is_wrapped_and_not_retried(self, env):
        with patch.object(env.mpe, "open_channel",
                          side_effect=ChainTransactionError("reverted", tx_hash="0xdead")) as open_mock:
            with pytest.raises(ChainTransactionError) as excinfo:
                make_selector(env).select_channel()

        assert "opening channel failed" in str(excinfo.value)
        assert excinfo.value.tx_hash == "0xdead"
        open_mock.assert_called_once()
        assert env.repository.channels == ()


class TestExistingChannel:
    """Top-up and extension decisions for the first known channel."""

    def test_adds_funds_only_when_valid_but_short(self, env):
        """available=50, expiry=200, price=100, default expiration 150."""
        channel_id = env.add_channel(amount=50, expiry=200)

        channel = make_selector(env).select_channel()

        assert env.mpe.calls == [("channel_add_funds", channel_id, TEST_PRICE)]
        assert channel.state.available_amount >= TEST_PRICE
        assert channel.state.expiry == 200

    def test_extends_only_when_funded_but_expiring(self, env):
        """available=200, expiry=100, price=100, default expiration 150."""
        channel_id = env.add_channel(amount=200, expiry=100)

        channel = make_selector(env).select_channel()

        assert env.mpe.calls == [("channel_extend", channel_id, EXTENDED_EXPIRY)]
        assert channel.state.expiry == EXTENDED_EXPIRY

    def test_extends_and_adds_funds_when_both_fail(self, env):
        channel_id = env.add_channel(amount=150, expiry=120, signed_amount=100)

        channel = make_selector(env).select_channel()

        assert env.mpe.calls == [
            ("channel_extend_and_add_funds", channel_id, EXTENDED_EXPIRY, TEST_PRICE)
        ]
        assert channel.state.available_amount == 150
        assert channel.state.expiry >= DEFAULT_EXPIRATION

    @pytest.mark.parametrize("amount, expiry, method, prefix", [
        (50, 200, "channel_add_funds", "adding funds to channel failed"),
        (200, 100, "channel_extend", "extending channel failed"),
        (50, 100, "channel_extend_and_add_funds", "extending and adding funds to channel failed"),
    ])
    def test_failed_update_names_the_operation(self, env, amount, expiry, method, prefix):
        env.add_channel(amount=amount, expiry=expiry)
        error = ChainTransactionError("reverted", tx_hash="0xbeef")

        with patch.object(env.mpe, method, side_effect=error) as update_mock:
            with pytest.raises(ChainTransactionError) as excinfo:
                make_selector(env).select_channel()

        assert str(excinfo.value).startswith(prefix)
        assert excinfo.value.tx_hash == "0xbeef"
        update_mock.assert_called_once()

    def test_no_action_when_usable(self, env):
        env.add_channel(amount=500, expiry=1000, signed_amount=100)

        channel = make_selector(env).select_channel()

        assert env.mpe.calls == []
        assert channel.state.available_amount == 400

    def test_exact_boundaries_are_usable(self, env):
        """available == price and expiry == default expiration need nothing."""
        env.add_channel(amount=TEST_PRICE, expiry=DEFAULT_EXPIRATION)

        make_selector(env).select_channel()

        assert env.mpe.calls == []

    def test_first_known_channel_is_used(self, env):
        first = env.add_channel(amount=10, expiry=1000)
        env.add_channel(amount=10_000, expiry=1000)

        channel = make_selector(env).select_channel()

        assert channel.channel_id == first
        assert env.mpe.calls == [("channel_add_funds", first, TEST_PRICE)]

    def test_call_allowance_scales_top_up(self, env):
        channel_id = env.add_channel(amount=0, expiry=1000)

        make_selector(env, call_allowance=5).select_channel()

        assert env.mpe.calls == [("channel_add_funds", channel_id, TEST_PRICE * 5)]

    def test_block_offset_is_applied_to_extension(self, env):
        channel_id = env.add_channel(amount=1000, expiry=10)

        make_selector(env, block_offset=10).select_channel()

        assert env.mpe.calls == [("channel_extend", channel_id, DEFAULT_EXPIRATION + 10)]

    def test_explicit_price(self, env):
        channel_id = env.add_channel(amount=300, expiry=1000)

        make_selector(env).select_channel(price=500)

        assert env.mpe.calls == [("channel_add_funds", channel_id, 500)]


class TestPreselectedChannel:

    def test_returned_verbatim_without_top_up(self, env):
        env.add_channel(amount=1000, expiry=1000)
        preselected = env.add_channel(amount=0, expiry=1)

        channel = make_selector(env).select_channel(preselect_id=preselected)

        assert channel.channel_id == preselected
        assert channel.state.available_amount == 0
        assert env.mpe.calls == []

    def test_unknown_channel(self, env):
        env.add_channel(amount=1000, expiry=1000)
        with pytest.raises(ConfigurationError):
            make_selector(env).select_channel(preselect_id=99)


class TestRefreshFailures:

    def test_daemon_failure_propagates_before_any_mutation(self, env):
        env.add_channel(amount=0, expiry=1000)
        with patch.object(env.daemon, "get_channel_state",
                          side_effect=DaemonConnectionError("daemon down")):
            with pytest.raises(DaemonConnectionError):
                make_selector(env).select_channel()
        assert env.mpe.calls == []


class TestSingleFlight:

    def test_lock_is_shared_per_payer_and_group(self):
        lock_a = selection_lock("0xAbC0000000000000000000000000000000000001", b"\x01" * 32)
        lock_b = selection_lock("0xabc0000000000000000000000000000000000001", b"\x01" * 32)
        lock_c = selection_lock("0xabc0000000000000000000000000000000000001", b"\x02" * 32)
        assert lock_a is lock_b
        assert lock_a is not lock_c

    def test_concurrent_selections_open_one_channel(self, env):
        selector = make_selector(env)
        errors = []

        def select():
            try:
                selector.select_channel()
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=select) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        opens = [call for call in env.mpe.calls if call[0] == "open_channel"]
        assert len(opens) == 1
        assert len(env.repository.channels) == 1
