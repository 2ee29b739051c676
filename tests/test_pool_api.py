import base64

import httpx
import pytest
import respx

from conftest import POOL_HOST, encode_blockhash
from pool_api import (
    MalformedResponseError,
    PoolApi,
    PoolState,
    Rejected,
    RetryPolicy,
    ServerStatusError,
    Success,
    TransientFailure,
    TransportError,
    call_with_retry,
    classify_reply,
    decode_blockhash,
    parse_timestamp,
)


def test_base_url_follows_unsecure_flag():
    with PoolApi(POOL_HOST) as secure, PoolApi(POOL_HOST, unsecure=True) as plain:
        assert secure.base_url == "https://pool.test"
        assert plain.base_url == "http://pool.test"


# ------------------------------
# State fetcher
# ------------------------------

def test_fetch_pool_state(api, pool_mock, authority, fee_payer, blockhash):
    state = api.fetch_pool_state()

    assert state == PoolState(authority=authority, fee_payer=fee_payer, blockhash=blockhash)
    assert pool_mock.routes["authority"].call_count == 1
    assert pool_mock.routes["fee_payer"].call_count == 1
    assert pool_mock.routes["blockhash"].call_count == 1


def test_pubkey_body_whitespace_is_ignored(api, pool_mock, authority):
    pool_mock.routes["authority"].respond(text=f"{authority}\n")
    assert api.fetch_authority_pubkey() == authority


def test_malformed_pubkey_is_not_retried(api, pool_mock, sleeps):
    pool_mock.routes["fee_payer"].respond(text="definitely-not-a-key")

    with pytest.raises(MalformedResponseError):
        api.fetch_fee_payer_pubkey()

    assert pool_mock.routes["fee_payer"].call_count == 1
    assert sleeps == []


def test_transport_failure_is_retried(api, pool_mock, authority, sleeps):
    pool_mock.routes["authority"].side_effect = [
        httpx.ConnectError,
        httpx.Response(200, text=str(authority)),
    ]

    assert api.fetch_authority_pubkey() == authority
    assert pool_mock.routes["authority"].call_count == 2
    assert sleeps == [0.5]


def test_retries_are_bounded(api, pool_mock, sleeps):
    pool_mock.routes["blockhash"].respond(status_code=503)

    with pytest.raises(ServerStatusError) as excinfo:
        api.fetch_latest_blockhash()

    assert excinfo.value.status_code == 503
    assert pool_mock.routes["blockhash"].call_count == 3
    assert sleeps == [0.5, 1.0]


def test_connect_error_surfaces_as_transport_error(api, pool_mock):
    pool_mock.routes["authority"].side_effect = httpx.ConnectTimeout

    with pytest.raises(TransportError):
        api.fetch_authority_pubkey()


# ------------------------------
# Blockhash decoding
# ------------------------------

def test_decode_blockhash(blockhash):
    assert decode_blockhash(encode_blockhash(blockhash)) == blockhash


@pytest.mark.parametrize(
    "body",
    [
        "%%%not base64%%%",
        base64.b64encode(b"\x01" * 31).decode(),
        base64.b64encode(b"\x01" * 40).decode(),
        "",
    ],
)
def test_decode_blockhash_rejects_bad_records(body):
    with pytest.raises(MalformedResponseError):
        decode_blockhash(body)


# ------------------------------
# Timestamp poller
# ------------------------------

def test_timestamp_poller_waits_out_restarts(api, pool_mock, sleeps):
    pool_mock.routes["timestamp"].side_effect = [
        httpx.Response(503),
        httpx.Response(503),
        httpx.Response(200, text="42"),
    ]

    assert api.get_timestamp() == 42
    assert sleeps == [3.0, 3.0]


def test_timestamp_poller_retries_unparsable_body(api, pool_mock, sleeps):
    pool_mock.routes["timestamp"].side_effect = [
        httpx.Response(200, text="notanumber"),
        httpx.Response(200, text="7"),
    ]

    assert api.get_timestamp() == 7
    assert sleeps == [3.0]


def test_timestamp_poller_is_not_bounded_by_retry_policy(api, pool_mock, sleeps):
    pool_mock.routes["timestamp"].side_effect = [httpx.ConnectError] * 5 + [
        httpx.Response(200, text="1700000000")
    ]

    assert api.get_timestamp() == 1700000000
    assert sleeps == [3.0] * 5


@pytest.mark.parametrize("text", ["-1", "4.2", "", "1e3", str(2 ** 64)])
def test_parse_timestamp_rejects(text):
    with pytest.raises(MalformedResponseError):
        parse_timestamp(text)


# ------------------------------
# Submission
# ------------------------------

@pytest.mark.parametrize(
    "body, expected",
    [
        (b"SUCCESS", Success()),
        (b"insufficient funds", Rejected("insufficient funds")),
        (b"success", Rejected("success")),
        (b"SUCCESS\n", Rejected("SUCCESS\n")),
        (b"", TransientFailure("empty response body")),
        (b"\xff\xfe\xfd", TransientFailure("response body is not text")),
    ],
)
def test_classify_reply(body, expected):
    assert classify_reply(body) == expected


def test_submit_sends_query_and_body(api, pool_mock, staker, mint):
    result = api.submit_unstake_boost(staker.pubkey(), str(mint), 150_000_000_000, "dGVzdA==")

    assert result == Success()
    request = pool_mock.routes["unstake"].calls.last.request
    assert request.url.params["pubkey"] == str(staker.pubkey())
    assert request.url.params["mint"] == str(mint)
    assert request.url.params["amount"] == "150000000000"
    assert request.content == b"dGVzdA=="


def test_submit_relays_rejection_regardless_of_status(api, pool_mock, staker, mint):
    pool_mock.routes["unstake"].respond(status_code=500, text="Invalid transaction")

    result = api.submit_unstake_boost(staker.pubkey(), str(mint), 1, "AA==")

    assert result == Rejected("Invalid transaction")


def test_submit_transport_failure_is_transient(api, pool_mock, staker, mint, sleeps):
    pool_mock.routes["unstake"].side_effect = httpx.ConnectError

    result = api.submit_unstake_boost(staker.pubkey(), str(mint), 1, "AA==")

    assert isinstance(result, TransientFailure)
    assert pool_mock.routes["unstake"].call_count == 1
    assert sleeps == []


# ------------------------------
# Retry wrapper
# ------------------------------

def test_call_with_retry_caps_delay():
    sleeps = []
    attempts = iter(range(10))

    def flaky():
        if next(attempts) < 5:
            raise TransportError("down")
        return "up"

    policy = RetryPolicy(max_attempts=None, base_delay=1.0, multiplier=2.0, max_delay=4.0)
    assert call_with_retry(flaky, policy, sleep=sleeps.append) == "up"
    assert sleeps == [1.0, 2.0, 4.0, 4.0, 4.0]


def test_call_with_retry_propagates_other_errors():
    sleeps = []

    def broken():
        raise MalformedResponseError("bad body")

    with pytest.raises(MalformedResponseError):
        call_with_retry(broken, RetryPolicy(), sleep=sleeps.append)
    assert sleeps == []


@respx.mock
def test_unsecure_client_uses_http(sleeps):
    route = respx.get("http://pool.test/timestamp").respond(text="5")

    with PoolApi(POOL_HOST, unsecure=True, sleep=sleeps.append) as client:
        assert client.get_timestamp() == 5
    assert route.called
