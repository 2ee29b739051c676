import base64

import pytest
import respx
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from pool_api import PoolApi, RetryPolicy

POOL_HOST = "pool.test"
BASE_URL = f"https://{POOL_HOST}"


def encode_blockhash(blockhash: Hash) -> str:
    return base64.b64encode(bytes(blockhash)).decode("ascii")


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def api(sleeps: list):
    retry = RetryPolicy(max_attempts=3, base_delay=0.5, multiplier=2.0, max_delay=4.0)
    with PoolApi(POOL_HOST, retry=retry, sleep=sleeps.append) as client:
        yield client


@pytest.fixture
def staker() -> Keypair:
    return Keypair()


@pytest.fixture
def authority() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def fee_payer() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def mint() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def blockhash() -> Hash:
    return Hash.new_unique()


@pytest.fixture
def pool_mock(authority: Pubkey, fee_payer: Pubkey, blockhash: Hash):
    """A healthy pool that accepts every unstake request."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        mock.get(path="/pool/authority/pubkey", name="authority").respond(text=str(authority))
        mock.get(path="/pool/fee_payer/pubkey", name="fee_payer").respond(text=str(fee_payer))
        mock.get(path="/latest-blockhash", name="blockhash").respond(text=encode_blockhash(blockhash))
        mock.get(path="/timestamp", name="timestamp").respond(text="1700000000")
        mock.post(path="/unstake-boost", name="unstake").respond(text="SUCCESS")
        yield mock
