"""
pool_api.py

HTTP client for the delegation pool service.

The pool exposes a handful of plain-text endpoints:

  GET  /pool/authority/pubkey   -> base58 pool authority
  GET  /pool/fee_payer/pubkey   -> base58 fee payer
  GET  /latest-blockhash        -> base64 of the 32-byte blockhash record
  GET  /timestamp               -> decimal server timestamp
  POST /unstake-boost           -> "SUCCESS" or a failure message

Every GET goes through call_with_retry. Failures surface as FetchError
subclasses and never terminate the process; the CLI decides what to do.
"""

import base64
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar, Union

import httpx
from solders.hash import Hash
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

T = TypeVar("T")

AUTHORITY_PATH = "/pool/authority/pubkey"
FEE_PAYER_PATH = "/pool/fee_payer/pubkey"
BLOCKHASH_PATH = "/latest-blockhash"
TIMESTAMP_PATH = "/timestamp"
UNSTAKE_BOOST_PATH = "/unstake-boost"

SUCCESS_SENTINEL = "SUCCESS"
HASH_BYTES = 32
U64_MAX = 2 ** 64 - 1

DEFAULT_TIMEOUT = 10.0
TIMESTAMP_RETRY_SECONDS = 3.0


# ------------------------------
# Errors
# ------------------------------

class FetchError(Exception):
    """Base class for every failure while talking to the pool."""


class TransportError(FetchError):
    """The request never produced a usable HTTP response."""


class ServerStatusError(TransportError):
    """The pool answered with a non-success status."""

    def __init__(self, path: str, status_code: int):
        super().__init__(f"GET {path} returned HTTP {status_code}")
        self.path = path
        self.status_code = status_code


class MalformedResponseError(FetchError):
    """The pool answered, but the body could not be decoded."""


# ------------------------------
# Submission results
# ------------------------------

@dataclass(frozen=True)
class Success:
    """The pool accepted the transaction for co-signing and broadcast."""


@dataclass(frozen=True)
class Rejected:
    reason: str


@dataclass(frozen=True)
class TransientFailure:
    detail: str = ""


SubmissionResult = Union[Success, Rejected, TransientFailure]


def classify_reply(body: bytes) -> SubmissionResult:
    """
    Map the raw /unstake-boost reply onto a SubmissionResult.

    Only the exact text "SUCCESS" counts as success. An empty or
    non-UTF-8 body is treated as transient, anything else is relayed
    verbatim as the rejection reason.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return TransientFailure("response body is not text")

    if text == SUCCESS_SENTINEL:
        return Success()
    if not text:
        return TransientFailure("empty response body")
    return Rejected(text)


# ------------------------------
# Retry
# ------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule for GET requests.

    max_attempts=None retries forever. The delay starts at base_delay and
    is multiplied by multiplier after every failure, capped at max_delay.
    """

    max_attempts: Optional[int] = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 4.0

    @classmethod
    def forever(cls, delay: float) -> "RetryPolicy":
        return cls(max_attempts=None, base_delay=delay, multiplier=1.0, max_delay=delay)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (TransportError,),
    sleep: Callable[[float], None] = time.sleep,
    describe: str = "request",
    on_retry: Optional[Callable[[BaseException, float], None]] = None,
) -> T:
    """
    Call fn until it returns, retrying on the given exception types.

    Exceptions outside retry_on propagate immediately. Once max_attempts is
    reached the last retryable exception propagates as well.
    """
    attempt = 0
    delay = policy.base_delay
    while True:
        attempt += 1
        try:
            return fn()
        except retry_on as exc:
            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempts: %s", describe, attempt, exc)
                raise
            if on_retry is not None:
                on_retry(exc, delay)
            else:
                logger.warning(
                    "%s failed (attempt %d): %s; retrying in %.1fs",
                    describe,
                    attempt,
                    exc,
                    delay,
                )
            sleep(delay)
            delay = min(delay * policy.multiplier, policy.max_delay)


# ------------------------------
# Decoding helpers
# ------------------------------

def parse_pubkey(text: str, source: str = "response") -> Pubkey:
    try:
        return Pubkey.from_string(text.strip())
    except ValueError as exc:
        raise MalformedResponseError(f"{source} is not a valid public key: {text!r}") from exc


def decode_blockhash(text: str) -> Hash:
    """
    Decode the /latest-blockhash body: base64 of the bincode-encoded
    blockhash, which is the 32 hash bytes with no length prefix.
    """
    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except ValueError as exc:
        raise MalformedResponseError(f"blockhash is not valid base64: {exc}") from exc

    if len(raw) != HASH_BYTES:
        raise MalformedResponseError(
            f"blockhash record must be {HASH_BYTES} bytes, got {len(raw)}"
        )
    return Hash(raw)


def parse_timestamp(text: str) -> int:
    value = text.strip()
    if not (value.isascii() and value.isdigit()):
        raise MalformedResponseError(f"timestamp is not an unsigned integer: {text!r}")
    ts = int(value)
    if ts > U64_MAX:
        raise MalformedResponseError(f"timestamp out of range: {text!r}")
    return ts


# ------------------------------
# Client
# ------------------------------

@dataclass(frozen=True)
class PoolState:
    """Chain state the pool hands out for building one transaction."""

    authority: Pubkey
    fee_payer: Pubkey
    blockhash: Hash


class PoolApi:
    """
    Synchronous client for one pool host.

    Use as a context manager so the underlying httpx.Client is closed.
    """

    def __init__(
        self,
        host: str,
        unsecure: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        scheme = "http" if unsecure else "https"
        self.base_url = f"{scheme}://{host}"
        self.retry = retry if retry is not None else RetryPolicy()
        self.sleep = sleep
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout)

    def __enter__(self) -> "PoolApi":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # -- raw requests --------------------------------------------------

    def _get(self, path: str) -> httpx.Response:
        logger.debug("GET %s%s", self.base_url, path)
        try:
            response = self._client.get(path)
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {path} failed: {exc}") from exc

        if not response.is_success:
            raise ServerStatusError(path, response.status_code)
        return response

    def _fetch_text(self, path: str) -> str:
        response = call_with_retry(
            lambda: self._get(path),
            self.retry,
            sleep=self.sleep,
            describe=f"GET {path}",
        )
        return response.text

    # -- state fetcher -------------------------------------------------

    def fetch_authority_pubkey(self) -> Pubkey:
        return parse_pubkey(self._fetch_text(AUTHORITY_PATH), source="pool authority")

    def fetch_fee_payer_pubkey(self) -> Pubkey:
        return parse_pubkey(self._fetch_text(FEE_PAYER_PATH), source="pool fee payer")

    def fetch_latest_blockhash(self) -> Hash:
        return decode_blockhash(self._fetch_text(BLOCKHASH_PATH))

    def fetch_pool_state(self) -> PoolState:
        """Fetch authority, fee payer and blockhash, one request each."""
        authority = self.fetch_authority_pubkey()
        fee_payer = self.fetch_fee_payer_pubkey()
        blockhash = self.fetch_latest_blockhash()
        logger.debug(
            "Pool state: authority=%s fee_payer=%s blockhash=%s",
            authority,
            fee_payer,
            blockhash,
        )
        return PoolState(authority=authority, fee_payer=fee_payer, blockhash=blockhash)

    # -- timestamp poller ----------------------------------------------

    def get_timestamp(self) -> int:
        """
        Poll /timestamp until the server answers with a valid value.

        Retries every 3 seconds with no upper bound, so this blocks for as
        long as the server stays unhealthy.
        """

        def attempt() -> int:
            return parse_timestamp(self._get(TIMESTAMP_PATH).text)

        def announce(exc: BaseException, delay: float) -> None:
            if isinstance(exc, ServerStatusError):
                logger.warning("Server restarting, trying again in %d seconds...", delay)
            else:
                logger.warning("Unable to retrieve timestamp, retrying in %d seconds...", delay)

        return call_with_retry(
            attempt,
            RetryPolicy.forever(TIMESTAMP_RETRY_SECONDS),
            retry_on=(TransportError, MalformedResponseError),
            sleep=self.sleep,
            describe=f"GET {TIMESTAMP_PATH}",
            on_retry=announce,
        )

    # -- submission ----------------------------------------------------

    def submit_unstake_boost(
        self, staker: Pubkey, mint: str, amount: int, encoded_tx: str
    ) -> SubmissionResult:
        """
        POST the base64 transaction to /unstake-boost.

        The query restates staker, mint and base-unit amount so the pool
        can check them against the transaction body. Never retried.
        """
        params = {"pubkey": str(staker), "mint": mint, "amount": str(amount)}
        logger.debug("POST %s%s params=%s", self.base_url, UNSTAKE_BOOST_PATH, params)
        try:
            response = self._client.post(UNSTAKE_BOOST_PATH, params=params, content=encoded_tx)
        except httpx.HTTPError as exc:
            logger.warning("POST %s failed: %s", UNSTAKE_BOOST_PATH, exc)
            return TransientFailure(str(exc))

        result = classify_reply(response.content)
        logger.debug("Pool replied HTTP %d -> %s", response.status_code, result)
        return result
