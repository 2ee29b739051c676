"""
undelegate_boost.py

Unstake (undelegate) boost tokens from the delegation pool.

Usage examples:

  # Unstake 10 boost tokens
  pool-boost undelegate-boost --mint <BOOST_MINT> --amount 10

  # Unstake 5.5 boost tokens from a pool served over plain http
  pool-boost --url 127.0.0.1:3000 --unsecure undelegate-boost --mint <BOOST_MINT> --amount 5.5

Flow: confirm -> fetch pool state -> build and partially sign -> POST to pool.
A "SUCCESS" reply means the pool accepted the request for co-signing; this
tool does not watch the chain for the final settlement.
"""

import argparse
import logging
from typing import Callable, Optional

from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from boost_tx import DELEGATION_PROGRAM_ID, build_unboost_intent, parse_mint, positive_base_units
from pool_api import PoolApi, Rejected, Success, SubmissionResult, TransientFailure
from pool_console import console

logger = logging.getLogger(__name__)

PromptFn = Callable[[str], str]


def positive_amount(value: str) -> float:
    try:
        amount = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}")
    if not amount > 0:
        raise argparse.ArgumentTypeError("amount must be a positive number")
    return amount


def add_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--amount",
        required=True,
        type=positive_amount,
        metavar="AMOUNT",
        help="Amount of boost token to unstake.",
    )
    parser.add_argument(
        "--mint",
        required=True,
        metavar="MINT",
        help="Mint address of the boost token.",
    )


# ------------------------------
# Confirmation
# ------------------------------

def ask(question: str) -> str:
    return Prompt.ask(question, console=console)


def confirm_unboost(amount: float, prompt: PromptFn = ask) -> bool:
    """
    Ask the user to confirm.

    Blank, "y" or "Y" proceeds. "esc" or any other answer cancels.
    Ctrl-C at the prompt cancels the operation; any other prompt failure
    (e.g. EOF) is reported as invalid input.
    """
    question = (
        f"[error]  Are you sure you want to undelegate {amount} boost tokens? "
        f"(Y/n or 'esc' to cancel)[/error]"
    )
    try:
        answer = prompt(question)
    except KeyboardInterrupt:
        console.print("[warning]  Unboosting operation canceled.[/warning]")
        return False
    except Exception as e:
        logger.debug("Prompt failed: %r", e)
        console.print("[error]  Invalid input. Unboosting canceled.[/error]")
        return False

    answer = answer.strip()
    if answer.lower() == "esc":
        console.print("[warning]  Unboosting canceled.[/warning]")
        return False
    if answer == "" or answer.lower() == "y":
        return True

    console.print("[warning]  Unboosting canceled.[/warning]")
    return False


# ------------------------------
# Result reporting
# ------------------------------

def report_result(result: SubmissionResult) -> None:
    if isinstance(result, Success):
        console.print("[success]  Successfully unstaked boost![/success]")
        console.print(
            "[muted]  The pool accepted the transaction and will co-sign and broadcast it.[/muted]"
        )
    elif isinstance(result, Rejected):
        console.print(f"[error]  Transaction failed: {escape(result.reason)}[/error]")
    elif isinstance(result, TransientFailure):
        console.print("[error]  Transaction failed, please wait and try again.[/error]")
    else:
        raise TypeError(f"Unexpected submission result: {result!r}")


# ------------------------------
# Action
# ------------------------------

def run(
    amount: float,
    mint: str,
    keypair: Keypair,
    api: PoolApi,
    prompt: PromptFn = ask,
    program_id: Pubkey = DELEGATION_PROGRAM_ID,
) -> Optional[SubmissionResult]:
    """
    Undelegate `amount` boost tokens of `mint` for `keypair`.

    Amount and mint are checked before the prompt. Returns None when the
    user cancels, otherwise the pool's verdict. FetchError,
    InvalidAmountError and InvalidMintError propagate to the caller.
    """
    base_units = positive_base_units(amount)
    parse_mint(mint)

    console.print(
        Panel.fit(
            f"Staker: [highlight]{keypair.pubkey()}[/highlight]\n"
            f"Mint:   [highlight]{escape(mint)}[/highlight]\n"
            f"Amount: [highlight]{amount}[/highlight]\n"
            f"Pool:   [highlight]{api.base_url}[/highlight]",
            title="Undelegate Boost",
            border_style="warning",
        )
    )

    if not confirm_unboost(amount, prompt):
        return None

    state = api.fetch_pool_state()
    intent = build_unboost_intent(keypair, mint, base_units, state, program_id)
    logger.info("Submitting unstake of %d base units of %s", intent.amount, intent.mint)

    result = api.submit_unstake_boost(intent.staker, intent.mint, intent.amount, intent.encoded)
    report_result(result)
    return result
