"""Token-gated mint orchestration.

One call to :meth:`MintOrchestrator.mint` walks the fixed sequence

    balance check -> allowance check -> (approve -> wait) -> claim -> wait

against the :class:`~cmd402.ledger.RemoteLedgerClient`. Every write is
preceded by a read proving it is still necessary, and nothing is resubmitted
automatically: an invocation sends at most one approval and at most one claim.
Whatever goes wrong leaves this module as a single
:class:`~cmd402.errors.ClassifiedError`.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .config import NATIVE_TOKEN_ADDRESS, NetworkConfig
from .errors import ClassifiedError, ErrorCategory, classify_fault
from .ledger import AllowlistProof, RemoteLedgerClient
from .units import format_units
from .wallet import WalletSession, is_connected

logger = logging.getLogger(__name__)


class MintPhase(enum.IntEnum):
    CHECKING_BALANCE = 1
    CHECKING_ALLOWANCE = 2
    APPROVING = 3
    AWAITING_APPROVAL_CONFIRMATION = 4
    CLAIMING = 5
    DONE = 6
    FAILED = 7


ProgressCallback = Callable[[MintPhase, str], None]
SessionProbe = Callable[[], Awaitable[Optional[WalletSession]]]


@dataclass
class MintAttempt:
    """Ephemeral state of one mint invocation; phases only move forward."""

    required_amount: int
    current_balance: int | None = None
    current_allowance: int | None = None
    phase: MintPhase = MintPhase.CHECKING_BALANCE

    @property
    def finished(self) -> bool:
        return self.phase in (MintPhase.DONE, MintPhase.FAILED)

    def advance(self, phase: MintPhase) -> None:
        if self.finished:
            raise ValueError(f"Mint attempt already finished in {self.phase.name}")
        if phase != MintPhase.FAILED and phase <= self.phase:
            raise ValueError(f"Cannot move mint attempt from {self.phase.name} back to {phase.name}")
        self.phase = phase

    def fail(self) -> None:
        if not self.finished:
            self.phase = MintPhase.FAILED


@dataclass(frozen=True)
class MintPolicy:
    claim_contract: str
    currency: str
    currency_symbol: str
    currency_decimals: int
    token_id: int
    quantity: int
    price_per_unit: int
    price_source: str = "config"
    native_symbol: str = "ETH"
    native_decimals: int = 18

    @classmethod
    def from_config(cls, config: NetworkConfig) -> "MintPolicy":
        return cls(
            claim_contract=config.claim_contract,
            currency=config.currency_address,
            currency_symbol=config.currency_symbol,
            currency_decimals=config.currency_decimals,
            token_id=config.token_id,
            quantity=config.mint_quantity,
            price_per_unit=config.price_per_unit,
            price_source=config.price_source,
            native_symbol=config.native_symbol,
            native_decimals=config.native_decimals,
        )

    @property
    def required_amount(self) -> int:
        return self.price_per_unit * self.quantity


def _is_native(currency: str) -> bool:
    return currency.lower() == NATIVE_TOKEN_ADDRESS.lower()


class MintOrchestrator:
    def __init__(
        self,
        ledger: RemoteLedgerClient,
        policy: MintPolicy,
        session_probe: SessionProbe | None = None,
    ) -> None:
        self.ledger = ledger
        self.policy = policy
        self.session_probe = session_probe
        self.last_attempt: MintAttempt | None = None

    def _symbol(self, currency: str) -> str:
        if _is_native(currency):
            return self.policy.native_symbol
        if currency.lower() == self.policy.currency.lower():
            return self.policy.currency_symbol
        return currency

    def _describe(self, amount: int, currency: str) -> str:
        if _is_native(currency):
            return f"{format_units(amount, self.policy.native_decimals)} {self.policy.native_symbol}"
        if currency.lower() == self.policy.currency.lower():
            return f"{format_units(amount, self.policy.currency_decimals)} {self.policy.currency_symbol}"
        return f"{amount} units of {currency}"

    async def _require_session(self, holder: WalletSession) -> None:
        # The wallet may disconnect while we were suspended on a remote call.
        if self.session_probe is None:
            return
        current = await self.session_probe()
        if not is_connected(current) or current.address.lower() != holder.address.lower():
            raise ClassifiedError.precondition(
                ErrorCategory.NOT_CONNECTED,
                "Wallet disconnected during mint. Run 'connect' and try again.",
            )

    async def _resolve_price(self) -> tuple[int, str]:
        if self.policy.price_source == "claim-condition":
            claim_price = await self.ledger.get_claim_price(self.policy.token_id)
            logger.info(
                "Claim condition %s prices token %s at %s",
                claim_price.condition_id,
                self.policy.token_id,
                claim_price.price_per_unit,
            )
            return claim_price.price_per_unit, claim_price.currency
        return self.policy.price_per_unit, self.policy.currency

    async def mint(
        self, holder: WalletSession | None, on_progress: ProgressCallback | None = None
    ) -> str:
        """Mint for ``holder`` and return the claim transaction hash."""

        attempt = MintAttempt(required_amount=self.policy.required_amount)
        self.last_attempt = attempt

        def report(message: str) -> None:
            logger.debug("mint[%s] %s", attempt.phase.name, message)
            if on_progress is not None:
                on_progress(attempt.phase, message)

        if not is_connected(holder):
            attempt.fail()
            raise ClassifiedError.precondition(ErrorCategory.NOT_CONNECTED)

        try:
            return await self._run(attempt, holder, report)
        except ClassifiedError as exc:
            attempt.fail()
            logger.warning("Mint failed (%s): %s", exc.category.value, exc.human_message)
            raise
        except Exception as exc:
            attempt.fail()
            classified = classify_fault(exc)
            logger.warning(
                "Mint failed (%s): %s",
                classified.category.value,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise classified from exc

    async def _run(
        self, attempt: MintAttempt, holder: WalletSession, report: Callable[[str], None]
    ) -> str:
        address = holder.address
        price, currency = await self._resolve_price()
        required = price * self.policy.quantity
        attempt.required_amount = required

        report(f"Checking {self._symbol(currency)} balance...")
        balance = await self.ledger.get_fungible_balance(address, currency)
        attempt.current_balance = balance
        if balance < required:
            raise ClassifiedError.precondition(
                ErrorCategory.INSUFFICIENT_FUNDS,
                f"Insufficient funds: need {self._describe(required, currency)}, "
                f"have {self._describe(balance, currency)} "
                f"(short {self._describe(required - balance, currency)})",
            )

        if not _is_native(currency):
            attempt.advance(MintPhase.CHECKING_ALLOWANCE)
            report("Checking spend approval...")
            allowance = await self.ledger.get_spend_authorization(
                address, self.policy.claim_contract, currency
            )
            attempt.current_allowance = allowance
            if allowance >= required:
                report("Existing approval covers the mint price")
            else:
                await self._require_session(holder)
                attempt.advance(MintPhase.APPROVING)
                report(f"Approving {self._describe(required, currency)} for the mint contract...")
                approval = await self.ledger.set_spend_authorization(
                    address, self.policy.claim_contract, required, currency
                )
                attempt.advance(MintPhase.AWAITING_APPROVAL_CONFIRMATION)
                report("Waiting for approval confirmation...")
                await self.ledger.await_confirmation(approval)
                report("✓ Approval confirmed")

        await self._require_session(holder)
        attempt.advance(MintPhase.CLAIMING)
        report("Submitting claim transaction...")
        claim = await self.ledger.submit_payment_claim(
            address,
            address,
            self.policy.token_id,
            self.policy.quantity,
            currency,
            price,
            AllowlistProof(price_per_token=price, currency=currency),
            value=required if _is_native(currency) else 0,
        )
        report("Waiting for claim confirmation...")
        receipt = await self.ledger.await_confirmation(claim)
        attempt.advance(MintPhase.DONE)
        logger.info("Mint confirmed for %s: %s", address, claim.tx_hash)
        return receipt.tx_hash or claim.tx_hash
