import pytest

from cmd402.config import CMD402_CLAIM_CONTRACT, NATIVE_TOKEN_ADDRESS, USDC_ON_BASE, NetworkConfig
from cmd402.errors import ClassifiedError, ErrorCategory
from cmd402.ledger import ClaimPrice, ConfirmationTimeoutFault, LedgerFault, Receipt, SubmissionHandle
from cmd402.mint import MintAttempt, MintOrchestrator, MintPhase, MintPolicy
from cmd402.wallet import RPCWalletProvider, WalletSession

HOLDER = "0x1111111111111111111111111111111111111111"
APPROVE_HASH = "0x" + "aa" * 32
CLAIM_HASH = "0x" + "cc" * 32


class StubLedger:
    def __init__(self, balance=0, allowance=0, claim_price=None) -> None:
        self.balance = balance
        self.allowance = allowance
        self.claim_price = claim_price
        self.calls = []
        self.approve_error = None
        self.claim_error = None
        self.confirm_errors = {}

    @property
    def writes(self):
        return [name for name, *_ in self.calls if name in {"approve", "claim"}]

    async def get_claim_price(self, token_id):
        self.calls.append(("get_claim_price", token_id))
        return self.claim_price

    async def get_fungible_balance(self, holder, token=None):
        self.calls.append(("balance", holder, token))
        return self.balance

    async def get_spend_authorization(self, holder, spender, token=None):
        self.calls.append(("allowance", holder, spender, token))
        return self.allowance

    async def set_spend_authorization(self, holder, spender, amount, token=None):
        self.calls.append(("approve", holder, spender, amount, token))
        if self.approve_error:
            raise self.approve_error
        return SubmissionHandle(APPROVE_HASH, "approve")

    async def submit_payment_claim(
        self, holder, receiver, item_id, quantity, currency, price_per_unit, proof, value=0
    ):
        self.calls.append(("claim", receiver, item_id, quantity, currency, price_per_unit, proof, value))
        if self.claim_error:
            raise self.claim_error
        return SubmissionHandle(CLAIM_HASH, "claim")

    async def await_confirmation(self, handle, timeout=None):
        self.calls.append(("confirm", handle.label))
        error = self.confirm_errors.get(handle.label)
        if error:
            raise error
        return Receipt(tx_hash=handle.tx_hash, status=1, block_number=1)


def _orchestrator(ledger, probe=None, **config_overrides) -> MintOrchestrator:
    config = NetworkConfig(rpc_url="http://node", **config_overrides)
    return MintOrchestrator(ledger, MintPolicy.from_config(config), session_probe=probe)


def _native_orchestrator(ledger) -> MintOrchestrator:
    return _orchestrator(ledger, currency_address=NATIVE_TOKEN_ADDRESS, price_per_unit=10**15)


SESSION = WalletSession(address=HOLDER, chain_id=8453)


async def _no_session():
    return None


class StubRPC:
    def __init__(self) -> None:
        self.accounts = [HOLDER]

    def eth_requestAccounts(self):
        return list(self.accounts)

    def eth_accounts(self):
        return list(self.accounts)

    def eth_chainId(self):
        return 8453


@pytest.mark.asyncio
async def test_insufficient_balance_fails_without_writes() -> None:
    ledger = StubLedger(balance=0)
    orchestrator = _orchestrator(ledger)

    with pytest.raises(ClassifiedError) as excinfo:
        await orchestrator.mint(SESSION)

    assert excinfo.value.category is ErrorCategory.INSUFFICIENT_FUNDS
    assert excinfo.value.human_message == "Insufficient funds: need 1 USDC, have 0 USDC (short 1 USDC)"
    assert ledger.writes == []
    assert [call[0] for call in ledger.calls] == ["balance"]
    assert orchestrator.last_attempt.phase is MintPhase.FAILED


@pytest.mark.asyncio
async def test_missing_allowance_approves_exact_amount_then_claims() -> None:
    ledger = StubLedger(balance=5_000_000, allowance=0)
    progress = []

    def record(phase, message):
        progress.append((phase, message))

    tx_hash = await _orchestrator(ledger).mint(SESSION, record)

    assert tx_hash == CLAIM_HASH
    assert [call[0] for call in ledger.calls] == [
        "balance",
        "allowance",
        "approve",
        "confirm",
        "claim",
        "confirm",
    ]
    approve = ledger.calls[2]
    assert approve[2] == CMD402_CLAIM_CONTRACT
    assert approve[3] == 1_000_000
    claim = ledger.calls[4]
    assert claim[1] == HOLDER
    assert claim[2:6] == (0, 1, USDC_ON_BASE, 1_000_000)
    assert claim[6].price_per_token == 1_000_000
    assert claim[6].proof == ()
    assert claim[7] == 0
    phases = [phase for phase, _ in progress]
    assert phases == sorted(phases)
    assert (MintPhase.AWAITING_APPROVAL_CONFIRMATION, "✓ Approval confirmed") in progress


@pytest.mark.asyncio
async def test_existing_allowance_skips_approval() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=1_000_000)
    progress = []
    orchestrator = _orchestrator(ledger)

    tx_hash = await orchestrator.mint(SESSION, lambda _phase, message: progress.append(message))

    assert tx_hash == CLAIM_HASH
    assert ledger.writes == ["claim"]
    assert "Existing approval covers the mint price" in progress
    assert orchestrator.last_attempt.phase is MintPhase.DONE
    assert orchestrator.last_attempt.current_allowance == 1_000_000


@pytest.mark.asyncio
async def test_not_connected_makes_no_remote_calls() -> None:
    ledger = StubLedger(balance=10**9, allowance=10**9)

    with pytest.raises(ClassifiedError) as excinfo:
        await _orchestrator(ledger).mint(None)

    assert excinfo.value.category is ErrorCategory.NOT_CONNECTED
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_rejected_approval_never_claims() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=0)
    ledger.approve_error = LedgerFault("User rejected the request.", code=4001)

    with pytest.raises(ClassifiedError) as excinfo:
        await _orchestrator(ledger).mint(SESSION)

    assert excinfo.value.category is ErrorCategory.USER_REJECTED
    assert isinstance(excinfo.value.__cause__, LedgerFault)
    assert ledger.writes == ["approve"]


@pytest.mark.asyncio
async def test_claim_timeout_is_not_resubmitted() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=1_000_000)
    ledger.confirm_errors["claim"] = ConfirmationTimeoutFault("claim not confirmed within 120s")

    with pytest.raises(ClassifiedError) as excinfo:
        await _orchestrator(ledger).mint(SESSION)

    assert excinfo.value.category is ErrorCategory.CONFIRMATION_TIMEOUT
    assert ledger.writes == ["claim"]


@pytest.mark.asyncio
async def test_approval_timeout_never_claims() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=0)
    ledger.confirm_errors["approve"] = ConfirmationTimeoutFault("approve not confirmed within 120s")
    orchestrator = _orchestrator(ledger)

    with pytest.raises(ClassifiedError) as excinfo:
        await orchestrator.mint(SESSION)

    assert excinfo.value.category is ErrorCategory.CONFIRMATION_TIMEOUT
    assert ledger.writes == ["approve"]
    assert orchestrator.last_attempt.phase is MintPhase.FAILED


@pytest.mark.asyncio
async def test_reverted_claim_reports_reason() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=1_000_000)
    ledger.confirm_errors["claim"] = LedgerFault("execution reverted: !Qty")

    with pytest.raises(ClassifiedError) as excinfo:
        await _orchestrator(ledger).mint(SESSION)

    assert excinfo.value.category is ErrorCategory.LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_session_vanishing_before_write_stops_mint() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=0)

    with pytest.raises(ClassifiedError) as excinfo:
        await _orchestrator(ledger, probe=_no_session).mint(SESSION)

    assert excinfo.value.category is ErrorCategory.NOT_CONNECTED
    assert "disconnected during mint" in excinfo.value.human_message
    assert ledger.writes == []


@pytest.mark.asyncio
async def test_session_switching_account_stops_mint() -> None:
    ledger = StubLedger(balance=1_000_000, allowance=1_000_000)
    other = WalletSession(address="0x" + "22" * 20, chain_id=8453)

    async def switched():
        return other

    with pytest.raises(ClassifiedError):
        await _orchestrator(ledger, probe=switched).mint(SESSION)

    assert ledger.writes == []


@pytest.mark.asyncio
async def test_wallet_accounts_emptied_mid_mint_stops_writes() -> None:
    rpc = StubRPC()
    wallet = RPCWalletProvider(rpc, NetworkConfig(rpc_url="http://node"))
    session = await wallet.connect()
    ledger = StubLedger(balance=1_000_000, allowance=0)
    read_allowance = ledger.get_spend_authorization

    async def allowance_then_disconnect(*args, **kwargs):
        rpc.accounts = []
        return await read_allowance(*args, **kwargs)

    ledger.get_spend_authorization = allowance_then_disconnect

    with pytest.raises(ClassifiedError) as excinfo:
        await _orchestrator(ledger, probe=wallet.refresh).mint(session)

    assert excinfo.value.category is ErrorCategory.NOT_CONNECTED
    assert ledger.writes == []
    assert wallet.current() is None


@pytest.mark.asyncio
async def test_claim_condition_price_source() -> None:
    ledger = StubLedger(
        balance=3_000_000,
        allowance=3_000_000,
        claim_price=ClaimPrice(price_per_unit=1_500_000, currency=USDC_ON_BASE, condition_id=4),
    )

    await _orchestrator(ledger, price_source="claim-condition", mint_quantity=2).mint(SESSION)

    assert ledger.calls[0] == ("get_claim_price", 0)
    claim = [call for call in ledger.calls if call[0] == "claim"][0]
    assert claim[3] == 2
    assert claim[5] == 1_500_000


@pytest.mark.asyncio
async def test_native_currency_skips_allowance_and_sends_value() -> None:
    ledger = StubLedger(balance=10**16)

    await _native_orchestrator(ledger).mint(SESSION)

    assert [call[0] for call in ledger.calls] == ["balance", "claim", "confirm"]
    claim = ledger.calls[1]
    assert claim[4] == NATIVE_TOKEN_ADDRESS
    assert claim[7] == 10**15


@pytest.mark.asyncio
async def test_native_currency_shortfall_message() -> None:
    ledger = StubLedger(balance=0)

    with pytest.raises(ClassifiedError) as excinfo:
        await _native_orchestrator(ledger).mint(SESSION)

    assert excinfo.value.human_message == (
        "Insufficient funds: need 0.001 ETH, have 0 ETH (short 0.001 ETH)"
    )


def test_mint_attempt_only_moves_forward() -> None:
    attempt = MintAttempt(required_amount=1)
    attempt.advance(MintPhase.CHECKING_ALLOWANCE)
    attempt.advance(MintPhase.CLAIMING)

    with pytest.raises(ValueError):
        attempt.advance(MintPhase.APPROVING)

    attempt.advance(MintPhase.DONE)
    assert attempt.finished
    with pytest.raises(ValueError):
        attempt.advance(MintPhase.FAILED)
    attempt.fail()
    assert attempt.phase is MintPhase.DONE


def test_policy_required_amount() -> None:
    policy = MintPolicy.from_config(NetworkConfig(rpc_url="http://node", mint_quantity=3))

    assert policy.required_amount == 3_000_000
    assert policy.claim_contract == CMD402_CLAIM_CONTRACT
