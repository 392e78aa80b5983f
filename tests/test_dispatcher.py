import asyncio

import pytest

from cmd402.config import NetworkConfig
from cmd402.dispatcher import CommandDispatcher, DispatchState, parse_keyword
from cmd402.ledger import LedgerFault, Receipt, SubmissionHandle
from cmd402.mint import MintOrchestrator, MintPolicy
from cmd402.transcript import CommandHistory, LineKind, Transcript, welcome_banner
from cmd402.wallet import RPCWalletProvider, WalletError, WalletProvider, WalletSession

HOLDER = "0x1234567890abcdef1234567890abcdef1234abcd"
CLAIM_HASH = "0x" + "12345678" + "00" * 24 + "abcdef12"


class StubWallet(WalletProvider):
    def __init__(self, session=None, error=None) -> None:
        super().__init__()
        self.next_session = session or WalletSession(address=HOLDER, chain_id=8453)
        self.error = error
        self.connect_calls = 0

    async def connect(self):
        self.connect_calls += 1
        if self.error:
            raise self.error
        self._publish(self.next_session)
        return self.next_session


class StubLedger:
    def __init__(self) -> None:
        self.balance = 0
        self.native = 0
        self.items = 0
        self.allowance = 0
        self.item_error = None
        self.gate = None
        self.on_balance = None
        self.calls = []

    async def get_fungible_balance(self, holder, token=None):
        self.calls.append("balance")
        if self.gate is not None:
            await self.gate.wait()
        if self.on_balance is not None:
            self.on_balance()
        return self.balance

    async def get_native_balance(self, holder):
        self.calls.append("native")
        return self.native

    async def get_item_balance(self, holder, token_id):
        self.calls.append("items")
        if self.item_error:
            raise self.item_error
        return self.items

    async def get_spend_authorization(self, holder, spender, token=None):
        self.calls.append("allowance")
        return self.allowance

    async def set_spend_authorization(self, holder, spender, amount, token=None):
        self.calls.append("approve")
        return SubmissionHandle("0x" + "aa" * 32, "approve")

    async def submit_payment_claim(self, *args, **kwargs):
        self.calls.append("claim")
        return SubmissionHandle(CLAIM_HASH, "claim")

    async def await_confirmation(self, handle, timeout=None):
        self.calls.append("confirm")
        return Receipt(tx_hash=handle.tx_hash, status=1)


def _dispatcher(wallet=None, ledger=None) -> CommandDispatcher:
    config = NetworkConfig(rpc_url="http://node")
    wallet = wallet or StubWallet()
    ledger = ledger or StubLedger()
    orchestrator = MintOrchestrator(
        ledger, MintPolicy.from_config(config), session_probe=wallet.refresh
    )
    return CommandDispatcher(
        Transcript(welcome_banner(config)), CommandHistory(), wallet, ledger, orchestrator, config
    )


def _new_lines(dispatcher: CommandDispatcher):
    return dispatcher.transcript.lines[dispatcher.transcript.banner_size :]


def _new_texts(dispatcher: CommandDispatcher):
    return [line.text for line in _new_lines(dispatcher)]


async def _connected_dispatcher(ledger=None) -> CommandDispatcher:
    wallet = StubWallet()
    await wallet.connect()
    return _dispatcher(wallet, ledger)


def test_parse_keyword() -> None:
    assert parse_keyword("  MiNt  now please") == ("mint", ["now", "please"])
    assert parse_keyword("   ") == ("", [])


def test_keywords_match_help_catalogue() -> None:
    dispatcher = _dispatcher()

    assert dispatcher.keywords == ("connect", "mint", "balance", "nfts", "clear", "help")
    assert [keyword for keyword, _ in dispatcher.help_catalogue()] == list(dispatcher.keywords)


@pytest.mark.asyncio
async def test_balance_without_wallet_reports_not_connected() -> None:
    ledger = StubLedger()
    dispatcher = _dispatcher(ledger=ledger)

    assert await dispatcher.submit("balance") is True

    lines = _new_lines(dispatcher)
    assert [line.text for line in lines] == [
        "> balance",
        "",
        "Wallet not connected. Run 'connect' first.",
        "",
    ]
    assert [line.kind for line in lines] == [
        LineKind.COMMAND,
        LineKind.OUTPUT,
        LineKind.ERROR,
        LineKind.OUTPUT,
    ]
    assert ledger.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("command", ["mint", "nfts"])
async def test_wallet_commands_require_connection(command: str) -> None:
    ledger = StubLedger()
    dispatcher = _dispatcher(ledger=ledger)

    await dispatcher.submit(command)

    assert "Wallet not connected. Run 'connect' first." in _new_texts(dispatcher)
    assert ledger.calls == []


@pytest.mark.asyncio
async def test_unknown_command() -> None:
    dispatcher = _dispatcher()

    await dispatcher.submit("  FOO bar ")

    lines = _new_lines(dispatcher)
    assert [line.text for line in lines] == [
        "> FOO bar",
        "Command not found: foo",
        "Type 'help' for available commands",
    ]
    assert lines[1].kind is LineKind.ERROR
    assert dispatcher.history.entries == ("FOO bar",)


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["", "   ", "\t\n"])
async def test_blank_input_is_ignored(raw: str) -> None:
    dispatcher = _dispatcher()
    before = dispatcher.transcript.lines

    assert await dispatcher.submit(raw) is False

    assert dispatcher.transcript.lines == before
    assert len(dispatcher.history) == 0


@pytest.mark.asyncio
async def test_help_lists_commands_case_insensitively() -> None:
    dispatcher = _dispatcher()

    await dispatcher.submit("HeLp")

    assert _new_texts(dispatcher) == [
        "> HeLp",
        "",
        "Available commands:",
        "  connect    - Connect your wallet to Base chain",
        "  mint       - Mint a new NFT (requires USDC payment)",
        "  balance    - Check your USDC and ETH balances",
        "  nfts       - Display your NFT collection",
        "  clear      - Clear terminal screen",
        "  help       - Show this help message",
        "",
    ]


@pytest.mark.asyncio
async def test_connect_then_already_connected() -> None:
    wallet = StubWallet()
    dispatcher = _dispatcher(wallet)

    await dispatcher.submit("connect")
    await dispatcher.submit("connect")

    assert _new_texts(dispatcher) == [
        "> connect",
        "",
        "Initializing wallet connection...",
        "Please approve the connection in your wallet",
        "✓ Wallet connected successfully",
        "✓ Base Chain active",
        "",
        "> connect",
        "",
        "Already connected: 0x1234...abcd",
        "Chain ID: 8453 (Base)",
        "",
    ]
    assert wallet.connect_calls == 1


@pytest.mark.asyncio
async def test_connect_failure_is_reported() -> None:
    dispatcher = _dispatcher(StubWallet(error=WalletError("User rejected the request.")))

    await dispatcher.submit("connect")

    lines = _new_lines(dispatcher)
    assert lines[-2].text == "Connection failed: User rejected the request."
    assert lines[-2].kind is LineKind.ERROR
    assert dispatcher.state is DispatchState.IDLE


@pytest.mark.asyncio
async def test_balance_is_formatted_and_repeatable() -> None:
    ledger = StubLedger()
    ledger.balance = 1_239_999
    ledger.native = 10**17 + 99_999_999_999_999
    dispatcher = await _connected_dispatcher(ledger)

    await dispatcher.submit("balance")
    first = _new_texts(dispatcher)
    await dispatcher.submit("balance")
    second = _new_texts(dispatcher)[len(first) :]

    assert first == [
        "> balance",
        "",
        "Fetching balances...",
        "",
        "USDC Balance: 1.23 USDC",
        "ETH Balance:  0.1999 ETH",
        "",
    ]
    assert second == first


@pytest.mark.asyncio
async def test_balance_stops_when_wallet_disconnects_mid_command() -> None:
    wallet = StubWallet()
    await wallet.connect()
    ledger = StubLedger()
    ledger.on_balance = lambda: wallet._publish(None)
    dispatcher = _dispatcher(wallet, ledger)

    await dispatcher.submit("balance")

    assert "Wallet not connected. Run 'connect' first." in _new_texts(dispatcher)
    assert "native" not in ledger.calls


class AccountsRPC:
    def __init__(self) -> None:
        self.accounts = [HOLDER]

    def eth_requestAccounts(self):
        return list(self.accounts)

    def eth_accounts(self):
        return list(self.accounts)

    def eth_chainId(self):
        return 8453


@pytest.mark.asyncio
async def test_balance_notices_accounts_removed_by_the_wallet() -> None:
    rpc = AccountsRPC()
    wallet = RPCWalletProvider(rpc, NetworkConfig(rpc_url="http://node"))
    await wallet.connect()
    ledger = StubLedger()
    ledger.on_balance = lambda: setattr(rpc, "accounts", [])
    dispatcher = _dispatcher(wallet, ledger)

    await dispatcher.submit("balance")

    assert "Wallet not connected. Run 'connect' first." in _new_texts(dispatcher)
    assert "native" not in ledger.calls
    assert wallet.current() is None


@pytest.mark.asyncio
async def test_nfts_lists_holdings() -> None:
    ledger = StubLedger()
    dispatcher = await _connected_dispatcher(ledger)

    await dispatcher.submit("nfts")
    ledger.items = 3
    await dispatcher.submit("nfts")

    texts = _new_texts(dispatcher)
    assert "No NFTs found in your wallet" in texts
    assert texts[-3:] == ["Found 1 NFT:", "  1. NFT #0 (x3) (Token #0)", ""]


@pytest.mark.asyncio
async def test_nfts_read_failure_is_reported() -> None:
    ledger = StubLedger()
    ledger.item_error = LedgerFault("nonce too low")
    dispatcher = await _connected_dispatcher(ledger)

    await dispatcher.submit("nfts")

    assert "Failed to load NFTs: Unexpected error: nonce too low" in _new_texts(dispatcher)


@pytest.mark.asyncio
async def test_mint_success_reports_short_hash() -> None:
    ledger = StubLedger()
    ledger.balance = 1_000_000
    dispatcher = await _connected_dispatcher(ledger)

    await dispatcher.submit("mint")

    texts = _new_texts(dispatcher)
    assert texts[:4] == ["> mint", "", "Preparing to mint NFT...", "This requires USDC payment approval"]
    assert "Checking USDC balance..." in texts
    assert texts[-3:] == ["✓ NFT minted successfully", "Transaction: 0x12345678...abcdef12", ""]
    assert ledger.calls.count("claim") == 1


@pytest.mark.asyncio
async def test_mint_with_insufficient_funds() -> None:
    ledger = StubLedger()
    dispatcher = await _connected_dispatcher(ledger)

    await dispatcher.submit("mint")

    lines = _new_lines(dispatcher)
    assert lines[-2].text == "Mint failed: Insufficient funds: need 1 USDC, have 0 USDC (short 1 USDC)"
    assert lines[-2].kind is LineKind.ERROR
    assert "approve" not in ledger.calls
    assert "claim" not in ledger.calls


@pytest.mark.asyncio
async def test_clear_resets_transcript_but_keeps_history() -> None:
    dispatcher = _dispatcher()
    banner = dispatcher.transcript.texts()
    await dispatcher.submit("help")

    await dispatcher.submit("clear")

    assert dispatcher.transcript.texts() == banner
    assert dispatcher.history.entries == ("help", "clear")


@pytest.mark.asyncio
async def test_only_one_command_runs_at_a_time() -> None:
    ledger = StubLedger()
    ledger.gate = asyncio.Event()
    dispatcher = await _connected_dispatcher(ledger)

    running = asyncio.ensure_future(dispatcher.submit("balance"))
    while "balance" not in ledger.calls:
        await asyncio.sleep(0)

    assert dispatcher.busy
    assert dispatcher.state is DispatchState.EXECUTING
    assert await dispatcher.submit("help") is False

    ledger.gate.set()
    assert await running is True
    assert dispatcher.state is DispatchState.IDLE
    assert dispatcher.history.entries == ("balance",)
    assert "> help" not in _new_texts(dispatcher)


@pytest.mark.asyncio
async def test_unexpected_failure_becomes_single_error_line() -> None:
    ledger = StubLedger()
    ledger.item_error = RuntimeError("boom")
    dispatcher = await _connected_dispatcher(ledger)

    await dispatcher.submit("nfts")

    errors = [line.text for line in _new_lines(dispatcher) if line.kind is LineKind.ERROR]
    assert errors == ["Error: boom"]
    assert dispatcher.state is DispatchState.IDLE
    assert await dispatcher.submit("help") is True
