"""CMD402 command console for token-gated NFT minting."""

from .config import ConfigurationError, NetworkConfig, load_network_config
from .dispatcher import CommandDispatcher, DispatchState
from .errors import ClassifiedError, ErrorCategory, classify_fault
from .ledger import ConfirmationTimeoutFault, LedgerFault, RemoteLedgerClient
from .mint import MintOrchestrator, MintPhase, MintPolicy
from .transcript import CommandHistory, LineKind, Transcript, TranscriptLine
from .wallet import RPCWalletProvider, WalletProvider, WalletSession

__all__ = [
    "ConfigurationError",
    "NetworkConfig",
    "load_network_config",
    "CommandDispatcher",
    "DispatchState",
    "ClassifiedError",
    "ErrorCategory",
    "classify_fault",
    "ConfirmationTimeoutFault",
    "LedgerFault",
    "RemoteLedgerClient",
    "MintOrchestrator",
    "MintPhase",
    "MintPolicy",
    "CommandHistory",
    "LineKind",
    "Transcript",
    "TranscriptLine",
    "RPCWalletProvider",
    "WalletProvider",
    "WalletSession",
]
