import logging
from typing import Any, Dict, Iterable, List, Optional

from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import LogTopicError, MismatchedABI

logger = logging.getLogger(__name__)

# Basic ERC20 ABI for token operations
ERC20_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "decimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "owner", "type": "address"},
            {"internalType": "address", "name": "spender", "type": "address"}
        ],
        "name": "allowance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "spender", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

AD_BID_PLACED_EVENT = {
    "anonymous": False,
    "inputs": [
        {"indexed": True, "internalType": "address", "name": "bidder", "type": "address"},
        {"indexed": False, "internalType": "uint256", "name": "bidAmount", "type": "uint256"},
        {"indexed": False, "internalType": "string", "name": "imageUrl", "type": "string"},
        {"indexed": False, "internalType": "string", "name": "altText", "type": "string"},
        {"indexed": False, "internalType": "string", "name": "hrefUrl", "type": "string"}
    ],
    "name": "AdBidPlaced",
    "type": "event"
}

AD_AUCTION_ABI = [
    {
        "inputs": [],
        "name": "getCurrentAd",
        "outputs": [
            {"internalType": "address", "name": "bidder", "type": "address"},
            {"internalType": "uint256", "name": "bidAmount", "type": "uint256"},
            {"internalType": "string", "name": "imageUrl", "type": "string"},
            {"internalType": "string", "name": "altText", "type": "string"},
            {"internalType": "string", "name": "hrefUrl", "type": "string"},
            {"internalType": "uint256", "name": "timestamp", "type": "uint256"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getMinBidAmount",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "string", "name": "imageUrl", "type": "string"},
            {"internalType": "string", "name": "altText", "type": "string"},
            {"internalType": "string", "name": "hrefUrl", "type": "string"},
            {"internalType": "uint256", "name": "bidAmount", "type": "uint256"}
        ],
        "name": "placeBid",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getERC20TokenAddress",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getTokenSymbol",
        "outputs": [{"internalType": "string", "name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getTokenDecimals",
        "outputs": [{"internalType": "uint8", "name": "", "type": "uint8"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "getBalance",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    AD_BID_PLACED_EVENT,
]

# Encoding and decoding never touch the network, so an offline instance is enough.
_codec = Web3()
_bid_events = _codec.eth.contract(abi=[AD_BID_PLACED_EVENT])


def encode_call(abi: List[Dict[str, Any]], function_name: str, args: Iterable[Any] = ()) -> str:
    """Return 0x-prefixed call data for ``function_name(*args)``."""
    contract = _codec.eth.contract(abi=abi)
    return contract.encode_abi(function_name, args=list(args))


def decode_bid_event(log: Any) -> Optional[Dict[str, Any]]:
    """
    Decode a single log as AdBidPlaced.
    Returns None for logs emitted by other events (token Transfer, Approval, ...).
    """
    try:
        event = _bid_events.events.AdBidPlaced().process_log(log)
    except MismatchedABI:
        return None
    except (LogTopicError, DecodingError, ValueError, KeyError) as e:
        logger.warning(f"Failed to decode AdBidPlaced event: {str(e)}")
        return None
    return dict(event["args"])


def find_bid_event(logs: Iterable[Any]) -> Optional[Dict[str, Any]]:
    for log in logs:
        decoded = decode_bid_event(log)
        if decoded is not None:
            return decoded
    return None
