"""
Vanity address miner.

Generates random keys until the checksummed address starts with ``prefix`` and
ends with ``suffix``. Work is spread over worker processes that share a stop
event and an attempts counter.
"""
import logging
import multiprocessing
import queue
import re
import signal
import time
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from rich.console import Console
from web3 import Web3

logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 5.0
# Workers publish their attempt counts in batches to keep the shared lock cold.
COUNTER_BATCH = 256

_HEX = re.compile(r"^[a-fA-F0-9]*$")


@dataclass(frozen=True)
class VanityResult:
    address: str
    private_key: str
    worker_id: int
    attempts: int


def validate_pattern(prefix: str, suffix: str) -> None:
    body = prefix[2:] if prefix.lower().startswith("0x") else prefix
    if not _HEX.fullmatch(body) or not _HEX.fullmatch(suffix):
        raise ValueError("prefix and suffix must be hex characters")
    if len(body) + len(suffix) > 40:
        raise ValueError("prefix and suffix are longer than an address")


def is_vanity_address(address: str, prefix: str, suffix: str, case_sensitive: bool = True) -> bool:
    """
    Case-sensitive matching compares against the EIP-55 checksum form, so
    ``0xE7C3`` and ``0xe7c3`` are different targets.
    """
    if not prefix.lower().startswith("0x"):
        prefix = "0x" + prefix
    if len(address) < len(prefix) + len(suffix):
        return False
    if not case_sensitive:
        address, prefix, suffix = address.lower(), prefix.lower(), suffix.lower()
    return address.startswith(prefix) and address.endswith(suffix)


def mine_address(
    prefix: str, suffix: str, case_sensitive: bool = True, max_attempts: Optional[int] = None
) -> Optional[VanityResult]:
    """Single process search; returns None once ``max_attempts`` keys were tried."""
    attempts = 0
    while max_attempts is None or attempts < max_attempts:
        attempts += 1
        account = Account.create()
        if is_vanity_address(account.address, prefix, suffix, case_sensitive):
            return VanityResult(account.address, Web3.to_hex(account.key), 0, attempts)
    return None


def _worker(worker_id, prefix, suffix, case_sensitive, budget, stop_event, counter, results):
    # Ctrl+C is handled by the parent, which sets the stop event.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    pending = 0
    tried = 0
    while not stop_event.is_set() and (budget is None or tried < budget):
        account = Account.create()
        tried += 1
        pending += 1
        if is_vanity_address(account.address, prefix, suffix, case_sensitive):
            with counter.get_lock():
                counter.value += pending
                total = counter.value
            results.put(VanityResult(account.address, Web3.to_hex(account.key), worker_id, total))
            stop_event.set()
            return
        if pending >= COUNTER_BATCH:
            with counter.get_lock():
                counter.value += pending
            pending = 0
    with counter.get_lock():
        counter.value += pending


class ParallelMiner:
    def __init__(
        self,
        prefix: str,
        suffix: str,
        workers: int = 4,
        case_sensitive: bool = True,
        max_attempts: Optional[int] = None,
    ):
        validate_pattern(prefix, suffix)
        self.prefix = prefix
        self.suffix = suffix
        self.workers = max(1, workers)
        self.case_sensitive = case_sensitive
        self.max_attempts = max_attempts
        self.started_at: Optional[float] = None
        self._stop = multiprocessing.Event()
        self._counter = multiprocessing.Value("q", 0)
        self._results = multiprocessing.Queue()
        self._processes = []

    @property
    def attempts(self) -> int:
        return self._counter.value

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at if self.started_at else 0.0

    @property
    def rate(self) -> float:
        elapsed = self.elapsed
        return self.attempts / elapsed if elapsed > 0 else 0.0

    def start(self) -> None:
        budget = None
        if self.max_attempts is not None:
            budget = -(-self.max_attempts // self.workers)
        self.started_at = time.monotonic()
        for worker_id in range(self.workers):
            process = multiprocessing.Process(
                target=_worker,
                args=(
                    worker_id,
                    self.prefix,
                    self.suffix,
                    self.case_sensitive,
                    budget,
                    self._stop,
                    self._counter,
                    self._results,
                ),
                daemon=True,
            )
            process.start()
            self._processes.append(process)

    def is_running(self) -> bool:
        return any(process.is_alive() for process in self._processes)

    def poll(self, timeout: float) -> Optional[VanityResult]:
        try:
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None

    def stop(self) -> None:
        self._stop.set()
        for process in self._processes:
            process.join(timeout=5)
            if process.is_alive():
                process.terminate()


def _summary(console: Console, title: str, miner: ParallelMiner) -> None:
    console.print(f"\n[bold]=== {title} ===[/bold]")
    console.print(f"Total attempts: {miner.attempts:,}")
    console.print(f"Elapsed: {miner.elapsed:.1f}s")
    console.print(f"Speed: {miner.rate:.2f} attempts/s")


def run_vanity(
    prefix: str,
    suffix: str,
    workers: int = 4,
    case_sensitive: bool = True,
    max_attempts: Optional[int] = None,
    console: Optional[Console] = None,
) -> Optional[VanityResult]:
    """Mine with progress output every few seconds until a match, Ctrl+C or the attempt limit."""
    console = console or Console()
    miner = ParallelMiner(prefix, suffix, workers, case_sensitive, max_attempts)

    console.print("[bold]=== Vanity address miner ===[/bold]")
    console.print(f"Pattern: {prefix}…{suffix} ({'case-sensitive' if case_sensitive else 'ignore case'})")
    console.print(f"Workers: {miner.workers}\n")

    result = None
    miner.start()
    try:
        while result is None:
            result = miner.poll(PROGRESS_INTERVAL)
            if result is None and not miner.is_running():
                result = miner.poll(0.1)
                break
            if result is None:
                console.print(f"Attempts: {miner.attempts:,} ({miner.rate:.2f}/s)")
    except KeyboardInterrupt:
        miner.stop()
        _summary(console, "Interrupted", miner)
        return None
    miner.stop()

    if result is None:
        _summary(console, "No match", miner)
        return None

    _summary(console, "Found", miner)
    console.print(f"Address: [bright_green]{result.address}[/bright_green]")
    console.print(f"Private key: {result.private_key}")
    console.print(f"Worker: {result.worker_id}")
    console.print("\n[yellow]Warning:[/yellow] do not use this private key in production!")
    logger.info(f"Vanity address found after {result.attempts} attempts")
    return result
