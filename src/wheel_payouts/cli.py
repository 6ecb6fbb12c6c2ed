from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, Optional

from .chain import WalletRpcClient
from .config import Settings
from .draw import simulate
from .engine import RewardEngine
from .errors import RewardEngineError, UserCancellation
from .helix import HelixClient
from .ingest import RedemptionIngestor
from .notify import ChatNotifier, LogNotifier
from .project_constants import DEFAULT_SESSION_FILE
from .registry import WalletRegistryClient
from .settlement import AVALANCHE, SettlementManager
from .store import Session, load_session, save_session


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env(
        wallet_rpc_url_override=getattr(args, "wallet_rpc_url", None),
        token_address_override=getattr(args, "token", None),
    )


def _build_engine(
    args: argparse.Namespace,
    session: Session,
    twitch: bool = False,
    wallet: bool = False,
) -> RewardEngine:
    settings = _settings(args)
    helix: Optional[HelixClient] = None
    ingestor: Optional[RedemptionIngestor] = None
    settlement: Optional[SettlementManager] = None
    notifier = LogNotifier()

    if twitch:
        settings.require_twitch()
        helix = HelixClient(
            settings.twitch_client_id, settings.twitch_access_token, timeout_s=args.timeout
        )
        notifier = ChatNotifier(helix)
        registry = WalletRegistryClient(settings.wallet_api_url, timeout_s=args.timeout)
        ingestor = RedemptionIngestor(helix, registry, notifier)
    elif settings.twitch_client_id and settings.twitch_access_token:
        # Still needed to fulfil or refund redemptions already in the queue.
        helix = HelixClient(
            settings.twitch_client_id, settings.twitch_access_token, timeout_s=args.timeout
        )
        notifier = ChatNotifier(helix)

    if getattr(args, "token", None):
        session.token_address = settings.token_address

    if wallet:
        settings.require_wallet()
        settlement = SettlementManager(
            wallet=WalletRpcClient(settings.wallet_rpc_url, timeout_s=args.timeout),
            token_address=session.token_address,
            payout_contract=settings.payout_contract,
            network=dataclasses.replace(AVALANCHE, rpc_url=settings.avalanche_rpc_url),
            history=session.settlements,
        )

    return RewardEngine(
        notifier,
        config=session.config,
        queue=session.queue,
        helix=helix,
        ingestor=ingestor,
        settlement=settlement,
        token_address=session.token_address,
    )


async def _close(engine: RewardEngine) -> None:
    if engine.ingestor is not None:
        await engine.ingestor.registry.close()
    if engine.helix is not None:
        await engine.helix.close()
    if engine.settlement is not None:
        await engine.settlement.wallet.close()


def _with_engine(
    args: argparse.Namespace,
    body: Callable[[RewardEngine], Awaitable[int]],
    twitch: bool = False,
    wallet: bool = False,
) -> int:
    session = load_session(args.session)

    async def run() -> int:
        engine = _build_engine(args, session, twitch=twitch, wallet=wallet)
        try:
            return await body(engine)
        finally:
            await _close(engine)
            save_session(args.session, session)

    return asyncio.run(run())


def _print_queue(engine: RewardEngine) -> None:
    print(f"Pending   : {len(engine.queue.pending)}")
    for i, p in enumerate(engine.queue.pending):
        source = "twitch" if p.is_external else "manual"
        print(f"  [{i}] {p.display_name or '-':<20} {p.wallet_address} ({source})")
    print(f"Completed : {len(engine.queue.completed)}")
    for r in engine.queue.completed:
        print(f"  {r.participant.display_name or '-':<20} {r.participant.wallet_address} {r.prize_value}")


def cmd_segments(args: argparse.Namespace) -> int:
    session = load_session(args.session)
    config = session.config
    if args.action == "add":
        config.add_segment(args.value, args.weight or "")
    elif args.action == "remove":
        config.remove_segment(args.index)
    elif args.action == "weight":
        config.set_weight(args.index, args.value)
    elif args.action == "equalize":
        config.equalize()
    elif args.action == "reset":
        config.reset()

    total = 0.0
    for i, (label, weight) in enumerate(zip(config.labels, config.weights)):
        print(f"[{i}] {label:>10}  {weight or '-':>6}%")
        try:
            total += float(weight)
        except ValueError:
            pass
    print(f"Total weight: {total:.1f}%")
    save_session(args.session, session)
    return 0


def cmd_simulate(args: argparse.Namespace) -> int:
    session = load_session(args.session)
    config = session.config
    freqs = simulate(config, args.draws)
    print(f"--- {args.draws} SIMULATED SPINS ---")
    for label, weight, freq in zip(config.labels, config.weights, freqs):
        print(f"{label:>10}  configured {weight:>6}%  observed {freq:6.2f}%")
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        p = engine.add_participant(args.wallet, args.name)
        print(f"Queued {p.display_name or p.wallet_address} at position {len(engine.queue) - 1}")
        return 0

    return _with_engine(args, body)


def cmd_remove(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        p = await engine.remove_participant(args.index)
        print(f"Removed {p.display_name or p.wallet_address}")
        return 0

    return _with_engine(args, body)


def cmd_clear(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        removed = await engine.clear_pending()
        print(f"Removed {len(removed)} pending participants")
        return 0

    return _with_engine(args, body)


def cmd_queue(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        _print_queue(engine)
        return 0

    return _with_engine(args, body)


def cmd_spin(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        if not len(engine.queue):
            print("Nobody is waiting for a spin.")
            return 0
        await engine.drain()
        _print_queue(engine)
        return 0

    return _with_engine(args, body)


def cmd_run(args: argparse.Namespace) -> int:
    log = logging.getLogger("run")

    async def body(engine: RewardEngine) -> int:
        if args.once:
            await engine.ingest_once()
            await engine.drain()
        else:
            await engine.start(auto_ingest=True)
            try:
                if args.duration:
                    await asyncio.sleep(args.duration)
                else:
                    await asyncio.Event().wait()
            finally:
                log.info("Stopping; waiting for any spin in flight")
                await engine.stop()
        _print_queue(engine)
        if engine.last_error:
            print(f"Polling stopped: {engine.last_error}")
            return 1
        return 0

    try:
        return _with_engine(args, body, twitch=True)
    except KeyboardInterrupt:
        return 130


def cmd_export(args: argparse.Namespace) -> int:
    session = load_session(args.session)
    engine = RewardEngine(LogNotifier(), config=session.config, queue=session.queue,
                          token_address=args.token or session.token_address)
    if args.copy:
        print(engine.export_text(), end="")
    else:
        path = engine.export_file(args.out)
        print(f"Wrote {len(session.queue.completed)} payouts: {path}")
    return 0


def cmd_wallet(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        settlement = engine.require_settlement()
        s = await settlement.refresh_session()
        print("--- WALLET ---")
        print(f"Address   : {s.address}")
        print(f"Chain     : {s.chain_id} (settlement needs {settlement.network.chain_id})")
        print(f"Balance   : {s.balance_tokens()}")
        print(f"Allowance : {s.allowance_tokens()}")
        if engine.queue.completed:
            ready = await engine.can_settle()
            print(f"Settle    : {'ready' if ready else 'approve first'}")
        return 0

    return _with_engine(args, body, wallet=True)


def cmd_approve(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        try:
            tx_hash = await engine.approve()
        except UserCancellation as e:
            print(f"Approval cancelled: {e}")
            return 1
        print(f"Approved: {tx_hash}")
        return 0

    return _with_engine(args, body, wallet=True)


def cmd_settle(args: argparse.Namespace) -> int:
    async def body(engine: RewardEngine) -> int:
        try:
            record = await engine.settle()
        except UserCancellation as e:
            print(f"Payout cancelled: {e}")
            return 1
        print("========================================")
        print("PAYOUT SENT")
        print(f"Transaction : {record.tx_hash}")
        print(f"Recipients  : {len(record.recipients)}")
        print(f"Total       : {record.total}")
        print("========================================")
        return 0

    return _with_engine(args, body, wallet=True)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="wheel-payouts",
        description="Twitch prize wheel with on-chain batch payouts.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--session", default=DEFAULT_SESSION_FILE, help="Session JSON path.")
    p.add_argument("--timeout", type=float, default=60.0, help="HTTP timeout seconds.")
    p.add_argument("--token", default=None, help="Override payout token address.")
    p.add_argument("--wallet-rpc-url", default=None, help="Override wallet RPC URL (else use env).")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("segments", help="Show or edit wheel segments.")
    s.add_argument(
        "action",
        nargs="?",
        default="show",
        choices=["show", "add", "remove", "weight", "equalize", "reset"],
    )
    s.add_argument("--value", default="", help="Segment prize (add) or weight (weight).")
    s.add_argument("--weight", default=None, help="Weight for a new segment.")
    s.add_argument("--index", type=int, default=0, help="Segment position.")
    s.set_defaults(func=cmd_segments)

    sim = sub.add_parser("simulate", help="Draw many times and compare frequencies.")
    sim.add_argument("--draws", type=int, default=10000)
    sim.set_defaults(func=cmd_simulate)

    a = sub.add_parser("add", help="Queue a participant by hand.")
    a.add_argument("--wallet", required=True)
    a.add_argument("--name", default="")
    a.set_defaults(func=cmd_add)

    r = sub.add_parser("remove", help="Remove a pending participant (refunds Twitch redemptions).")
    r.add_argument("--index", type=int, required=True)
    r.set_defaults(func=cmd_remove)

    c = sub.add_parser("clear", help="Remove every pending participant.")
    c.set_defaults(func=cmd_clear)

    q = sub.add_parser("queue", help="Show pending participants and results.")
    q.set_defaults(func=cmd_queue)

    sp = sub.add_parser("spin", help="Spin for everyone in the queue.")
    sp.set_defaults(func=cmd_spin)

    run = sub.add_parser("run", help="Poll Twitch redemptions and spin automatically.")
    run.add_argument("--once", action="store_true", help="One ingestion cycle, then drain.")
    run.add_argument("--duration", type=float, default=None, help="Stop after N seconds.")
    run.set_defaults(func=cmd_run)

    e = sub.add_parser("export", help="Write the payout CSV.")
    e.add_argument("--out", default=".", help="Directory for the CSV file.")
    e.add_argument("--copy", action="store_true", help="Print the CSV instead of writing it.")
    e.set_defaults(func=cmd_export)

    w = sub.add_parser("wallet", help="Show wallet balance and allowance.")
    w.set_defaults(func=cmd_wallet)

    ap = sub.add_parser("approve", help="Approve the payout contract for the total owed.")
    ap.set_defaults(func=cmd_approve)

    st = sub.add_parser("settle", help="Send every result in one batch transfer.")
    st.set_defaults(func=cmd_settle)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        raise SystemExit(args.func(args))
    except RewardEngineError as e:
        logging.getLogger("cli").error("%s", e)
        raise SystemExit(1)
