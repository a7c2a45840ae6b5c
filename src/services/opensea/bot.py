from __future__ import annotations

import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

from .client import OpenSeaClient
from .config_loader import CONFIG_FILE_DEFAULT, load_app_config
from .control import log
from .engine import OpenSeaEngine
from .market import OpenSeaMarket
from .wallet import Wallet


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="OpenSea collection market maker")
    parser.add_argument(
        "--config",
        default=os.getenv("OPENSEA_CONFIG", CONFIG_FILE_DEFAULT),
        help="Path to strategy config JSON",
    )
    parser.add_argument("--collection", default=None, help="Override collection slug")
    parser.add_argument("--api-base", default=os.getenv("OPENSEA_API_BASE", ""))
    parser.add_argument("--state-db", default=os.getenv("STATE_DB_PATH", ""))
    parser.add_argument("--live", action="store_true", help="Send real orders and transactions")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    return parser.parse_args()


def main() -> int:
    load_dotenv()
    args = parse_args()

    try:
        cfg = load_app_config(
            config_file=args.config,
            state_db_path=args.state_db,
            api_base=args.api_base,
            live_mode=args.live,
            collection_slug=args.collection,
        )
    except (RuntimeError, ValueError) as exc:
        log("bot", f"CONFIG ERROR: {exc}")
        return 1

    client = OpenSeaClient(
        api_base=cfg.api_base,
        api_key=cfg.api_key,
        chain=cfg.chain.api_chain,
        routes=cfg.routes,
        timeout=cfg.runtime.request_timeout,
    )
    try:
        wallet = Wallet(
            rpc_url=cfg.chain.rpc_url,
            private_key=cfg.private_key,
            chain_id=cfg.chain.chain_id,
            payment_token_address=cfg.chain.payment_token_address,
            timeout=cfg.runtime.request_timeout,
        )
    except ValueError as exc:
        log("bot", f"CONFIG ERROR: bad wallet key: {exc}")
        return 1
    market = OpenSeaMarket(client=client, wallet=wallet, chain=cfg.chain, runtime=cfg.runtime)

    mode = "LIVE" if not cfg.runtime.dry_run else "DRY-RUN"
    log("bot", f"Mode: {mode}")
    log("bot", f"Collection: {cfg.collection_slug} chain={cfg.chain.name} account={wallet.address}")
    p = cfg.policy
    log(
        "bot",
        f"Policy: max_fraction={p.max_offer_fraction_of_floor} increment={p.bid_increment} "
        f"undercut={p.undercut_amount} sniper={p.sniper_threshold_fraction} "
        f"second_best={p.use_second_best_strategy}",
    )

    engine = OpenSeaEngine(cfg, market)
    try:
        return asyncio.run(engine.run(once=args.once))
    except KeyboardInterrupt:
        log("bot", "Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
