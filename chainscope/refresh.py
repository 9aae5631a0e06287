"""
One-shot registry refresh from the command line.

Runs the same two passes the server runs at startup (fetch + merge, then the
health pass) and prints a summary, optionally writing a JSON report.
"""

import argparse
import asyncio
import json
import time

from .config import configure_logging, get_settings
from .models import to_dict
from .service import ChainscopeService


async def run_step(description, awaitable):
    print(f"\n--- Starting: {description} ---")
    start_time = time.time()
    result = await awaitable
    elapsed = time.time() - start_time
    print(f"--- Finished: {description} (Took {elapsed:.2f}s) ---\n")
    return result


def build_report(service, chain_ids=None):
    merger = service.merger
    chains = merger.popular_chains() if not chain_ids else [merger.get_chain(cid) for cid in chain_ids]
    report = {
        "generated_at": merger.snapshot.generated_at,
        "health_refreshed_at": merger.snapshot.health_refreshed_at,
        "used_fallback": service.fetcher.used_fallback,
        "stats": to_dict(merger.stats()),
        "chains": [],
    }
    for chain in chains:
        if chain is None:
            continue
        report["chains"].append({
            "chain_id": chain.chain_id,
            "name": chain.name,
            "data_source": chain.data_source,
            "wallet_rpcs": service.wallet_rpcs(chain),
            "rpc_health": to_dict(chain.rpc_health) if chain.rpc_health else None,
        })
    return report


def print_report(report):
    stats = report["stats"]
    print(f"Chains: {stats['total_chains']} ({stats['mainnet_chains']} mainnet, "
          f"{stats['testnet_chains']} testnet, {stats['verified_chains']} verified, {stats['l2_chains']} L2)")
    print(f"RPCs: {stats['total_rpcs']} total, {stats['healthy_rpcs']} confirmed online")
    if report["used_fallback"]:
        print("!!! All registry sources failed, bundled dataset in use !!!")

    for chain in report["chains"]:
        health = chain["rpc_health"]
        if health:
            detail = f"latency={health['average_latency']}ms reliability={health['reliability_score_pct']}%"
        else:
            detail = "not probed"
        print(f"[{chain['chain_id']}] {chain['name']}: {detail}")
        if chain["wallet_rpcs"]:
            for url in chain["wallet_rpcs"]:
                print(f"    {url}")
        else:
            print("    (no wallet-safe RPC)")


async def refresh(args):
    settings = get_settings()
    async with ChainscopeService.create(settings) as service:
        # 1. Fetch registry sources, enrich and merge (no probing)
        await run_step("Build Registry", service.merger.build_registry())

        # 2. Probe endpoints of popular/verified (or requested) chains
        if not args.no_probe:
            await run_step("Health Refresh", service.merger.refresh_health(args.chain or None))
        else:
            print("Skipping Health Refresh: --no-probe given.")

        report = build_report(service, args.chain)

    print_report(report)
    if args.output:
        with open(args.output, "w") as f:
            json.dump(report, f, indent=2)
        print(f"Report written to {args.output}")
    return report


def main(argv=None):
    p = argparse.ArgumentParser(description="Refresh the chain registry and probe RPC endpoints.")
    p.add_argument("--chain", type=int, action="append", help="chain id to probe (repeatable; default: popular + verified)")
    p.add_argument("--no-probe", action="store_true", help="skip the RPC health pass")
    p.add_argument("--output", help="write a JSON report to this path")
    args = p.parse_args(argv)

    configure_logging()
    asyncio.run(refresh(args))


if __name__ == "__main__":
    main()
