"""CLI helper that creates the flat-file documents and prints what they hold."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from pena_core import ClubStore, DocumentError, MerchandiseCatalog, VotingBoard


def _voting_summary(data: Dict[str, Any]) -> str:
    voting = data.get("voting", {})
    pre_orders = data.get("preOrders", {})
    options = ", ".join(
        f"{option.get('id')}={option.get('votes', 0)}" for option in voting.get("options", [])
    )
    return (
        f"Voting: {voting.get('totalVotes', 0)} votes ({options or 'no designs'}), "
        f"{pre_orders.get('totalOrders', 0)}/{pre_orders.get('minimumOrders', 0)} pre-orders"
    )


def _merchandise_summary(data: Dict[str, Any]) -> str:
    items = data.get("items", [])
    in_stock = sum(1 for item in items if isinstance(item, dict) and item.get("inStock"))
    return f"Merchandise: {data.get('totalItems', len(items))} items, {in_stock} in stock"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--data-dir", type=Path, default=None, help="directory holding the JSON documents")
    args = parser.parse_args(argv)

    data_dir = args.data_dir or ClubStore().data_dir
    board = VotingBoard.in_dir(data_dir)
    catalog = MerchandiseCatalog.in_dir(data_dir)

    try:
        voting = board.snapshot()
        merchandise = catalog.document.read()
    except DocumentError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"Data directory: {data_dir}")
    print(_voting_summary(voting))
    print(_merchandise_summary(merchandise))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
