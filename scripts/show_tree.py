#!/usr/bin/env python3
"""
Display the binary tree with leg volumes.

Usage:
    python scripts/show_tree.py [--root-user USER_ID] [--max-depth DEPTH] [--check] [--repair]
"""

import sys
import os
import argparse
import asyncio

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from compensation.errors import InvalidTreeState
from compensation.services.volume_service import VolumeService
from compensation.utils.tree_store import TreeStore

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def format_node(node) -> str:
    active_marker = "✅" if node.isActive else "❌"
    return (
        f"user {node.userID} (node {node.nodeID}) {active_marker} "
        f"PV {node.personalVolume}  L {node.leftVolume} / R {node.rightVolume}  "
        f"unmatched {node.leftUnmatched} / {node.rightUnmatched}"
    )


def render_tree(tree: TreeStore, start, max_depth=None) -> list:
    """ASCII lines for the subtree under `start`. Iterative, depth-first, left first."""
    lines = []
    stack = [(start, "", True, 0, "")]

    while stack:
        node, prefix, is_last, depth, side = stack.pop()

        connector = "" if depth == 0 else ("└─ " if is_last else "├─ ")
        label = f"[{side[0].upper()}] " if side else ""
        lines.append(f"{prefix}{connector}{label}{format_node(node)}")

        if max_depth is not None and depth >= max_depth:
            continue

        left, right = tree.children(node)
        children = [(c, s) for c, s in ((left, "left"), (right, "right")) if c is not None]
        child_prefix = "" if depth == 0 else prefix + ("    " if is_last else "│   ")

        # Reversed so the left child is printed first
        for i, (child, child_side) in reversed(list(enumerate(children))):
            stack.append((child, child_prefix, i == len(children) - 1, depth + 1, child_side))

    return lines


async def run_check(session, repair: bool) -> int:
    service = VolumeService(session)
    mismatches = await service.checkConsistency()

    if not mismatches:
        print("✅ Leg volumes and counts are consistent")
        return 0

    print(f"❌ {len(mismatches)} mismatches:")
    for m in mismatches:
        print(f"  node {m['nodeId']:6} {m['field']:15} stored {m['stored']}  expected {m['expected']}")

    if repair:
        fixed = await service.rebuildAggregates()
        print(f"🔧 Rebuilt aggregates, {fixed} nodes corrected")
        return 0
    return 1


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display binary tree')
    parser.add_argument('--root-user', type=int,
                        help='User id of the subtree root (default: tree root)')
    parser.add_argument('--max-depth', type=int,
                        help='Maximum depth to display')
    parser.add_argument('--check', action='store_true',
                        help='Run the leg aggregate consistency check')
    parser.add_argument('--repair', action='store_true',
                        help='With --check: rebuild aggregates when mismatched')
    args = parser.parse_args()

    Config.initialize_from_env()

    session = get_session()
    try:
        tree = TreeStore(session)

        if args.check:
            sys.exit(asyncio.run(run_check(session, args.repair)))

        if args.root_user is not None:
            start = tree.get_node_by_user(args.root_user)
            if start is None:
                print(f"❌ User {args.root_user} is not in the binary tree!")
                sys.exit(1)
        else:
            start = tree.get_root()
            if start is None:
                print("Tree is empty")
                return

        print("\n" + "=" * 80)
        print("BINARY TREE")
        print("=" * 80 + "\n")
        for line in render_tree(tree, start, args.max_depth):
            print(line)
        print("\n" + "=" * 80 + "\n")

    except InvalidTreeState as e:
        print(f"❌ Invalid tree: {e}")
        sys.exit(2)
    finally:
        session.close()


if __name__ == "__main__":
    main()
