#!/usr/bin/env python3
"""
Script to diagnose the units collection used for unit costing.

Reports:
- circular baseUnitId references (A -> B -> A)
- units whose baseUnitId points at a unit that no longer exists
- units with a missing, zero or negative conversionFactor
- optionally, the cost of one item in every unit (--item-id)

Usage: python diagnose_unit_graph.py [--item-id ITEM_ID] [--language ar|en]
"""

import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
import os
from dotenv import load_dotenv
from pathlib import Path
import argparse

from cost_resolver import CostResolver, Item, ResolutionMethod
from numeric_utils import round_cost
from unit_graph import UnitGraph

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def build_report(units, item=None):
    """Collect graph problems and, for `item`, its cost in every unit"""
    graph = UnitGraph(units)
    report = {
        "units": len(graph),
        "cycles": graph.find_cycles(),
        "dangling_references": graph.dangling_references(),
        "invalid_factors": graph.invalid_factors(),
        "item_costs": [],
    }

    if item is not None:
        item = item if isinstance(item, Item) else Item.model_validate(item)
        resolver = CostResolver(graph)
        for unit in graph.units():
            resolution = resolver.resolve(item, unit.id)
            report["item_costs"].append({
                "unit": unit,
                "cost": round_cost(resolution.cost),
                "method": resolution.method,
                "direction": resolution.direction,
                "factor": resolution.factor,
                "warnings": [w.warning_code.value for w in resolution.warnings],
            })

    return report


def print_report(report, language="ar"):
    print("=" * 80)
    print("UNIT GRAPH DIAGNOSTICS")
    print("=" * 80)
    print(f"Units loaded: {report['units']}")
    print()

    print("STEP 1: Circular References")
    print("-" * 80)
    if report["cycles"]:
        for cycle in report["cycles"]:
            print(f"  ❌ {' -> '.join(str(unit_id) for unit_id in cycle)} -> {cycle[0]}")
    else:
        print("✓ No circular references")
    print()

    print("STEP 2: Dangling Base Units")
    print("-" * 80)
    if report["dangling_references"]:
        for unit_id, base_unit_id in report["dangling_references"]:
            print(f"  ⚠️  Unit {unit_id} -> missing base unit {base_unit_id}")
    else:
        print("✓ All base units exist")
    print()

    print("STEP 3: Conversion Factors")
    print("-" * 80)
    if report["invalid_factors"]:
        for unit_id in report["invalid_factors"]:
            print(f"  ⚠️  Unit {unit_id} has a missing or non-positive conversion factor (treated as 1)")
    else:
        print("✓ All conversion factors are positive")
    print()

    if report["item_costs"]:
        print("STEP 4: Item Cost per Unit")
        print("-" * 80)
        for row in report["item_costs"]:
            unit = row["unit"]
            line = f"  {unit.display_name(language)} ({unit.id}): {row['cost']} [{row['method'].value}"
            if row["direction"]:
                line += f", {row['direction'].value}, factor {row['factor']}"
            line += "]"
            if row["method"] == ResolutionMethod.FALLBACK:
                line += f" ⚠️  {', '.join(row['warnings'])}"
            print(line)
        print()

    print("=" * 80)
    print("DIAGNOSTICS COMPLETE")
    print("=" * 80)


async def main():
    parser = argparse.ArgumentParser(description='Diagnose the units collection used for unit costing')
    parser.add_argument('--item-id', type=str, help='Also print the cost of this item in every unit')
    parser.add_argument('--language', choices=['ar', 'en'], default='ar', help='Language for unit names')

    args = parser.parse_args()

    client = AsyncIOMotorClient(os.environ['MONGO_URL'])
    db = client[os.environ['DB_NAME']]

    try:
        units = await db.units.find({}, {"_id": 0}).to_list(None)

        item = None
        if args.item_id:
            item_id = int(args.item_id) if args.item_id.isdigit() else args.item_id
            item = await db.items.find_one({"id": item_id}, {"_id": 0})
            if not item:
                print(f"❌ Item '{args.item_id}' not found")
                return

        print_report(build_report(units, item), language=args.language)
    except Exception as e:
        print(f"❌ ERROR: {str(e)}")
        import traceback
        traceback.print_exc()
    finally:
        client.close()

if __name__ == "__main__":
    asyncio.run(main())
