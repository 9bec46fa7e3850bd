#!/usr/bin/env python3
"""
Regenerate stored variants for catalog templates.

Usage:
    python data/regenerate_variants.py                 # all templates, axes strategy
    python data/regenerate_variants.py --smart         # smart exploration where no axes
    python data/regenerate_variants.py TB_GRABEN_AUSHUB_STANDARD --dry-run

Each template is replaced in its own transaction; reruns with unchanged
templates produce the same keys. Failures are reported per template and
do not stop the run.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from costbook.catalog_store import get_template, list_templates, regenerate_variants  # noqa: E402
from costbook.database import Base, SessionLocal, engine  # noqa: E402
from costbook.engine.errors import CostbookError  # noqa: E402
from costbook.engine.generator import STRATEGY_AXES, STRATEGY_SMART, generate_variants  # noqa: E402
from costbook.seed_catalog import seed  # noqa: E402


def main(argv=None):
    parser = argparse.ArgumentParser(description="Regenerate recipe variants")
    parser.add_argument("keys", nargs="*", help="Template keys (default: all)")
    parser.add_argument("--smart", action="store_true", help="Explore around defaults for templates without axes")
    parser.add_argument("--dry-run", action="store_true", help="Only report variant counts")
    parser.add_argument("--seed", action="store_true", help="Seed default prices and templates first")
    args = parser.parse_args(argv)

    strategy = STRATEGY_SMART if args.smart else STRATEGY_AXES
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if args.seed:
            result = seed(db)
            print(f"Seeded {result['prices']} prices and {result['templates']} templates")

        keys = args.keys or [t.key for t in list_templates(db)]
        print(f"Regenerating {len(keys)} templates ({strategy}{', dry run' if args.dry_run else ''})...\n")

        total = 0
        failed = 0
        for key in keys:
            try:
                if args.dry_run:
                    specs = generate_variants(get_template(db, key), strategy=strategy)
                    print(f"  {key}: {len(specs)} variants")
                else:
                    row, specs = regenerate_variants(db, key, strategy=strategy)
                    print(f"  {key}: {len(specs)} variants (generation {row.generation})")
                total += len(specs)
            except CostbookError as e:
                failed += 1
                print(f"  {key}: ERROR {e.code}: {e.message}")

        print("\n--- Summary ---")
        print(f"Templates: {len(keys)}  Variants: {total}  Failed: {failed}")
        return 1 if failed else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
