#!/usr/bin/env python3
"""
Resource loading script

Loads FHIR resources and Bundles (*.json) from data/resources/, or the
directory given as the first argument, into the configured store.

Usage:
    python scripts/load_resources.py [directory]
"""
import sys
from pathlib import Path

# Add parent directory to path to import fhirwall modules
sys.path.append(str(Path(__file__).parent.parent))

from fhirwall.context import get_context
from fhirwall.database import SessionLocal, engine
from fhirwall.loader import load_directory
from fhirwall.models import Base
from fhirwall.store.factory import StoreFactory


def load_resources(directory: Path):
    """Load every resource file in the directory into the store"""
    if not directory.exists():
        print(f"⚠️  Resource directory not found: {directory}")
        return

    context = get_context()
    if context.settings.store_backend.lower() == "sql":
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        store = StoreFactory.create(db, context)
        report = load_directory(store, directory, context.known_resources)
    finally:
        db.close()

    for label in report.added:
        print(f"✓ Loaded: {label}")
    for label in report.skipped:
        print(f"⊘ Skipped (unknown type): {label}")
    for label in report.failed:
        print(f"✗ Rejected: {label}")

    print(f"\n✅ Loading complete!")
    print(f"   Loaded: {len(report.added)}")
    print(f"   Skipped: {len(report.skipped)}")
    print(f"   Rejected: {len(report.failed)}")
    print(f"   Total: {report.total} resources read")


if __name__ == "__main__":
    default_dir = Path(__file__).parent.parent / "data" / "resources"
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else default_dir
    print(f"📋 Loading FHIR resources from {target}...\n")
    try:
        load_resources(target)
    except Exception as e:
        print(f"\n❌ Error loading resources: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
