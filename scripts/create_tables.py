"""
Create the recipe engine tables and insert the built-in recipes.

Usage:
    python scripts/create_tables.py            # tables + seed recipes
    python scripts/create_tables.py --no-seed  # tables only

Uses DATABASE_URL (see recipe_engine.config). For Postgres deployments the
Alembic migration in database/migrations is the reference schema; this script
is for local setups and fresh databases.
"""

import argparse
import sys

from recipe_engine.config import Settings
from recipe_engine.core.recipes import RecipeManager
from recipe_engine.database import create_session_factory, init_db, session_scope


def main() -> int:
    parser = argparse.ArgumentParser(description="Create recipe engine tables")
    parser.add_argument("--no-seed", action="store_true", help="Do not insert the built-in recipes")
    args = parser.parse_args()

    settings = Settings.from_env()

    print("=" * 70)
    print("🗄️  Recipe Engine - Create Tables")
    print("=" * 70)
    print(f"\n✅ DB: {settings.database_url[:40]}...")

    factory = create_session_factory(settings.database_url)
    init_db(factory.kw["bind"])
    print("✅ Tables 'recipes' and 'recipe_executions' ready")

    if args.no_seed:
        return 0

    with session_scope(factory) as db:
        result = RecipeManager(db).seed_initial_recipes()

    print(f"\n🌱 Seed recipes created: {len(result['created'])}")
    for recipe_id in result["created"]:
        print(f"   - {recipe_id}")
    if result["skipped"]:
        print(f"   (already present: {', '.join(result['skipped'])})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
