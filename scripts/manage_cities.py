"""CLI for city, user and API key management.

Usage::

    uv run python -m scripts.manage_cities <command> [options]

Commands:
    list-cities       List all cities with status and domains
    activate-city     Mark a city active
    deactivate-city   Mark a city inactive (resolution stops matching it)
    add-domain        Map a host to a city
    create-user       Create a user (member, moderator or admin)
    create-key        Generate an API key for a user
    backfill-city-id  Fill NULL city_id from bairro on tenant-owned tables
"""

from __future__ import annotations

import argparse
import sys
import uuid
from collections.abc import Callable

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, selectinload

from civic_portal.auth.keys import generate_api_key
from civic_portal.config import settings
from civic_portal.storage.backfill import backfill_city_id
from civic_portal.storage.orm import (
    APIKey,
    CitizenReport,
    City,
    CityDomain,
    CityStatus,
    ForumTopic,
    User,
    UserRole,
)
from civic_portal.tenancy.registry import normalize_slug
from civic_portal.tenancy.resolver import normalize_host

BACKFILL_MODELS = {
    "citizen_reports": CitizenReport,
    "forum_topics": ForumTopic,
}


def get_sync_session() -> Session:
    """Create sync session for CLI operations.

    Uses the same database URL as the async app (psycopg v3
    handles both sync and async natively).
    """
    engine = create_engine(settings.database_url)
    return Session(engine)


def _get_city(session: Session, slug: str) -> City:
    city = session.execute(
        select(City).where(City.slug == normalize_slug(slug))
    ).scalar_one_or_none()
    if city is None:
        print(f"City not found: {slug}", file=sys.stderr)
        sys.exit(1)
    return city


def list_cities(_args: argparse.Namespace) -> None:
    """List all cities with status and mapped domains."""
    with get_sync_session() as session:
        cities = (
            session.execute(
                select(City).options(selectinload(City.domains)).order_by(City.name)
            )
            .scalars()
            .all()
        )

        if not cities:
            print("No cities found.")
            return

        print("Cities:")
        for i, city in enumerate(cities, 1):
            status = city.status if city.active else f"{city.status}, inactive"
            domains = ", ".join(d.domain for d in city.domains) or "no domains"
            print(f"  {i}. {city.slug} {city.name}/{city.uf} ({status}) [{domains}]")


def activate_city(args: argparse.Namespace) -> None:
    """Mark a city active."""
    with get_sync_session() as session:
        city = _get_city(session, args.slug)
        if city.active and city.status == CityStatus.ACTIVE:
            print(f"City already active: {city.slug}", file=sys.stderr)
            sys.exit(1)

        city.active = True
        city.status = CityStatus.ACTIVE.value
        session.commit()
        print(f"City activated: {city.slug}")


def deactivate_city(args: argparse.Namespace) -> None:
    """Mark a city inactive; its data stays in place."""
    with get_sync_session() as session:
        city = _get_city(session, args.slug)
        if not city.active:
            print(f"City already inactive: {city.slug}", file=sys.stderr)
            sys.exit(1)

        city.active = False
        city.status = CityStatus.SUSPENDED.value
        session.commit()
        print(f"City deactivated: {city.slug}")


def add_domain(args: argparse.Namespace) -> None:
    """Map a host to a city."""
    domain = normalize_host(args.domain)
    with get_sync_session() as session:
        city = _get_city(session, args.city)
        existing = session.execute(
            select(CityDomain).where(CityDomain.domain == domain)
        ).scalar_one_or_none()
        if existing is not None:
            print(f"Domain already mapped: {domain}", file=sys.stderr)
            sys.exit(1)

        session.add(CityDomain(city_id=city.id, domain=domain))
        session.commit()
        print(f"Domain {domain} -> {city.slug}")
        print("Running processes pick it up when their domain map cache expires.")


def create_user(args: argparse.Namespace) -> None:
    """Create a user with an optional home city."""
    with get_sync_session() as session:
        city_id = _get_city(session, args.city).id if args.city else None
        role = UserRole(args.role)
        if role == UserRole.MODERATOR and city_id is None:
            print("Moderators need a home city (--city).", file=sys.stderr)
            sys.exit(1)

        user = User(name=args.name, role=role.value, city_id=city_id)
        session.add(user)
        session.commit()
        print(f"User created: {args.name} [{role}] (id: {user.id})")


def create_key(args: argparse.Namespace) -> None:
    """Generate an API key for a user."""
    with get_sync_session() as session:
        user = session.get(User, uuid.UUID(args.user_id))
        if user is None:
            print(f"User not found: {args.user_id}", file=sys.stderr)
            sys.exit(1)

        full_key, key_hash, key_prefix = generate_api_key()
        session.add(
            APIKey(
                user_id=user.id,
                key_hash=key_hash,
                key_prefix=key_prefix,
                label=args.label,
            )
        )
        session.commit()

        print(f'API key created for "{user.name}":')
        print(f"   Key:     {full_key}")
        print(f"   Prefix:  {key_prefix}")
        print(f"   Role:    {user.role}")
        print(f"   Label:   {args.label}")
        print()
        print("Save this key now -- it cannot be retrieved later!")


def backfill(args: argparse.Namespace) -> None:
    """Fill NULL city_id from the row's bairro."""
    with get_sync_session() as session:
        for table in args.tables:
            updated = backfill_city_id(session, BACKFILL_MODELS[table])
            print(f"{table}: {updated} row{'s' if updated != 1 else ''} updated")
        if args.dry_run:
            session.rollback()
            print("Dry run: changes rolled back.")
        else:
            session.commit()


def main() -> None:
    """Parse arguments and dispatch to command handler."""
    parser = argparse.ArgumentParser(description="City management CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    # list-cities
    sub.add_parser("list-cities", help="List all cities")

    # activate-city
    p = sub.add_parser("activate-city", help="Activate a city")
    p.add_argument("--slug", required=True, help="City slug, e.g. tijucas-sc")

    # deactivate-city
    p = sub.add_parser("deactivate-city", help="Deactivate a city")
    p.add_argument("--slug", required=True, help="City slug")

    # add-domain
    p = sub.add_parser("add-domain", help="Map a host to a city")
    p.add_argument("--city", required=True, help="City slug")
    p.add_argument(
        "--domain", required=True, help="Host, e.g. itapema.cidadeconectada.app"
    )

    # create-user
    p = sub.add_parser("create-user", help="Create a user")
    p.add_argument("--name", required=True, help="Display name")
    p.add_argument(
        "--role",
        choices=[r.value for r in UserRole],
        default=UserRole.MEMBER.value,
        help="User role",
    )
    p.add_argument("--city", help="Home city slug")

    # create-key
    p = sub.add_parser("create-key", help="Generate API key for a user")
    p.add_argument("--user-id", required=True, help="User id")
    p.add_argument("--label", default="default", help="Key label")

    # backfill-city-id
    p = sub.add_parser("backfill-city-id", help="Backfill city_id from bairro")
    p.add_argument(
        "--tables",
        nargs="+",
        choices=sorted(BACKFILL_MODELS),
        default=sorted(BACKFILL_MODELS),
        help="Tables to backfill",
    )
    p.add_argument("--dry-run", action="store_true", help="Roll back after counting")

    args = parser.parse_args()
    commands: dict[str, Callable[[argparse.Namespace], None]] = {
        "list-cities": list_cities,
        "activate-city": activate_city,
        "deactivate-city": deactivate_city,
        "add-domain": add_domain,
        "create-user": create_user,
        "create-key": create_key,
        "backfill-city-id": backfill,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
