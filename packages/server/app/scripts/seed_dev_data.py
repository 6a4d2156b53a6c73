"""
Seed a local database with a demo owner, an organization and a board.

Safe to run repeatedly: existing rows are reused.

    python -m app.scripts.seed_dev_data --email dev@example.com --password devpassword
"""

import argparse
import asyncio

from sqlmodel import select

from app.core.auth import hash_password
from app.core.database import get_session_context, init_db
from app.models.board import Board
from app.models.organization import Organization
from app.models.profile import Profile
from app.services import boards as board_service
from app.services import organizations as org_service
from orgboard_shared.schemas.organizations import OrgCreateRequest


async def seed(
    email: str,
    password: str,
    org_name: str,
    org_slug: str,
    board_title: str,
    create_tables: bool = False,
) -> None:
    if create_tables:
        await init_db()
        print("Created tables.")

    async with get_session_context() as session:
        # 1. Owner profile
        result = await session.execute(select(Profile).where(Profile.email == email))
        profile = result.scalar_one_or_none()
        if not profile:
            profile = Profile(
                email=email,
                full_name=email.split("@")[0],
                password_hash=hash_password(password),
            )
            session.add(profile)
            await session.flush()
            print(f"Created profile: {email}")
        else:
            print(f"Profile {email} already exists.")

        # 2. Organization (creator becomes owner)
        result = await session.execute(select(Organization).where(Organization.slug == org_slug))
        org = result.scalar_one_or_none()
        if not org:
            org = await org_service.create_org(
                OrgCreateRequest(name=org_name, slug=org_slug), profile.id, session
            )
            print(f"Created organization '{org_slug}' owned by {email}.")
        else:
            print(f"Organization '{org_slug}' already exists.")

        # 3. Board
        result = await session.execute(
            select(Board).where(Board.organization_id == org.id, Board.title == board_title)
        )
        if not result.scalar_one_or_none():
            await board_service.create_board(org.id, board_title, profile.id, session)
            print(f"Created board '{board_title}'.")

    print("Done.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed local development data.")
    parser.add_argument("--email", required=True, help="Email address for the owner")
    parser.add_argument("--password", required=True, help="Password for the owner")
    parser.add_argument("--org-name", default="Acme Inc", help="Organization display name")
    parser.add_argument("--org-slug", default="acme-inc", help="Organization slug")
    parser.add_argument("--board", default="Roadmap", help="Title of the demo board")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create tables from the models first (instead of running migrations)",
    )
    args = parser.parse_args()

    asyncio.run(
        seed(
            args.email,
            args.password,
            args.org_name,
            args.org_slug,
            args.board,
            create_tables=args.create_tables,
        )
    )


if __name__ == "__main__":
    main()
