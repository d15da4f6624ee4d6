"""Script to create the first platform admin account.

Usage:
    python scripts/create_platform_admin.py admin@example.com 'a-strong-password' Ada Lovelace
"""

import asyncio
import sys

sys.path.insert(0, ".")

from src.auth.security import get_token_issuer
from src.db.models import AccountRole
from src.db.session import async_session_maker, init_db
from src.errors import ServiceError
from src.services.account_service import account_service
from src.services.identity import identity_provider


async def main(email: str, password: str, first_name: str, last_name: str) -> int:
    """Create a platform admin through the identity provider."""
    print("Initializing database...")
    await init_db()

    print("Creating platform admin...")
    try:
        async with async_session_maker() as db:
            created = await account_service.create_delegated_account(
                db,
                identity_provider,
                AccountRole.PLATFORM_ADMIN,
                email,
                password,
                {"first_name": first_name, "last_name": last_name},
            )
    except ServiceError as e:
        print(f"\nFailed: {e.detail} ({e.error_code})")
        return 1
    finally:
        await identity_provider.aclose()

    token = get_token_issuer().issue(
        created.account.id,
        created.account.email,
        AccountRole.PLATFORM_ADMIN.value,
        profile_id=created.profile.id,
    )

    print("\n" + "=" * 60)
    print("PLATFORM ADMIN CREATED SUCCESSFULLY")
    print("=" * 60)
    print(f"\nAccount ID: {created.account.id}")
    print(f"Email:      {created.account.email}")
    print(f"\nSession token (sign in normally once it expires):\n{token}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 5:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(*sys.argv[1:5])))
