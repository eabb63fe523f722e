"""
Prints a bearer token for an existing user. Development only: in production
tokens are issued by the portal's identity service.

    python issue_token.py staff@example.com
"""
import argparse
import asyncio
import os
import sys
from datetime import timedelta

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy import select

from bookingchat.core.security import token_for
from bookingchat.db.database import AsyncSessionLocal, load_models
from bookingchat.db.models.user import User


async def issue_token(email: str, minutes: int):
    load_models()
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            print(f"User {email} not found")
            return 1

    print(f"# user {user.id} ({user.role})")
    print(token_for(user.id, user.role, timedelta(minutes=minutes)))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Issue a development bearer token")
    parser.add_argument("email")
    parser.add_argument("--minutes", type=int, default=60 * 24)
    args = parser.parse_args()
    sys.exit(asyncio.run(issue_token(args.email, args.minutes)))
