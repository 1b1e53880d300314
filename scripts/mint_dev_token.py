"""Mint an HS256 bearer token for local runs.

    python scripts/mint_dev_token.py <user_id> <role> [--email a@b.c] [--hours 8]
"""
import argparse
from datetime import datetime, timedelta, timezone
from jose import jwt
from ehr_access.core.config import settings
from ehr_access.core.security import parse_role

def main():
    p = argparse.ArgumentParser(description="Mint a dev bearer token")
    p.add_argument("user_id")
    p.add_argument("role", help="patient | doctor | lab_assistant | admin")
    p.add_argument("--email", default=None)
    p.add_argument("--hours", type=int, default=8)
    args = p.parse_args()

    claims = {
        "sub": args.user_id,
        "role": parse_role(args.role).value,
        "exp": datetime.now(timezone.utc) + timedelta(hours=args.hours),
    }
    if args.email:
        claims["email"] = args.email
    if settings.REQUIRED_AUDIENCE:
        claims["aud"] = settings.REQUIRED_AUDIENCE
    print(jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG))

if __name__ == "__main__":
    main()
