# src/sealhub/scripts/tokens.py
"""
Issue a development access token for an opaque user id.

Production deployments get tokens from their identity provider; this script
only exists so the API can be exercised locally:

    python -m sealhub.scripts.tokens alice
"""

import argparse

from sealhub.core.security import create_access_token


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue a bearer token for a user id")
    parser.add_argument("user_id", help="Opaque user id to place in the token subject")
    parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Token lifetime (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)",
    )
    args = parser.parse_args()
    print(create_access_token(args.user_id, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
