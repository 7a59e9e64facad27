from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import time

from dotenv import load_dotenv

from app.auth.password_policy import validate_password
from app.auth.service import AuthService
from app.core.config import AppConfig
from app.core.logging import setup_logging
from app.core.security import SessionTokenCodec
from web_api import build_repository

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Account administration for the portal auth service."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    create_user = commands.add_parser("create-user", help="Provision or replace an account.")
    create_user.add_argument("--email", required=True, help="Login email address.")
    create_user.add_argument("--name", default="", help="Display name used in emails.")
    create_user.add_argument(
        "--role",
        default="client",
        choices=["admin", "client", "auditor", "collaborator"],
        help="Account role embedded in session tokens.",
    )
    create_user.add_argument(
        "--password",
        default="",
        help="Initial password. Prompted for when omitted.",
    )
    create_user.add_argument(
        "--no-force-change",
        action="store_true",
        help="Do not require a password change after first login.",
    )

    commands.add_parser(
        "purge-expired",
        help="Delete login/reset sessions and rate-limit windows past their expiry.",
    )
    return parser


async def _create_user(config: AppConfig, args: argparse.Namespace) -> int:
    password = args.password or getpass.getpass("Password: ")
    violations = validate_password(password)
    if violations:
        for violation in violations:
            print(f"- {violation}")
        return 2

    repo = build_repository(config)
    try:
        await repo.ensure_indexes()
        codec = SessionTokenCodec(config.auth.secret_key, issuer=config.auth.issuer)
        service = AuthService(repo, codec, config.auth)
        user = await service.create_user(
            args.email,
            password,
            role=args.role,
            name=args.name,
            must_change_password=not args.no_force_change,
        )
    finally:
        await repo.close()

    print(json.dumps({"user_id": user.user_id, "email": user.email, "role": user.role}))
    return 0


async def _purge_expired(config: AppConfig) -> int:
    repo = build_repository(config)
    try:
        counts = await repo.purge_expired(now=time.time())
    finally:
        await repo.close()
    LOGGER.info("purge_expired_completed")
    print(json.dumps(counts))
    return 0


def main() -> None:
    load_dotenv()
    args = build_parser().parse_args()
    config = AppConfig.from_env()
    setup_logging(config.logging.level)

    if args.command == "create-user":
        raise SystemExit(asyncio.run(_create_user(config, args)))
    raise SystemExit(asyncio.run(_purge_expired(config)))


if __name__ == "__main__":
    main()
