"""Pre-deploy check of the gateway configuration.

Loads every settings group from an env file and reports what would stop the
gateway from completing a sign-in: missing OIDC or Identity Center values, no
envelope key source and no client-secret source.

    python -m scripts.check_env --env-file /etc/federated-chat/.env
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pydantic import ValidationError

from federated_chat.core.config import (
    AWSSettings,
    IdentityCenterSettings,
    OIDCSettings,
    SecuritySettings,
)

EXIT_OK = 0
EXIT_INVALID = 2
EXIT_MISSING_FILE = 5


def _field_errors(exc: ValidationError) -> list[str]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "settings"
        problems.append(f"{location}: {error['msg']}")
    return problems


def find_problems(env_file: Path) -> list[str]:
    """Return human-readable configuration problems; empty when ready."""
    problems: list[str] = []
    try:
        oidc = OIDCSettings(_env_file=env_file)
    except ValidationError as exc:
        oidc = None
        problems.extend(_field_errors(exc))
    try:
        IdentityCenterSettings(_env_file=env_file)
    except ValidationError as exc:
        problems.extend(_field_errors(exc))

    aws = AWSSettings(_env_file=env_file)
    security = SecuritySettings(_env_file=env_file)
    if not aws.kms_key_arn and not security.local_encryption_secret:
        problems.append("encryption: set KMS_KEY_ARN or LOCAL_ENCRYPTION_SECRET")
    if oidc is not None and not (oidc.client_secret or oidc.client_secret_name):
        problems.append("oidc: set OIDC_CLIENT_SECRET or OIDC_CLIENT_SECRET_NAME")
    return problems


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check gateway settings before deploying.")
    parser.add_argument("--env-file", type=Path, default=Path(".env"))
    args = parser.parse_args(argv)

    if not args.env_file.exists():
        print(f"Environment file {args.env_file} does not exist.", file=sys.stderr)
        return EXIT_MISSING_FILE

    problems = find_problems(args.env_file)
    if problems:
        print("Configuration is incomplete:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_INVALID

    print("Configuration OK.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
