"""Reading the router's settings files.

Production keeps transfer credentials next to the directory layout in a
SOPS-encrypted ``.env.enc``. Development may use a plain ``.env`` or nothing
at all. ``EDIROUTER_*`` environment variables override either.
"""

import os
import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values

ENV_PREFIX = "EDIROUTER_"


class SettingsDecryptError(RuntimeError):
    """SOPS is missing or refused to decrypt the settings file."""


def _parse_env(text: str) -> dict[str, str | None]:
    return dict(dotenv_values(stream=StringIO(text)))


def load_secrets(encrypted_path: str | Path) -> dict[str, str | None]:
    """Decrypt ``encrypted_path`` with ``sops`` and parse it as a .env file.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        SettingsDecryptError: If the sops binary is missing or decryption fails.
    """
    path = Path(encrypted_path)
    if not path.is_file():
        raise FileNotFoundError(f"Encrypted settings file not found: {path}")

    try:
        completed = subprocess.run(
            ["sops", "--decrypt", str(path)],
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as exc:
        raise SettingsDecryptError("sops is not installed or not on PATH") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
        raise SettingsDecryptError(f"sops could not decrypt {path}: {detail}") from exc
    return _parse_env(completed.stdout)


def load_dotenv_fallback(dotenv_path: str | Path) -> dict[str, str | None]:
    """Parse a plain .env file; a missing file yields no settings."""
    path = Path(dotenv_path)
    return dict(dotenv_values(path)) if path.is_file() else {}


def with_environment(values: dict[str, str | None]) -> dict[str, str | None]:
    """Overlay ``EDIROUTER_*`` process environment variables on ``values``."""
    overrides = {k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)}
    return {**values, **overrides}
