"""Account discovery and credential/cookie files in the data directory.

File layout (one pair per account, keyed by e-mail)::

    DATA/login_<email>.dat          cookie file
    DATA/credentials_<email>.dat    email=<email>\\npassword=<password>\\n
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from mediarelay.shared.cookies import load_cookie_file, write_cookie_file
from mediarelay.shared.models import Account

logger = logging.getLogger(__name__)

_COOKIE_PREFIX = "login_"
_CREDENTIALS_PREFIX = "credentials_"
_SUFFIX = ".dat"


@dataclass(frozen=True, slots=True)
class Credentials:
    email: str
    password: str


def email_from_account_id(account_id: str) -> str:
    """Account ids are either the e-mail itself or ``account-<email>``."""
    return account_id.removeprefix("account-")


def parse_credentials(content: str) -> Credentials | None:
    values: dict[str, str] = {}
    for line in content.splitlines():
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        if key.strip() and value.strip():
            values[key.strip()] = value.strip()
    if values.get("email") and values.get("password"):
        return Credentials(email=values["email"], password=values["password"])
    return None


class AccountStore:
    """Read/write access to per-account files under ``data_dir``."""

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def cookie_path(self, email: str) -> Path:
        return self._data_dir / f"{_COOKIE_PREFIX}{email}{_SUFFIX}"

    def credentials_path(self, email: str) -> Path:
        return self._data_dir / f"{_CREDENTIALS_PREFIX}{email}{_SUFFIX}"

    def read_credentials(self, email: str) -> Credentials | None:
        path = self.credentials_path(email)
        try:
            return parse_credentials(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None

    def save_credentials(self, email: str, password: str) -> None:
        path = self.credentials_path(email)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"email={email}\npassword={password}\n", encoding="utf-8")
        logger.info("credentials saved for %s", email)

    def read_cookies(self, email: str) -> str | None:
        try:
            header = load_cookie_file(self.cookie_path(email))
        except FileNotFoundError:
            return None
        return header or None

    def write_cookies(self, email: str, header: str) -> None:
        write_cookie_file(self.cookie_path(email), header)
        logger.info("cookie file updated for %s", email)

    def list_accounts(self) -> list[Account]:
        """Accounts with a cookie file and/or a credentials file, sorted by e-mail."""
        if not self._data_dir.is_dir():
            return []

        with_cookies: set[str] = set()
        with_credentials: set[str] = set()
        for path in self._data_dir.glob(f"*{_SUFFIX}"):
            name = path.name
            if name.startswith(_COOKIE_PREFIX):
                with_cookies.add(name[len(_COOKIE_PREFIX) : -len(_SUFFIX)])
            elif name.startswith(_CREDENTIALS_PREFIX):
                creds = self.read_credentials(name[len(_CREDENTIALS_PREFIX) : -len(_SUFFIX)])
                if creds is not None:
                    with_credentials.add(creds.email)

        accounts = [
            Account(
                id=email,
                email=email,
                cookie_file=str(self.cookie_path(email)) if email in with_cookies else None,
                has_credentials=email in with_credentials,
            )
            for email in sorted(with_cookies | with_credentials)
        ]
        logger.debug("found %d account(s) in %s", len(accounts), self._data_dir)
        return accounts
