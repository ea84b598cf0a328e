"""
TempMail backend: disposable inboxes on one configured domain.

Accounts and messages live in an EmailStore. Two stores ship:

  - D1EmailStore: Cloudflare D1 through its HTTP query API (production)
  - InMemoryEmailStore: process-local dicts (tests, local runs)

Inbound mail is written into the store by the mail-receiving worker, not
by this server; ``create_message`` exists for that worker and for tests.
Messages stored as raw RFC 822 source are parsed on read.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from email import policy
from email.message import EmailMessage as MIMEMessage
from email.parser import BytesParser
from email.utils import parseaddr
from typing import Any, Literal

import httpx
from pydantic import BaseModel, model_validator

from mcp_adapters.backends.base import Backend
from mcp_adapters.config import build_config, env_str
from mcp_adapters.errors import NETWORK_ERROR, TempMailError

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 150


class TempMailConfig(BaseModel):
    domain: str = "tempmail.local"
    store: Literal["d1", "memory"] = "d1"
    cloudflare_account_id: str | None = None
    cloudflare_d1_database_id: str | None = None
    cloudflare_api_token: str | None = None

    @model_validator(mode="after")
    def _check_d1_credentials(self) -> "TempMailConfig":
        if self.store == "d1":
            missing = [
                name for name, value in (
                    ("CLOUDFLARE_ACCOUNT_ID", self.cloudflare_account_id),
                    ("CLOUDFLARE_D1_DATABASE_ID", self.cloudflare_d1_database_id),
                    ("CLOUDFLARE_API_TOKEN", self.cloudflare_api_token),
                ) if not value
            ]
            if missing:
                raise ValueError(f"D1 store requires {', '.join(missing)}")
        return self

    @classmethod
    def from_env(cls) -> "TempMailConfig":
        return build_config(
            cls,
            domain=env_str("TEMPMAIL_DOMAIN"),
            store=env_str("TEMPMAIL_STORE"),
            cloudflare_account_id=env_str("CLOUDFLARE_ACCOUNT_ID"),
            cloudflare_d1_database_id=env_str("CLOUDFLARE_D1_DATABASE_ID"),
            cloudflare_api_token=env_str("CLOUDFLARE_API_TOKEN"),
        )


@dataclass
class EmailAccount:
    id: str
    address: str
    username: str
    domain: str
    is_active: bool = True
    created_at: str = ""


@dataclass
class EmailMessage:
    id: str
    account_id: str
    from_address: str = ""
    from_name: str = ""
    to_address: str = ""
    subject: str = ""
    text: str = ""
    html: str = ""
    has_attachments: bool = False
    size: int = 0
    seen: bool = False
    created_at: str = ""
    raw: str | None = None

    @property
    def preview(self) -> str:
        return (self.text or "")[:PREVIEW_LENGTH]


@dataclass
class NewMessage:
    account_id: str
    from_address: str
    to_address: str
    subject: str = ""
    from_name: str = ""
    text: str = ""
    html: str = ""
    has_attachments: bool = False
    size: int = 0
    raw: str | None = None


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Raw message parsing
# ---------------------------------------------------------------------------

def parse_raw_message(raw: str | bytes) -> dict[str, Any]:
    """Pull sender, subject, bodies and attachment presence out of RFC 822 source."""
    data = raw.encode("utf-8", errors="replace") if isinstance(raw, str) else raw
    message: MIMEMessage = BytesParser(policy=policy.default).parsebytes(data)

    from_name, from_address = parseaddr(str(message.get("From", "")))

    text_part = message.get_body(preferencelist=("plain",))
    html_part = message.get_body(preferencelist=("html",))
    text = text_part.get_content() if text_part is not None else ""
    html = html_part.get_content() if html_part is not None else ""

    return {
        "from_address": from_address,
        "from_name": from_name,
        "subject": str(message.get("Subject", "")),
        "text": text,
        "html": html,
        "has_attachments": any(True for _ in message.iter_attachments()),
    }


def hydrate_raw(message: EmailMessage) -> EmailMessage:
    """Fill text/html from raw source when the stored bodies are empty."""
    if not message.raw or message.text or message.html:
        return message
    parsed = parse_raw_message(message.raw)
    return replace(
        message,
        from_address=parsed["from_address"] or message.from_address,
        from_name=parsed["from_name"] or message.from_name,
        subject=parsed["subject"] or message.subject,
        text=parsed["text"],
        html=parsed["html"],
        has_attachments=message.has_attachments or parsed["has_attachments"],
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class EmailStore(ABC):
    """Persistence for accounts and messages."""

    @abstractmethod
    async def create_account(self, username: str, domain: str) -> EmailAccount: ...

    @abstractmethod
    async def get_account_by_id(self, account_id: str) -> EmailAccount | None: ...

    @abstractmethod
    async def get_account_by_address(self, address: str) -> EmailAccount | None: ...

    @abstractmethod
    async def list_accounts(self, page: int = 1, limit: int = 20) -> tuple[list[EmailAccount], int]: ...

    @abstractmethod
    async def delete_account(self, account_id: str) -> None: ...

    @abstractmethod
    async def create_message(self, data: NewMessage) -> EmailMessage: ...

    @abstractmethod
    async def get_message_by_id(self, message_id: str) -> EmailMessage | None:
        """Return the message and mark it seen."""
        ...

    @abstractmethod
    async def get_inbox(self, account_id: str, page: int = 1, limit: int = 20) -> tuple[list[EmailMessage], int]: ...

    @abstractmethod
    async def delete_message(self, message_id: str) -> None: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


def _account_exists(address: str) -> TempMailError:
    return TempMailError(f'Account "{address}" already exists', "ACCOUNT_EXISTS", status_code=409)


def _account_not_found(account_id: str) -> TempMailError:
    return TempMailError(f'Account "{account_id}" not found', "NOT_FOUND", status_code=404)


def _message_not_found(message_id: str) -> TempMailError:
    return TempMailError(f'Message "{message_id}" not found', "NOT_FOUND", status_code=404)


class InMemoryEmailStore(EmailStore):
    """Dict-backed store. Newest first in listings."""

    def __init__(self):
        self.accounts: dict[str, EmailAccount] = {}
        self.messages: dict[str, EmailMessage] = {}

    async def create_account(self, username: str, domain: str) -> EmailAccount:
        address = f"{username}@{domain}"
        if any(a.address == address for a in self.accounts.values()):
            raise _account_exists(address)
        account = EmailAccount(
            id=str(uuid.uuid4()),
            address=address,
            username=username,
            domain=domain,
            created_at=_now(),
        )
        self.accounts[account.id] = account
        return replace(account)

    async def get_account_by_id(self, account_id: str) -> EmailAccount | None:
        account = self.accounts.get(account_id)
        return replace(account) if account else None

    async def get_account_by_address(self, address: str) -> EmailAccount | None:
        for account in self.accounts.values():
            if account.address == address and account.is_active:
                return replace(account)
        return None

    async def list_accounts(self, page: int = 1, limit: int = 20) -> tuple[list[EmailAccount], int]:
        active = [a for a in reversed(self.accounts.values()) if a.is_active]
        offset = (page - 1) * limit
        return [replace(a) for a in active[offset:offset + limit]], len(active)

    async def delete_account(self, account_id: str) -> None:
        if account_id not in self.accounts:
            raise _account_not_found(account_id)
        del self.accounts[account_id]
        for message_id in [m.id for m in self.messages.values() if m.account_id == account_id]:
            del self.messages[message_id]

    async def create_message(self, data: NewMessage) -> EmailMessage:
        message = EmailMessage(
            id=str(uuid.uuid4()),
            account_id=data.account_id,
            from_address=data.from_address,
            from_name=data.from_name,
            to_address=data.to_address,
            subject=data.subject,
            text=data.text,
            html=data.html,
            has_attachments=data.has_attachments,
            size=data.size,
            created_at=_now(),
            raw=data.raw,
        )
        self.messages[message.id] = message
        return replace(message)

    async def get_message_by_id(self, message_id: str) -> EmailMessage | None:
        message = self.messages.get(message_id)
        if message is None:
            return None
        message.seen = True
        return hydrate_raw(replace(message))

    async def get_inbox(self, account_id: str, page: int = 1, limit: int = 20) -> tuple[list[EmailMessage], int]:
        inbox = [m for m in reversed(self.messages.values()) if m.account_id == account_id]
        offset = (page - 1) * limit
        return [replace(m) for m in inbox[offset:offset + limit]], len(inbox)

    async def delete_message(self, message_id: str) -> None:
        if message_id not in self.messages:
            raise _message_not_found(message_id)
        del self.messages[message_id]


class D1EmailStore(EmailStore):
    """
    Cloudflare D1 over its REST query endpoint.

    Each statement is one POST of {"sql", "params"}; the response carries
    ``result[0].results`` rows and ``result[0].meta.changes``.
    """

    API_BASE = "https://api.cloudflare.com/client/v4"

    def __init__(
        self,
        account_id: str,
        database_id: str,
        api_token: str,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = f"{self.API_BASE}/accounts/{account_id}/d1/database/{database_id}/query"
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self.headers = {
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        }

    async def query(self, sql: str, params: list[Any] | None = None) -> dict:
        try:
            response = await self.client.post(
                self.url, headers=self.headers, json={"sql": sql, "params": params or []}
            )
        except httpx.TransportError as e:
            raise TempMailError(f"D1 request failed: {e}", NETWORK_ERROR, cause=e) from e

        if response.is_error:
            raise TempMailError(
                f"D1 API error ({response.status_code}): {response.text}",
                "D1_API_ERROR",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TempMailError("D1 returned invalid JSON", "D1_QUERY_ERROR", cause=e) from e
        if not isinstance(body, dict):
            raise TempMailError("D1 returned an unexpected response", "D1_QUERY_ERROR")
        if not body.get("success"):
            errors = body.get("errors") or []
            message = errors[0].get("message") if errors else None
            raise TempMailError(message or "Unknown D1 error", "D1_QUERY_ERROR")
        try:
            return body["result"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise TempMailError("D1 response has no result set", "D1_QUERY_ERROR", cause=e) from e

    @staticmethod
    def _account(row: dict) -> EmailAccount:
        return EmailAccount(
            id=row["id"],
            address=row["address"],
            username=row["username"],
            domain=row["domain"],
            is_active=bool(row.get("is_active", 1)),
            created_at=row.get("created_at") or "",
        )

    @staticmethod
    def _message(row: dict) -> EmailMessage:
        return EmailMessage(
            id=row["id"],
            account_id=row["account_id"],
            from_address=row.get("from_address") or "",
            from_name=row.get("from_name") or "",
            to_address=row.get("to_address") or "",
            subject=row.get("subject") or "",
            text=row.get("text") or "",
            html=row.get("html") or "",
            has_attachments=bool(row.get("has_attachments")),
            size=row.get("size") or 0,
            seen=bool(row.get("seen")),
            created_at=row.get("created_at") or "",
            raw=row.get("raw"),
        )

    async def create_account(self, username: str, domain: str) -> EmailAccount:
        address = f"{username}@{domain}"
        existing = await self.query("SELECT id FROM accounts WHERE address = ?", [address])
        if existing["results"]:
            raise _account_exists(address)

        account_id = str(uuid.uuid4())
        await self.query(
            "INSERT INTO accounts (id, address, username, domain) VALUES (?, ?, ?, ?)",
            [account_id, address, username, domain],
        )
        account = await self.get_account_by_id(account_id)
        if account is None:
            raise TempMailError(f'Account "{address}" was not persisted', "D1_QUERY_ERROR")
        return account

    async def get_account_by_id(self, account_id: str) -> EmailAccount | None:
        result = await self.query("SELECT * FROM accounts WHERE id = ?", [account_id])
        rows = result["results"]
        return self._account(rows[0]) if rows else None

    async def get_account_by_address(self, address: str) -> EmailAccount | None:
        result = await self.query("SELECT * FROM accounts WHERE address = ? AND is_active = 1", [address])
        rows = result["results"]
        return self._account(rows[0]) if rows else None

    async def list_accounts(self, page: int = 1, limit: int = 20) -> tuple[list[EmailAccount], int]:
        offset = (page - 1) * limit
        count = await self.query("SELECT COUNT(*) as count FROM accounts WHERE is_active = 1")
        result = await self.query(
            "SELECT * FROM accounts WHERE is_active = 1 ORDER BY created_at DESC LIMIT ? OFFSET ?",
            [limit, offset],
        )
        return [self._account(r) for r in result["results"]], count["results"][0]["count"]

    async def delete_account(self, account_id: str) -> None:
        await self.query("DELETE FROM messages WHERE account_id = ?", [account_id])
        result = await self.query("DELETE FROM accounts WHERE id = ?", [account_id])
        if result.get("meta", {}).get("changes", 0) == 0:
            raise _account_not_found(account_id)

    async def create_message(self, data: NewMessage) -> EmailMessage:
        message_id = str(uuid.uuid4())
        await self.query(
            "INSERT INTO messages (id, account_id, from_address, from_name, to_address, subject, "
            "text, html, has_attachments, size, raw) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                message_id, data.account_id, data.from_address, data.from_name, data.to_address,
                data.subject, data.text, data.html, 1 if data.has_attachments else 0, data.size, data.raw,
            ],
        )
        result = await self.query("SELECT * FROM messages WHERE id = ?", [message_id])
        return self._message(result["results"][0])

    async def get_message_by_id(self, message_id: str) -> EmailMessage | None:
        result = await self.query("SELECT * FROM messages WHERE id = ?", [message_id])
        rows = result["results"]
        if not rows:
            return None
        await self.query("UPDATE messages SET seen = 1 WHERE id = ?", [message_id])
        message = self._message(rows[0])
        message.seen = True
        return hydrate_raw(message)

    async def get_inbox(self, account_id: str, page: int = 1, limit: int = 20) -> tuple[list[EmailMessage], int]:
        offset = (page - 1) * limit
        count = await self.query("SELECT COUNT(*) as count FROM messages WHERE account_id = ?", [account_id])
        result = await self.query(
            "SELECT id, account_id, from_address, from_name, to_address, subject, text, "
            "has_attachments, size, seen, created_at FROM messages "
            "WHERE account_id = ? ORDER BY created_at DESC LIMIT ? OFFSET ?",
            [account_id, limit, offset],
        )
        return [self._message(r) for r in result["results"]], count["results"][0]["count"]

    async def delete_message(self, message_id: str) -> None:
        result = await self.query("DELETE FROM messages WHERE id = ?", [message_id])
        if result.get("meta", {}).get("changes", 0) == 0:
            raise _message_not_found(message_id)

    async def ping(self) -> bool:
        try:
            await self.query("SELECT 1")
            return True
        except TempMailError as e:
            logger.warning(f"D1 probe failed: {e.message}")
            return False

    async def close(self) -> None:
        await self.client.aclose()


def create_store(config: TempMailConfig) -> EmailStore:
    if config.store == "memory":
        logger.info("Using in-memory email store")
        return InMemoryEmailStore()
    return D1EmailStore(
        config.cloudflare_account_id,
        config.cloudflare_d1_database_id,
        config.cloudflare_api_token,
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class TempMailBackend(Backend):
    display_name = "TempMail store"

    def __init__(self, config: TempMailConfig, store: EmailStore | None = None):
        self.config = config
        self.domain = config.domain
        self.store = store if store is not None else create_store(config)

    async def create_account(self, username: str) -> EmailAccount:
        return await self.store.create_account(username, self.domain)

    async def list_accounts(self, page: int, limit: int) -> tuple[list[EmailAccount], int]:
        return await self.store.list_accounts(page, limit)

    async def delete_account(self, account_id: str) -> None:
        await self.store.delete_account(account_id)

    async def get_inbox(self, account_id: str, page: int, limit: int) -> tuple[EmailAccount, list[EmailMessage], int]:
        account = await self.store.get_account_by_id(account_id)
        if account is None:
            raise _account_not_found(account_id)
        messages, total = await self.store.get_inbox(account_id, page, limit)
        return account, messages, total

    async def read_message(self, message_id: str) -> EmailMessage:
        message = await self.store.get_message_by_id(message_id)
        if message is None:
            raise _message_not_found(message_id)
        return message

    async def delete_message(self, message_id: str) -> None:
        await self.store.delete_message(message_id)

    async def test_connection(self) -> bool:
        return await self.store.ping()

    async def close(self) -> None:
        await self.store.close()
