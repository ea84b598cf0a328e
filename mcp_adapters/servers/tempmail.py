"""
TempMail MCP server: disposable email accounts and their inboxes.

Storage is Cloudflare D1 by default; TEMPMAIL_STORE=memory keeps
everything in process memory (handy for local runs and tests).

Launch:
    TEMPMAIL_STORE=memory TEMPMAIL_DOMAIN=mail.test python -m mcp_adapters.servers.tempmail
"""

from __future__ import annotations

from pydantic import Field

from mcp_adapters import __version__
from mcp_adapters.backends.tempmail import TempMailBackend, TempMailConfig
from mcp_adapters.lifecycle import run_server
from mcp_adapters.schema import PaginationParams, ToolParams
from mcp_adapters.server import ToolHandler, ToolServer


class CreateAccountParams(ToolParams):
    username: str = Field(
        min_length=1,
        pattern=r"^[a-zA-Z0-9._-]+$",
        description="Local part of the address (letters, numbers, dots, hyphens, underscores)",
    )


class AccountParams(ToolParams):
    account_id: str = Field(min_length=1, description="Account ID")


class InboxParams(PaginationParams):
    account_id: str = Field(min_length=1, description="Account ID")


class MessageParams(ToolParams):
    message_id: str = Field(min_length=1, description="Message ID")


class TempMailTool(ToolHandler):
    def __init__(self, mail: TempMailBackend):
        self.mail = mail


class GetDomainsTool(TempMailTool):
    name = "get_domains"
    title = "Get Available Domains"
    description = "Get the list of available email domains for creating temporary email accounts"

    async def handle(self, params) -> dict:
        return {
            "domains": [self.mail.domain],
            "info": "Use any of these domains when creating a new email account.",
        }


class CreateEmailAccountTool(TempMailTool):
    name = "create_email_account"
    title = "Create Email Account"
    description = (
        "Create a new temporary email account. Provide a username and the system "
        "will create an email address with the configured domain."
    )
    params_model = CreateAccountParams
    context_fields = ("username",)

    async def handle(self, params: CreateAccountParams) -> dict:
        account = await self.mail.create_account(params.username)
        return {
            "success": True,
            "account": {
                "id": account.id,
                "address": account.address,
                "username": account.username,
                "domain": account.domain,
                "createdAt": account.created_at,
            },
            "info": f"Email account created. Emails sent to {account.address} will be received by this server.",
        }


class ListEmailAccountsTool(TempMailTool):
    name = "list_email_accounts"
    title = "List Email Accounts"
    description = "List all active temporary email accounts with pagination support"
    params_model = PaginationParams

    async def handle(self, params: PaginationParams) -> dict:
        accounts, total = await self.mail.list_accounts(params.page, params.limit)
        return {
            "accounts": [{"id": a.id, "address": a.address, "createdAt": a.created_at} for a in accounts],
            "total": total,
            "page": params.page,
            "limit": params.limit,
        }


class DeleteEmailAccountTool(TempMailTool):
    name = "delete_email_account"
    title = "Delete Email Account"
    description = "Delete a temporary email account and all its messages permanently"
    params_model = AccountParams
    context_fields = ("accountId",)

    async def handle(self, params: AccountParams) -> dict:
        await self.mail.delete_account(params.account_id)
        return {
            "success": True,
            "message": f'Account "{params.account_id}" and all its messages have been deleted.',
        }


class GetInboxTool(TempMailTool):
    name = "get_inbox"
    title = "Get Inbox"
    description = "Get the list of messages received by a specific email account with pagination"
    params_model = InboxParams
    context_fields = ("accountId",)

    async def handle(self, params: InboxParams) -> dict:
        account, messages, total = await self.mail.get_inbox(params.account_id, params.page, params.limit)
        return {
            "account": account.address,
            "messages": [
                {
                    "id": m.id,
                    "from": m.from_address,
                    "fromName": m.from_name,
                    "subject": m.subject,
                    "preview": m.preview,
                    "hasAttachments": m.has_attachments,
                    "seen": m.seen,
                    "receivedAt": m.created_at,
                }
                for m in messages
            ],
            "total": total,
            "page": params.page,
            "limit": params.limit,
        }


class ReadEmailTool(TempMailTool):
    name = "read_email"
    title = "Read Email"
    description = "Read the full content of a specific email message including text and HTML body"
    params_model = MessageParams
    context_fields = ("messageId",)

    async def handle(self, params: MessageParams) -> dict:
        m = await self.mail.read_message(params.message_id)
        return {
            "id": m.id,
            "from": m.from_address,
            "fromName": m.from_name,
            "to": m.to_address,
            "subject": m.subject,
            "text": m.text,
            "html": m.html,
            "hasAttachments": m.has_attachments,
            "size": m.size,
            "receivedAt": m.created_at,
        }


class DeleteEmailTool(TempMailTool):
    name = "delete_email"
    title = "Delete Email"
    description = "Delete a specific email message permanently"
    params_model = MessageParams
    context_fields = ("messageId",)

    async def handle(self, params: MessageParams) -> dict:
        await self.mail.delete_message(params.message_id)
        return {
            "success": True,
            "message": f'Message "{params.message_id}" deleted successfully.',
        }


TOOLS = (
    GetDomainsTool,
    CreateEmailAccountTool,
    ListEmailAccountsTool,
    DeleteEmailAccountTool,
    GetInboxTool,
    ReadEmailTool,
    DeleteEmailTool,
)


def build_server(backend: TempMailBackend, call_timeout: float | None = None) -> ToolServer:
    server = ToolServer("tempmail-mcp-server", __version__, call_timeout=call_timeout)
    for tool_class in TOOLS:
        server.register(tool_class(backend))
    return server


def main() -> None:
    run_server(lambda: TempMailBackend(TempMailConfig.from_env()), build_server)


if __name__ == "__main__":
    main()
