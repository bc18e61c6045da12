from __future__ import annotations

from dataclasses import dataclass

from .errors import AuthError


class AuthStrategy:
    async def get_headers(self) -> dict[str, str]:
        raise NotImplementedError


@dataclass(frozen=True)
class StaticHeadersAuth(AuthStrategy):
    headers: dict[str, str]

    async def get_headers(self) -> dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class ApiKeyHeaderAuth(AuthStrategy):
    """Evolution API authenticates every call with the account key in the `apikey` header."""

    api_key: str
    header_name: str = "apikey"

    async def get_headers(self) -> dict[str, str]:
        if not self.api_key:
            raise AuthError("Credencial de API key ausente.", transient=False)
        return {self.header_name: self.api_key}
