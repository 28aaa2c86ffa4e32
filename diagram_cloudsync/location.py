"""Magic-link callback handling on the navigation location."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import parse_qs, urlsplit, urlunsplit


class Location(Protocol):
    """The current navigation location of the host application."""

    @property
    def href(self) -> str: ...

    def replace(self, url: str) -> None: ...


class HistoryLocation:
    """In-memory location with a history list.

    ``replace`` swaps the current entry in place so the previous URL does not
    survive in the navigation history.
    """

    def __init__(self, url: str = "") -> None:
        self.entries: list[str] = [url]

    @property
    def href(self) -> str:
        return self.entries[-1]

    def push(self, url: str) -> None:
        self.entries.append(url)

    def replace(self, url: str) -> None:
        self.entries[-1] = url


@dataclass(slots=True, frozen=True)
class MagicLinkTokens:
    access_token: str
    refresh_token: str | None = None


def parse_fragment(url: str) -> MagicLinkTokens | None:
    """Return the tokens carried in the URL fragment of a magic-link callback."""

    fragment = urlsplit(url).fragment
    if not fragment:
        return None
    params = parse_qs(fragment, keep_blank_values=False)
    access = params.get("access_token")
    if not access or not access[0]:
        return None
    refresh = params.get("refresh_token")
    return MagicLinkTokens(access_token=access[0], refresh_token=refresh[0] if refresh else None)


def strip_fragment(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, parts.query, ""))


__all__ = ["HistoryLocation", "Location", "MagicLinkTokens", "parse_fragment", "strip_fragment"]
