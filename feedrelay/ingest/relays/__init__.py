"""Relay strategy registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)


class ResponseShape(Enum):
    """How a relay hands back the target body."""
    STREAM = "stream"  # Raw bytes of the target
    JSON = "json"      # JSON envelope, body in the "contents" field


@dataclass(frozen=True)
class RelayStrategy:
    """An intermediary path to a target URL.

    ``url_template`` placeholders: ``{url}`` is the raw target URL,
    ``{encoded}`` the fully percent-encoded one.
    """

    name: str
    url_template: str
    shape: ResponseShape = ResponseShape.STREAM
    direct: bool = False

    def build_url(self, target: str) -> str:
        return self.url_template.format(url=target, encoded=quote(target, safe=""))


DIRECT = RelayStrategy(name="Direct", url_template="{url}", direct=True)

_RELAYS: list[RelayStrategy] = [
    RelayStrategy(
        name="AllOrigins (Raw)",
        url_template="https://api.allorigins.win/raw?url={encoded}",
    ),
    RelayStrategy(
        name="AllOrigins (JSON)",
        url_template="https://api.allorigins.win/get?url={encoded}",
        shape=ResponseShape.JSON,
    ),
    RelayStrategy(
        name="CorsProxy.io",
        url_template="https://corsproxy.io/?{encoded}",
    ),
    RelayStrategy(
        name="Yacdn",
        url_template="https://yacdn.org/proxy/{url}",
    ),
    RelayStrategy(
        name="ThingProxy",
        url_template="https://thingproxy.freeboard.io/fetch/{url}",
    ),
    # Works only when the origin allows it, so never the sole option
    DIRECT,
]


def all_relays() -> list[RelayStrategy]:
    """Every registered relay in race order."""
    return list(_RELAYS)


def get_relays(names: Optional[Iterable[str]] = None) -> list[RelayStrategy]:
    """
    Get the relays to race, preserving registry order.

    Args:
        names: Relay names to keep (None or empty = all)

    Returns:
        Ordered relay list. The direct strategy is always appended, and at
        least one intermediary relay is always kept alongside it.
    """
    wanted = {n.lower() for n in names} if names else set()
    if not wanted:
        return all_relays()

    selected = [r for r in _RELAYS if r.name.lower() in wanted and not r.direct]
    unknown = wanted - {r.name.lower() for r in _RELAYS}
    if unknown:
        logger.warning(f"Ignoring unknown relays: {sorted(unknown)}")

    if not selected:
        logger.warning("No intermediary relay selected, racing the full registry")
        return all_relays()

    return selected + [DIRECT]
