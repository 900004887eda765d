"""Host page port.

The moderator never touches the host inbox directly. Adapters (a browser
automation layer, or the in-memory page used by the tests) implement this
protocol; the core treats every row handle as opaque and tolerates missing
or changing data on every read.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from .models import Badge, Control, MessageRow


class HostPage(Protocol):
    """Read access to the rendered message list plus a narrow set of writes."""

    async def list_rows(self) -> list[Any]:
        """Return handles for the currently rendered rows, in DOM order."""
        ...

    async def read_row(self, row: Any) -> MessageRow:
        ...

    async def get_attribute(self, row: Any, name: str) -> Optional[str]:
        ...

    async def set_attribute(self, row: Any, name: str, value: str) -> None:
        ...

    async def remove_attribute(self, row: Any, name: str) -> None:
        ...

    async def add_badge(self, row: Any, badge: Badge) -> None:
        """Replace any existing badge on the row with ``badge``."""
        ...

    async def has_badge(self, row: Any) -> bool:
        ...

    async def clear_decorations(self, row: Any) -> None:
        ...

    async def scroll_into_view(self, row: Any) -> None:
        ...

    async def scroll_to_top(self) -> None:
        ...

    async def scroll_forward(self) -> bool:
        """Scroll the list forward; return True if the scroll offset moved."""
        ...

    async def row_controls(self, row: Any) -> list[Control]:
        """Buttons rendered inside the row (more actions, mark complete...)."""
        ...

    async def visible_menu_items(self) -> list[Control]:
        ...

    async def confirmation_controls(self) -> list[Control]:
        """Visible confirm buttons of any open dialog."""
        ...

    async def click(self, control: Control) -> None:
        ...

    async def dismiss_menu(self) -> None:
        ...

    async def new_messages_banner(self) -> Optional[Control]:
        """The visible "new messages" banner button, if any."""
        ...
