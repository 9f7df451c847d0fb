"""View/edit state machine for a single numeric setpoint field.

    VIEWING --activate--> EDITING --commit--> VIEWING
                                  --cancel--> VIEWING

The draft is held in display units (e.g. volts) and converted to device
integer units (mV/mA) on commit. Each field owns its own draft.
"""

import enum
import math
from typing import Awaitable, Callable, Optional

from constants import UNITS_PER_DISPLAY


class FieldState(enum.Enum):
    VIEWING = "viewing"
    EDITING = "editing"


class InvalidDraftError(ValueError):
    """Draft text is not a usable number. Nothing was written."""


class EditableField:
    """Tracks one field's mode and draft text; commits through `on_save`."""

    COMMIT_KEYS = ("enter",)
    CANCEL_KEYS = ("escape",)

    def __init__(self, field_id: str, on_save: Callable[[int], Awaitable[object]],
                 scale: int = UNITS_PER_DISPLAY, decimals: int = 2, suffix: str = ""):
        self.field_id = field_id
        self.on_save = on_save
        self.scale = scale
        self.decimals = decimals
        self.suffix = suffix
        self.state = FieldState.VIEWING
        self._draft: Optional[str] = None

    @property
    def editing(self) -> bool:
        return self.state is FieldState.EDITING

    @property
    def draft(self) -> Optional[str]:
        """Current draft text, None while viewing."""
        return self._draft

    def format_value(self, device_units) -> str:
        """Display text for a device value, e.g. 5000 -> '5.00'."""
        return f"{device_units / self.scale:.{self.decimals}f}"

    # ---- Transitions ----

    def activate(self, display_value: str):
        """Enter edit mode seeded with the current display value."""
        if self.editing:
            return
        self._draft = display_value
        self.state = FieldState.EDITING

    def set_draft(self, text: str):
        if not self.editing:
            raise RuntimeError(f"{self.field_id}: not editing")
        self._draft = text

    def cancel(self):
        """Discard the draft. No write."""
        self._draft = None
        self.state = FieldState.VIEWING

    async def commit(self):
        """Parse the draft, leave edit mode and hand device units to on_save.

        An unparsable, non-finite or negative draft raises InvalidDraftError
        and keeps the field in edit mode with the draft untouched.
        """
        if not self.editing:
            raise RuntimeError(f"{self.field_id}: not editing")
        units = self.parse_draft(self._draft)
        self._draft = None
        self.state = FieldState.VIEWING
        await self.on_save(units)

    async def handle_key(self, key: str) -> bool:
        """Route an accept/reject keystroke. Returns True if it was consumed."""
        if not self.editing:
            return False
        if key in self.COMMIT_KEYS:
            await self.commit()
            return True
        if key in self.CANCEL_KEYS:
            self.cancel()
            return True
        return False

    def parse_draft(self, text: Optional[str]) -> int:
        """Display-unit text -> device integer units."""
        return to_device_units(text, self.scale, self.field_id)


def to_device_units(text: Optional[str], scale: int = UNITS_PER_DISPLAY,
                    field_id: str = "value") -> int:
    """Parse display-unit text (e.g. '5.25' V) into device units (5250 mV).

    Raises InvalidDraftError for unparsable, non-finite or negative input.
    """
    try:
        value = float((text or "").strip())
    except ValueError:
        raise InvalidDraftError(f"{field_id}: '{text}' is not a number") from None
    if not math.isfinite(value):
        raise InvalidDraftError(f"{field_id}: '{text}' is not a finite number")
    if value < 0:
        raise InvalidDraftError(f"{field_id}: value must not be negative")
    return round(value * scale)
