"""
Risk Limits - Safety Warning Board.

============================================================
PURPOSE
============================================================
Holds active SafetyWarnings for all accounts.

LIFECYCLE:
    raised by the evaluator (upsert by warning_id)
        │
        ├──► dismissed  (explicit user action)
        └──► resolved   (underlying condition cleared)

Nothing else removes a warning.

============================================================
"""

import logging
from typing import Callable, Dict, List, Optional

from .types import SafetyWarning


logger = logging.getLogger(__name__)


WarningListener = Callable[[str, SafetyWarning], None]
"""Called with (event, warning); event is raised/dismissed/resolved."""


class SafetyWarningBoard:
    """In-memory board of active warnings, keyed by warning_id."""

    def __init__(self):
        self._warnings: Dict[str, SafetyWarning] = {}
        self._listeners: List[WarningListener] = []

    def __len__(self) -> int:
        return len(self._warnings)

    def __contains__(self, warning_id: str) -> bool:
        return warning_id in self._warnings

    def add_listener(self, listener: WarningListener) -> None:
        """Subscribe to warning changes."""
        self._listeners.append(listener)

    def raise_warning(self, warning: SafetyWarning) -> SafetyWarning:
        """
        Add a warning, replacing any active warning with the same id.

        The original creation time is kept when a warning is refreshed.
        """
        existing = self._warnings.get(warning.warning_id)
        if existing is not None:
            warning.created_at = existing.created_at

        self._warnings[warning.warning_id] = warning
        self._notify("raised", warning)
        return warning

    def dismiss(self, warning_id: str) -> bool:
        """Remove a warning on explicit user request."""
        warning = self._warnings.pop(warning_id, None)
        if warning is None:
            return False

        logger.info(f"Warning {warning_id} dismissed by user")
        self._notify("dismissed", warning)
        return True

    def resolve(self, warning_id: str) -> bool:
        """Remove a warning whose underlying condition cleared."""
        warning = self._warnings.pop(warning_id, None)
        if warning is None:
            return False

        logger.info(f"Warning {warning_id} resolved")
        self._notify("resolved", warning)
        return True

    def get(self, warning_id: str) -> Optional[SafetyWarning]:
        return self._warnings.get(warning_id)

    def active(self, account_id: Optional[str] = None) -> List[SafetyWarning]:
        """Active warnings, most severe first, then oldest first."""
        warnings = [
            w for w in self._warnings.values()
            if account_id is None or w.account_id == account_id
        ]
        return sorted(
            warnings,
            key=lambda w: (-w.severity.severity_order, w.created_at),
        )

    def _notify(self, event: str, warning: SafetyWarning) -> None:
        for listener in self._listeners:
            try:
                listener(event, warning)
            except Exception as e:
                logger.error(f"Warning listener error: {e}")
