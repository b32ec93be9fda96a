"""Quality Upgrade Sequencer: play the video and try to switch it to HD.

Purely opportunistic. A missing control or a failed click ends the sequence
at the current quality; nothing here can fail an extraction except a closed
session, which is a caller bug.
"""

from __future__ import annotations

import asyncio
import enum
from typing import Any, Optional

from ad_media_extractor.errors import ErrorKind, ExtractionError
from ad_media_extractor.probe.dom import DomProbe
from ad_media_extractor.trail import ExtractionTrail
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)


class SequencerState(str, enum.Enum):
    IDLE = "idle"
    PLAYED = "played"
    SETTINGS_OPEN = "settings_open"
    QUALITY_MENU_OPEN = "quality_menu_open"
    HD_SELECTED = "hd_selected"
    DONE = "done"


# (control label, state reached after clicking it, skip the step if absent)
STEPS: tuple[tuple[str, SequencerState, bool], ...] = (
    ("play", SequencerState.PLAYED, True),
    ("settings", SequencerState.SETTINGS_OPEN, False),
    ("quality", SequencerState.QUALITY_MENU_OPEN, False),
    ("hd", SequencerState.HD_SELECTED, False),
)


class QualityUpgradeSequencer:
    """Linear idle → played → settings_open → quality_menu_open → hd_selected."""

    def __init__(self, config: dict[str, Any], trail: Optional[ExtractionTrail] = None):
        seq_cfg = config.get("sequencer", {})
        self.enabled = seq_cfg.get("enabled", True)
        self.step_delay = seq_cfg.get("step_delay", 1.0)
        self.trail = trail or ExtractionTrail()
        self.state = SequencerState.IDLE
        self.history: list[SequencerState] = [SequencerState.IDLE]

    async def run(self, probe: DomProbe) -> SequencerState:
        """Drive the sequence to a terminal state and return it."""
        if not self.enabled:
            self._transition(SequencerState.DONE, reason="disabled")
            return self.state

        for label, target, optional in STEPS:
            try:
                handle = await probe.find_interactive_control(label)
                if handle is None:
                    if optional:
                        self.trail.add("sequencer.skipped", control=label)
                        continue
                    self._transition(SequencerState.DONE, reason=f"no '{label}' control")
                    return self.state

                if not await probe.click_control(handle):
                    self._transition(SequencerState.DONE, reason=f"'{label}' click missed")
                    return self.state
            except ExtractionError as e:
                if e.kind == ErrorKind.SESSION_CLOSED_EARLY:
                    raise
                logger.debug(f"Quality upgrade stopped at {self.state.value}: {e}")
                self._transition(SequencerState.DONE, reason=f"'{label}' failed: {e.message}")
                return self.state

            self._transition(target, control=handle.description or label)
            await asyncio.sleep(self.step_delay)

        return self.state

    @property
    def upgraded(self) -> bool:
        return SequencerState.HD_SELECTED in self.history

    def _transition(self, state: SequencerState, **detail: Any) -> None:
        previous = self.state
        self.state = state
        self.history.append(state)
        self.trail.add("sequencer.transition", from_state=previous.value, to_state=state.value, **detail)
