"""Repeating tool call detector.

Detects when the model issues the same tool call over and over in one
execution loop. The bridge answers such a call with a redirect message
instead of running the tool again.
"""

import json
from dataclasses import dataclass
from typing import Any

from agentflow.domain.model.chain.message import ToolCall

DEFAULT_REPEATING_THRESHOLD = 3

# Free-text fields that vary between otherwise identical calls.
VOLATILE_ARGUMENTS = frozenset({"message"})


@dataclass(frozen=True)
class CallSignature:
    """Normalized identity of a tool call."""

    name: str
    arguments: str


class RepeatingCallDetector:
    """Tracks the last run of identical tool calls.

    A call equal to the previous one extends the run; any other call starts a
    new run. Once the run reaches ``threshold`` the call is reported as
    repeating, and every further identical call is too.

    Example:
        detector = RepeatingCallDetector(threshold=3)

        call = ToolCall(id="1", name="terminal", arguments='{"cmd": "ls"}')
        detector.detect(call)  # False
        detector.detect(call)  # False
        detector.detect(call)  # True

        other = ToolCall(id="2", name="terminal", arguments='{"cmd": "pwd"}')
        detector.detect(other)  # False, run reset
    """

    def __init__(self, threshold: int = DEFAULT_REPEATING_THRESHOLD) -> None:
        """
        Initialize the detector.

        Args:
            threshold: Run length at which calls count as repeating (default: 3)
        """
        self.threshold = threshold
        self._run: list[CallSignature] = []

    @staticmethod
    def _format_value(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value, sort_keys=True, ensure_ascii=False)

    def normalize(self, tool_call: ToolCall) -> CallSignature:
        """Drop volatile fields and sort keys; unparsable arguments compare raw."""
        try:
            args = json.loads(tool_call.arguments)
        except (TypeError, ValueError):
            return CallSignature(name=tool_call.name, arguments=tool_call.arguments)
        if not isinstance(args, dict):
            return CallSignature(name=tool_call.name, arguments=tool_call.arguments)

        lines = [
            f"{key}: {self._format_value(args[key])}\n"
            for key in sorted(args)
            if key not in VOLATILE_ARGUMENTS
        ]
        return CallSignature(name=tool_call.name, arguments="".join(lines))

    def detect(self, tool_call: ToolCall) -> bool:
        """Record the call and return True if it is repeating."""
        signature = self.normalize(tool_call)

        if not self._run or self._run[-1] != signature:
            self._run = [signature]
            return False

        self._run.append(signature)
        return len(self._run) >= self.threshold

    def reset(self) -> None:
        self._run.clear()

    @property
    def run_length(self) -> int:
        return len(self._run)
