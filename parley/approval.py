"""Per-tool approval policy.

Decisions live in a small key-value store that is separate from chat history
and settings. A global "yolo" flag auto-approves every tool; otherwise a tool
runs without asking only when it was approved with "always".
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from enum import Enum
from os import PathLike
from pathlib import Path

from parley.log import logger

TOOL_APPROVAL_PREFIX = "tool_approval_"
YOLO_MODE_KEY = "tool_approval_yolo_mode"


class ApprovalStatus(str, Enum):
    YOLO = "yolo"
    ALWAYS = "always"
    PROMPT = "prompt"

    @property
    def auto_approved(self) -> bool:
        return self in (ApprovalStatus.YOLO, ApprovalStatus.ALWAYS)


class ApprovalChoice(str, Enum):
    YOLO = "yolo"
    ALWAYS = "always"
    ONCE = "once"
    DENY = "deny"


class ApprovalPolicy(ABC):
    @abstractmethod
    def get_item(self, key: str) -> str | None: ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None: ...

    @abstractmethod
    def remove_item(self, key: str) -> None: ...

    @abstractmethod
    def keys(self) -> list[str]: ...

    def get(self, tool_name: str) -> ApprovalStatus:
        try:
            if self.get_item(YOLO_MODE_KEY) == "true":
                return ApprovalStatus.YOLO
            if self.get_item(f"{TOOL_APPROVAL_PREFIX}{tool_name}") == "always":
                return ApprovalStatus.ALWAYS
        except Exception as e:
            # Prompt when the store is unreadable
            logger.exception(f"Error reading approval status for tool '{tool_name}': {e}")
        return ApprovalStatus.PROMPT

    def set(self, tool_name: str, choice: ApprovalChoice) -> None:
        choice = ApprovalChoice(choice)
        try:
            if choice == ApprovalChoice.YOLO:
                self.set_item(YOLO_MODE_KEY, "true")
            elif choice == ApprovalChoice.ALWAYS:
                self.set_item(f"{TOOL_APPROVAL_PREFIX}{tool_name}", "always")
                self.remove_item(YOLO_MODE_KEY)
            else:
                self.remove_item(YOLO_MODE_KEY)
        except Exception as e:
            logger.exception(f"Error writing approval status '{choice.value}' for tool '{tool_name}': {e}")

    def is_yolo(self) -> bool:
        return self.get_item(YOLO_MODE_KEY) == "true"

    def list_always(self) -> list[str]:
        return sorted(
            key.removeprefix(TOOL_APPROVAL_PREFIX)
            for key in self.keys()
            if key != YOLO_MODE_KEY and key.startswith(TOOL_APPROVAL_PREFIX) and self.get_item(key) == "always"
        )

    def reset(self) -> None:
        for key in self.keys():
            if key.startswith(TOOL_APPROVAL_PREFIX):
                self.remove_item(key)


class InMemoryApprovalPolicy(ApprovalPolicy):
    def __init__(self, items: dict[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self.items)


class JsonFileApprovalPolicy(ApprovalPolicy):
    """Approval decisions stored as a flat JSON object on disk."""

    def __init__(self, path: PathLike | str) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text())
        if not isinstance(data, dict):
            raise ValueError(f"Approval store {self.path} must contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _dump(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(items, indent=2, sort_keys=True))
        tmp_path.replace(self.path)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        self._dump(items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if key in items:
            del items[key]
            self._dump(items)

    def keys(self) -> list[str]:
        return list(self._load())
