"""Data models used throughout the download pipeline."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


class Confidence(str, enum.Enum):
    """How much a workspace guess can be trusted."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


@dataclass
class WorkspaceCandidate:
    """A directory that may be the caller's project root."""

    directory: Path
    confidence: Confidence
    source: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "directory": str(self.directory),
            "confidence": self.confidence.value,
            "source": self.source,
        }


@dataclass(frozen=True)
class ResolvedPath:
    """User-supplied destination and the absolute directory it maps to."""

    original: str
    resolved: Path


@dataclass(frozen=True)
class ExportSetting:
    """Export annotation attached to a Figma node."""

    format: str
    constraint_type: str = "SCALE"
    constraint_value: float = 1.0
    suffix: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportSetting":
        constraint = data.get("constraint") or {}
        return cls(
            format=str(data.get("format", "PNG")),
            constraint_type=str(constraint.get("type", "SCALE")),
            constraint_value=float(constraint.get("value", 1) or 1),
            suffix=data.get("suffix") or "",
        )

    @property
    def extension(self) -> str:
        return self.format.lower()

    @property
    def scale(self) -> float:
        """Render scale; WIDTH/HEIGHT constraints render at 1x and SVG is always 1x."""
        if self.extension == "svg":
            return 1.0
        if self.constraint_type == "SCALE":
            return self.constraint_value
        return 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": self.format,
            "constraint": {"type": self.constraint_type, "value": self.constraint_value},
            "suffix": self.suffix,
        }


@dataclass
class DownloadTask:
    """One node rendered with one export setting into one file."""

    node_id: str
    node: Dict[str, Any]
    format: str
    scale: float
    export_setting: Optional[ExportSetting] = None
    target_filename: str = ""
    write_path: Optional[Path] = None


@dataclass
class DownloadResult:
    """Outcome of fetching and writing a single task."""

    node_id: str
    node_name: str
    file_path: str
    success: bool
    error: Optional[str] = None
    export_setting: Optional[ExportSetting] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeId": self.node_id,
            "nodeName": self.node_name,
            "filePath": self.file_path,
            "success": self.success,
        }
        if self.error:
            data["error"] = self.error
        if self.export_setting is not None:
            data["exportSetting"] = self.export_setting.to_dict()
        return data


@dataclass
class VerificationRecord:
    """Observed state of an expected output file."""

    path: str
    exists: bool
    size: Optional[int] = None
    relative_path: Optional[str] = None


@dataclass
class RecoveryEntry:
    """A stray file found elsewhere and the attempt to move it back."""

    node_id: str
    node_name: str
    old_path: str
    new_path: str
    success: bool
    error: Optional[str] = None


@dataclass
class RecoveryReport:
    """Summary of a verification and recovery pass over one batch."""

    records: List[VerificationRecord] = field(default_factory=list)
    recovered: List[RecoveryEntry] = field(default_factory=list)
    checked: int = 0
    in_place: int = 0
    recovered_count: int = 0
    failed: int = 0

    @property
    def state(self) -> str:
        if self.failed:
            return "partial_failure"
        if self.recovered_count:
            return "recovered"
        return "reconciled"

    def summary(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "inPlace": self.in_place,
            "recovered": self.recovered_count,
            "failed": self.failed,
            "state": self.state,
        }


@dataclass
class DownloadReport:
    """Everything a download call reports back to its caller."""

    destination: str
    results: List[DownloadResult] = field(default_factory=list)
    skipped: Optional[int] = None
    enforcement: Optional["WorkspaceEnforcement"] = None
    recovery: Optional[RecoveryReport] = None

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.success)

    def summary(self) -> Dict[str, int]:
        data = {
            "total": len(self.results),
            "successful": self.successful,
            "failed": len(self.results) - self.successful,
        }
        if self.skipped is not None:
            data["skipped"] = self.skipped
        return data

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "localPath": self.destination,
            "downloaded": [result.to_dict() for result in self.results],
            "summary": self.summary(),
            "workspaceEnforcement": self.enforcement.to_dict() if self.enforcement else None,
        }
        if self.recovery is not None:
            data["verification"] = self.recovery.summary()
            data["recovered"] = [asdict(entry) for entry in self.recovery.recovered]
        return data


@dataclass
class WorkspaceEnforcement:
    """Result of moving a batch into the detected workspace."""

    final_location: str
    workspace_source: str
    confidence: Confidence
    already_correct: int = 0
    moved: int = 0
    failed: int = 0
    entries: List[RecoveryEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finalLocation": self.final_location,
            "moved": self.moved,
            "alreadyCorrect": self.already_correct,
            "failed": self.failed,
            "workspaceSource": self.workspace_source,
            "confidence": self.confidence.value,
            "entries": [asdict(entry) for entry in self.entries],
        }
