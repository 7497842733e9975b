from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from .device import FilesystemType


@dataclass(frozen=True)
class MountEntry:
	source: Path
	target: Path
	fs_type: FilesystemType
	options: tuple[str, ...] = ()
	label: str | None = None

	@property
	def depth(self) -> int:
		return len(self.target.parts)


@dataclass
class MountPlan:
	entries: list[MountEntry] = field(default_factory=list)
	swap: list[Path] = field(default_factory=list)

	@classmethod
	def ordered(cls, entries: list[MountEntry], swap: list[Path] | None = None) -> MountPlan:
		"""
		Parents have fewer path components than their children, so a
		stable sort on depth puts / before /boot, /var and /home.
		"""
		return cls(sorted(entries, key=lambda e: (e.depth, str(e.target))), list(swap or []))

	def __iter__(self) -> Iterator[MountEntry]:
		return iter(self.entries)

	def __len__(self) -> int:
		return len(self.entries)
