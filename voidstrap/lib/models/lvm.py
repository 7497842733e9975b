from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, field_validator

from .device import FilesystemType, Size, Unit

DEFAULT_EXTENT_SIZE = Size(4, Unit.MiB)


class Allocation(Enum):
	ALL_REMAINING = '100%FREE'


ALL_REMAINING = Allocation.ALL_REMAINING


@dataclass
class LogicalVolume:
	name: str
	vg_name: str
	length: Size | Allocation
	fs_type: FilesystemType | None = None

	@property
	def dev_path(self) -> Path:
		return Path(f'/dev/{self.vg_name}/{self.name}')

	@property
	def takes_remaining(self) -> bool:
		return self.length == ALL_REMAINING


@dataclass
class VolumeGroup:
	name: str
	pv_path: Path
	size: Size
	free: Size
	extent_size: Size = field(default_factory=lambda: DEFAULT_EXTENT_SIZE)
	volumes: list[LogicalVolume] = field(default_factory=list)

	@property
	def has_remaining_volume(self) -> bool:
		return any(vol.takes_remaining for vol in self.volumes)

	def round_to_extents(self, size: Size) -> Size:
		extent = self.extent_size.bytes
		extents = math.ceil(size.bytes / extent)
		return Size(extents * extent, Unit.B)

	def get_volume(self, name: str) -> LogicalVolume | None:
		return next((vol for vol in self.volumes if vol.name == name), None)


class _VgReportEntry(BaseModel):
	vg_name: str
	vg_uuid: str | None = None
	vg_size: int = 0
	vg_free: int = 0

	@field_validator('vg_size', 'vg_free', mode='before')
	@classmethod
	def strip_unit(cls, v: str | int) -> int:
		# --unit B renders sizes as "1234B"
		if isinstance(v, str):
			return int(v.removesuffix('B') or 0)
		return v


class _VgReport(BaseModel):
	vg: list[_VgReportEntry]


class VgsOutput(BaseModel):
	report: list[_VgReport]

	def groups(self) -> list[_VgReportEntry]:
		return [entry for report in self.report for entry in report.vg]
