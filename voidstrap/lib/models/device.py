from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import override

from pydantic import BaseModel, Field, ValidationInfo, field_validator

# Partitions start at this sector, which lines up with the erase
# block sizes of common SSD/NVMe drives
FIRST_USABLE_SECTOR = 2048

# 32 sectors of backup partition entries plus the backup header
GPT_BACKUP_SECTORS = 33


class Unit(Enum):
	B = 1  # byte
	kB = 1000**1  # kilobyte
	MB = 1000**2  # megabyte
	GB = 1000**3  # gigabyte
	TB = 1000**4  # terabyte

	KiB = 1024**1  # kibibyte
	MiB = 1024**2  # mebibyte
	GiB = 1024**3  # gibibyte
	TiB = 1024**4  # tebibyte

	sectors = 'sectors'  # size in sector

	@staticmethod
	def get_binary_units() -> list[Unit]:
		return [u for u in Unit if 'i' in u.name or u.name == 'B']


@dataclass(frozen=True)
class SectorSize:
	value: int
	unit: Unit = Unit.B

	def __post_init__(self) -> None:
		if self.unit == Unit.sectors:
			raise ValueError('Unit type sector not allowed for SectorSize')

	@staticmethod
	def default() -> SectorSize:
		return SectorSize(512, Unit.B)

	def normalize(self) -> int:
		"""
		will normalize the value of the unit to Byte
		"""
		return int(self.value * self.unit.value)


@dataclass
class Size:
	value: int
	unit: Unit
	sector_size: SectorSize = field(default_factory=SectorSize.default)

	def __post_init__(self) -> None:
		if not isinstance(self.sector_size, SectorSize):
			raise ValueError('sector size must be of type SectorSize')

	def convert(
		self,
		target_unit: Unit,
		sector_size: SectorSize | None = None,
	) -> Size:
		if target_unit == Unit.sectors and sector_size is None:
			sector_size = self.sector_size

		if self.unit == target_unit and (target_unit != Unit.sectors or sector_size == self.sector_size):
			return self

		norm = self._normalize()

		if target_unit == Unit.sectors and sector_size is not None:
			# a partial sector still occupies a whole one on disk
			return Size(math.ceil(norm / sector_size.normalize()), Unit.sectors, sector_size)

		return Size(norm // target_unit.value, target_unit, self.sector_size)

	def format_size(self, target_unit: Unit, include_unit: bool = True) -> str:
		target_size = self.convert(target_unit)

		if include_unit:
			return f'{target_size.value} {target_unit.name}'
		return f'{target_size.value}'

	def format_highest(self) -> str:
		size = float(self._normalize())
		unit = Unit.B

		for binary_unit in Unit.get_binary_units()[1:]:
			if size < 1024:
				break
			size /= 1024
			unit = binary_unit

		formatted_size = f'{size:.1f}'.removesuffix('.0')
		return f'{formatted_size} {unit.name}'

	def _normalize(self) -> int:
		"""
		will normalize the value of the unit to Byte
		"""
		if self.unit == Unit.sectors:
			return self.value * self.sector_size.normalize()
		return int(self.value * self.unit.value)

	@property
	def bytes(self) -> int:
		return self._normalize()

	def __sub__(self, other: Size) -> Size:
		return Size(abs(self._normalize() - other._normalize()), Unit.B, self.sector_size)

	def __add__(self, other: Size) -> Size:
		return Size(self._normalize() + other._normalize(), Unit.B, self.sector_size)

	def __lt__(self, other: Size) -> bool:
		return self._normalize() < other._normalize()

	def __le__(self, other: Size) -> bool:
		return self._normalize() <= other._normalize()

	@override
	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Size):
			return NotImplemented

		return self._normalize() == other._normalize()

	def __gt__(self, other: Size) -> bool:
		return self._normalize() > other._normalize()

	def __ge__(self, other: Size) -> bool:
		return self._normalize() >= other._normalize()

	@override
	def __hash__(self) -> int:
		return hash(self._normalize())


class PartitionGUID(Enum):
	"""
	GPT partition type GUIDs, see
	https://en.wikipedia.org/wiki/GUID_Partition_Table#Partition_type_GUIDs
	"""

	EFI_SYSTEM = 'C12A7328-F81F-11D2-BA4B-00A0C93EC93B'
	LINUX_SWAP = '0657FD6D-A4AB-43C4-84E5-0933C84B4F4F'
	LINUX_LVM = 'E6D6D379-F507-44C2-A23C-238F2A3DF928'

	@property
	def bytes(self) -> bytes:
		return uuid.UUID(self.value).bytes


class PartitionRole(Enum):
	Boot = 'boot'
	Swap = 'swap'
	System = 'system'


class FilesystemType(Enum):
	Ext4 = 'ext4'
	Fat32 = 'fat32'
	Xfs = 'xfs'
	LinuxSwap = 'linux-swap'

	@property
	def fs_type_mount(self) -> str:
		match self:
			case FilesystemType.Fat32:
				return 'vfat'
			case FilesystemType.LinuxSwap:
				return 'swap'
			case _:
				return self.value

	def is_swap(self) -> bool:
		return self == FilesystemType.LinuxSwap


def partition_path(device: Path, number: int) -> Path:
	# nvme, mmcblk and loop devices separate the partition number with a "p"
	if device.name[-1:].isdigit():
		return device.with_name(f'{device.name}p{number}')
	return device.with_name(f'{device.name}{number}')


@dataclass(frozen=True)
class DeviceSpec:
	path: Path
	sector_size: SectorSize
	size: Size

	@property
	def total_sectors(self) -> int:
		return self.size.bytes // self.sector_size.normalize()

	@property
	def last_usable_sector(self) -> int:
		return self.total_sectors - GPT_BACKUP_SECTORS - 1


@dataclass(frozen=True)
class PartitionDescriptor:
	index: int
	start: int
	length: int
	type_guid: PartitionGUID
	label: str
	role: PartitionRole

	@property
	def end(self) -> int:
		"""last sector belonging to the partition"""
		return self.start + self.length - 1


@dataclass(frozen=True)
class PartitionLayout:
	device: DeviceSpec
	partitions: tuple[PartitionDescriptor, ...]

	def __post_init__(self) -> None:
		previous_end = FIRST_USABLE_SECTOR - 1

		for part in self.partitions:
			if part.length <= 0:
				raise ValueError(f'Partition {part.label} has no sectors')
			if part.start != previous_end + 1:
				raise ValueError(f'Partition {part.label} does not start right after its predecessor')
			previous_end = part.end

		if previous_end > self.device.last_usable_sector:
			raise ValueError('Partition layout exceeds the device size')

	def size_of(self, part: PartitionDescriptor) -> Size:
		return Size(part.length, Unit.sectors, self.device.sector_size)

	def path_of(self, part: PartitionDescriptor) -> Path:
		return partition_path(self.device.path, part.index)

	def by_role(self, role: PartitionRole) -> PartitionDescriptor | None:
		return next((p for p in self.partitions if p.role == role), None)

	def table_data(self) -> list[dict[str, str | int]]:
		return [
			{
				'index': p.index,
				'label': p.label,
				'path': str(self.path_of(p)),
				'start': p.start,
				'sectors': p.length,
				'size': self.size_of(p).format_highest(),
			}
			for p in self.partitions
		]


class LsblkInfo(BaseModel):
	name: str
	path: Path
	pkname: str | None = None
	log_sec: int = Field(alias='log-sec')
	size: Size
	type: str | None = None
	fstype: str | None = None
	uuid: str | None = None
	mountpoints: list[Path] = Field(default_factory=list)
	children: list[LsblkInfo] = Field(default_factory=list)

	@field_validator('size', mode='before')
	@classmethod
	def convert_size(cls, v: int, info: ValidationInfo) -> Size:
		sector_size = SectorSize(info.data['log_sec'], Unit.B)
		return Size(v, Unit.B, sector_size)

	@field_validator('mountpoints', mode='before')
	@classmethod
	def remove_none(cls, v: list[Path | None] | None) -> list[Path]:
		return [item for item in v or [] if item is not None]

	@classmethod
	def fields(cls) -> list[str]:
		return [field.alias or name for name, field in cls.model_fields.items() if name != 'children']

	def descendants(self) -> list[LsblkInfo]:
		found: list[LsblkInfo] = []
		for child in self.children:
			found.append(child)
			found.extend(child.descendants())
		return found

	def all_mountpoints(self) -> list[Path]:
		mountpoints = list(self.mountpoints)
		for child in self.descendants():
			mountpoints.extend(child.mountpoints)
		return mountpoints
