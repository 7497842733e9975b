from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from .device import FilesystemType

DEFAULT_MOUNT_OPTIONS = ['noatime', 'nodiratime']
DEFAULT_XFS_OPTIONS = ['-d', 'su=128k,sw=1', '-m', 'crc=1,finobt=1', '-i', 'size=512']


class VolumeConfig(BaseModel):
	name: str
	# None means "whatever is left in the volume group"
	size_mib: int | None = None
	fs_type: FilesystemType = FilesystemType.Xfs
	mountpoint: Path | None = None
	label: str | None = None
	mount_options: list[str] = Field(default_factory=lambda: list(DEFAULT_MOUNT_OPTIONS))

	@field_validator('size_mib')
	@classmethod
	def positive_size(cls, v: int | None) -> int | None:
		if v is not None and v <= 0:
			raise ValueError('size_mib must be positive')
		return v

	@field_validator('mountpoint')
	@classmethod
	def absolute_mountpoint(cls, v: Path | None) -> Path | None:
		if v is not None and not v.is_absolute():
			raise ValueError(f'mountpoint {v} must be absolute')
		return v

	@model_validator(mode='after')
	def swap_has_no_mountpoint(self) -> VolumeConfig:
		if self.fs_type.is_swap() and self.mountpoint is not None:
			raise ValueError(f'Swap volume {self.name} cannot have a mountpoint')
		return self

	@property
	def fs_label(self) -> str:
		return self.label or f'void_{self.name}'


def _default_volumes() -> list[VolumeConfig]:
	return [
		VolumeConfig(name='root', size_mib=153600, mountpoint=Path('/')),
		VolumeConfig(name='var', size_mib=153600, mountpoint=Path('/var')),
		VolumeConfig(name='home', mountpoint=Path('/home')),
	]


class InstallConfig(BaseModel):
	device: Path
	mountpoint: Path = Path('/mnt')

	boot_size_mib: int = 2048
	swap_size_mib: int = 40960
	boot_label: str = 'VOID_BOOT'
	swap_label: str = 'void_swap'
	boot_mountpoint: Path = Path('/boot')
	boot_mount_options: list[str] = Field(default_factory=lambda: [*DEFAULT_MOUNT_OPTIONS, 'flush', 'iocharset=utf8'])
	swap_options: list[str] = Field(default_factory=lambda: ['pri=1', 'discard'])

	vg_name: str = 'void'
	mapper_name: str = 'void_crypt'
	volumes: list[VolumeConfig] = Field(default_factory=_default_volumes)
	xfs_options: list[str] = Field(default_factory=lambda: list(DEFAULT_XFS_OPTIONS))

	use_token: bool = True
	program_token: bool = True
	token_slot: int = 2
	key_blob_length: int = 2048
	crypttab_options: list[str] = Field(default_factory=lambda: ['luks', 'timeout=180', 'tries=3'])

	@field_validator('boot_size_mib')
	@classmethod
	def boot_size(cls, v: int) -> int:
		if v <= 0:
			raise ValueError('boot_size_mib must be positive')
		return v

	@field_validator('swap_size_mib')
	@classmethod
	def swap_size(cls, v: int) -> int:
		if v < 0:
			raise ValueError('swap_size_mib cannot be negative')
		return v

	@field_validator('token_slot')
	@classmethod
	def token_slot_range(cls, v: int) -> int:
		if v not in (1, 2):
			raise ValueError('YubiKey challenge/response lives in slot 1 or 2')
		return v

	@model_validator(mode='after')
	def check_volumes(self) -> InstallConfig:
		names = [vol.name for vol in self.volumes]
		if len(names) != len(set(names)):
			raise ValueError('Logical volume names must be unique')

		mountpoints = [vol.mountpoint for vol in self.volumes if vol.mountpoint]
		mountpoints.append(self.boot_mountpoint)
		if len(mountpoints) != len(set(mountpoints)):
			raise ValueError('Mountpoints must be unique')

		if Path('/') not in mountpoints:
			raise ValueError('One logical volume has to be mounted at /')

		remaining = [vol for vol in self.volumes if vol.size_mib is None]
		if len(remaining) > 1:
			raise ValueError('Only one logical volume can take the remaining space')
		if remaining and self.volumes[-1] is not remaining[0]:
			raise ValueError(f'Volume {remaining[0].name} takes the remaining space and must come last')

		return self

	@property
	def mapper_dev(self) -> Path:
		return Path(f'/dev/mapper/{self.mapper_name}')
