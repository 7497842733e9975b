import os
import stat
from pathlib import Path

from ..exceptions import InvalidDeviceError
from ..models.device import DeviceSpec, LsblkInfo, SectorSize, Unit
from ..output import debug, info
from .utils import get_lsblk_info

# lsblk device types a fresh partition table can be written to
_WHOLE_DISK_TYPES = ('disk', 'loop')


def _is_block_device(path: Path) -> bool:
	try:
		return stat.S_ISBLK(os.stat(path).st_mode)
	except OSError:
		return False


class DeviceValidator:
	"""
	Read-only checks that a path is safe to hand to the partitioner.
	Nothing here touches the device.
	"""

	def __init__(self, vg_name: str = 'void') -> None:
		self._vg_name = vg_name

	def validate(self, path: Path) -> DeviceSpec:
		if not path.exists():
			raise InvalidDeviceError(f'Device {path} does not exist')

		if not _is_block_device(path):
			raise InvalidDeviceError(f'{path} is not a block device')

		lsblk_info = get_lsblk_info(path)

		if lsblk_info.type not in _WHOLE_DISK_TYPES:
			raise InvalidDeviceError(f'{path} is a {lsblk_info.type}, expected a whole disk')

		self._check_not_mounted(lsblk_info)
		self._check_no_reserved_group(lsblk_info)

		sector_size = SectorSize(lsblk_info.log_sec, Unit.B)
		# partition names derive from the kernel name, never from a /dev/disk/by-* link
		spec = DeviceSpec(path=lsblk_info.path, sector_size=sector_size, size=lsblk_info.size)

		info(f'Using {spec.path}: {lsblk_info.size.format_highest()}, {sector_size.value} byte sectors')
		return spec

	def _check_not_mounted(self, lsblk_info: LsblkInfo) -> None:
		mountpoints = lsblk_info.all_mountpoints()

		if mountpoints:
			debug(f'{lsblk_info.path} is in use at: {[str(m) for m in mountpoints]}')
			# active swap shows up as the pseudo mountpoint [SWAP]
			raise InvalidDeviceError(
				f'{lsblk_info.path} or one of its partitions is mounted or used as swap: {", ".join(str(m) for m in mountpoints)}'
			)

	def _check_no_reserved_group(self, lsblk_info: LsblkInfo) -> None:
		prefix = f'{self._vg_name}-'

		for child in lsblk_info.descendants():
			if child.type != 'lvm':
				continue

			if Path(child.name).name.startswith(prefix):
				raise InvalidDeviceError(
					f'{lsblk_info.path} backs logical volume {child.name} of volume group "{self._vg_name}", deactivate it first'
				)
