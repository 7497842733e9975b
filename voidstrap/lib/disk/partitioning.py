from pathlib import Path

from ..exceptions import CryptoSetupError, InsufficientSpaceError, PartitioningError, SysCallError
from ..general import SysCommand
from ..luks import Luks2
from ..models.device import (
	FIRST_USABLE_SECTOR,
	DeviceSpec,
	LsblkInfo,
	PartitionDescriptor,
	PartitionGUID,
	PartitionLayout,
	PartitionRole,
	Size,
	Unit,
)
from ..output import debug, error, info, log
from .utils import get_lsblk_info, udev_sync


class PartitionPlanner:
	def plan(self, device: DeviceSpec, boot_size: Size, swap_size: Size) -> PartitionLayout:
		"""
		Lays out boot, swap and system back to back from sector 2048.
		The system partition takes everything up to the last usable
		sector; a zero swap size drops the swap partition.
		"""
		sector_size = device.sector_size
		boot_sectors = boot_size.convert(Unit.sectors, sector_size).value
		swap_sectors = swap_size.convert(Unit.sectors, sector_size).value

		system_start = FIRST_USABLE_SECTOR + boot_sectors + swap_sectors
		system_sectors = device.last_usable_sector - system_start + 1

		if system_sectors <= 0:
			requested = boot_size + swap_size
			raise InsufficientSpaceError(
				f'{device.path} has {device.size.format_highest()}, not enough for '
				f'{requested.format_highest()} of boot and swap plus a system partition'
			)

		partitions = [
			PartitionDescriptor(
				index=1,
				start=FIRST_USABLE_SECTOR,
				length=boot_sectors,
				type_guid=PartitionGUID.EFI_SYSTEM,
				label='boot',
				role=PartitionRole.Boot,
			)
		]

		if swap_sectors > 0:
			partitions.append(
				PartitionDescriptor(
					index=2,
					start=FIRST_USABLE_SECTOR + boot_sectors,
					length=swap_sectors,
					type_guid=PartitionGUID.LINUX_SWAP,
					label='swap',
					role=PartitionRole.Swap,
				)
			)

		partitions.append(
			PartitionDescriptor(
				index=len(partitions) + 1,
				start=system_start,
				length=system_sectors,
				type_guid=PartitionGUID.LINUX_LVM,
				label='system',
				role=PartitionRole.System,
			)
		)

		layout = PartitionLayout(device=device, partitions=tuple(partitions))

		for part in layout.partitions:
			debug(f'Planned {part.label}: start {part.start}, {part.length} sectors ({layout.size_of(part).format_highest()})')

		return layout

	def apply(self, layout: PartitionLayout) -> None:
		"""
		Create a partition table on the block device and create all partitions.
		"""
		# WARNING: the entire device will be wiped and all data lost
		self.wipe_dev(get_lsblk_info(layout.device.path))

		info(f'Creating partitions: {layout.device.path}')
		_write_gpt(layout)

		self.partprobe(layout.device.path)
		udev_sync()

	def _wipe(self, dev_path: Path) -> None:
		"""
		Wipe a device (partition or otherwise) of meta-data, be it file system, LVM, etc.
		"""
		try:
			with open(dev_path, 'wb') as p:
				p.write(bytearray(1024))
		except OSError as err:
			raise PartitioningError(f'Could not wipe {dev_path}: {err}') from err

	def wipe_dev(self, device: LsblkInfo) -> None:
		"""
		Wipe the block device of meta-data, be it file system, LVM, etc.
		This is not intended to be secure, but rather to ensure that
		auto-discovery tools don't recognize anything here.
		"""
		info(f'Wiping partitions and metadata: {device.path}')

		for partition in device.children:
			if partition.type != 'part':
				continue

			luks = Luks2(partition.path)
			if luks.isLuks():
				try:
					luks.erase()
				except CryptoSetupError as err:
					raise PartitioningError(err.message, err.exit_code) from err

			self._wipe(partition.path)

		self._wipe(device.path)

	def partprobe(self, path: Path) -> None:
		command = f'partprobe {path}'

		try:
			debug(f'Calling partprobe: {command}')
			SysCommand(command)
		except SysCallError as err:
			if 'have been written, but we have been unable to inform the kernel of the change' in str(err):
				log(f'Partprobe was not able to inform the kernel of the new disk state (ignoring error): {err}', fg='gray')
			else:
				error(f'"{command}" failed to run: {err}')
				raise PartitioningError(f'Kernel did not pick up the new partition table on {path}', err.exit_code) from err


def _write_gpt(layout: PartitionLayout) -> None:
	# libparted is only needed once something actually gets written,
	# planning and --dry-run work without it
	import parted

	try:
		device = parted.getDevice(str(layout.device.path))
		disk = parted.freshDisk(device, 'gpt')

		for part in layout.partitions:
			geometry = parted.Geometry(device=device, start=part.start, length=part.length)
			partition = parted.Partition(disk=disk, type=parted.PARTITION_NORMAL, geometry=geometry)

			debug(f'\tName: {part.label}')
			debug(f'\tGeometry: {part.start} start sector, {part.length} length')

			disk.addPartition(partition=partition, constraint=parted.Constraint(exactGeom=geometry))

			partition.type_uuid = part.type_guid.bytes
			partition.set_name(part.label)

		disk.commit()
	except (parted.PartitionException, parted.DiskException, parted.IOException) as ex:
		raise PartitioningError(f'Unable to write partition table to {layout.device.path}: {ex}') from ex
