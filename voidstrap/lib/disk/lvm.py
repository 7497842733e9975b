from __future__ import annotations

from pathlib import Path

from ..exceptions import LVMError, SysCallError
from ..general import SysCommand
from ..models.device import FilesystemType, Size, Unit
from ..models.lvm import DEFAULT_EXTENT_SIZE, Allocation, LogicalVolume, VgsOutput, VolumeGroup
from ..output import debug, info


def _vgs_report(vg_name: str | None = None) -> VgsOutput:
	cmd = ['vgs', '--reportformat', 'json', '--unit', 'B', '-o', 'vg_name,vg_uuid,vg_size,vg_free']

	if vg_name:
		cmd.extend(('-S', f'vg_name={vg_name}'))

	try:
		raw_info = SysCommand(cmd).decode().split('\n')
	except SysCallError as err:
		raise LVMError(f'Could not list volume groups: {err.message}', err.exit_code) from err

	# for whatever reason the output sometimes contains
	# "File descriptor X leaked on vgs invocation"
	data = '\n'.join(raw for raw in raw_info if 'File descriptor' not in raw)

	debug(f'LVM info: {data}')

	return VgsOutput.model_validate_json(data)


class VolumeManager:
	def __init__(self, extent_size: Size = DEFAULT_EXTENT_SIZE) -> None:
		self.extent_size = extent_size

	def group_names(self) -> list[str]:
		return [entry.vg_name for entry in _vgs_report().groups()]

	def group_info(self, vg_name: str, pv_path: Path) -> VolumeGroup:
		entries = _vgs_report(vg_name).groups()

		if len(entries) != 1:
			raise LVMError(f'Volume group {vg_name} not found')

		entry = entries[0]

		return VolumeGroup(
			name=entry.vg_name,
			pv_path=pv_path,
			size=Size(entry.vg_size, Unit.B),
			free=Size(entry.vg_free, Unit.B),
			extent_size=self.extent_size,
		)

	def create_group(self, mapper: Path, name: str) -> VolumeGroup:
		if name in self.group_names():
			raise LVMError(f'A volume group named "{name}" already exists')

		info(f'Creating LVM group {name} on {mapper}')

		extent_mib = self.extent_size.format_size(Unit.MiB, include_unit=False)

		commands = [
			['pvcreate', '--yes', '--dataalignment', '1m', str(mapper)],
			['vgcreate', '--yes', '--physicalextentsize', f'{extent_mib}M', name, str(mapper)],
		]

		for cmd in commands:
			debug(f'LVM: {" ".join(cmd)}')

			try:
				SysCommand(cmd)
			except SysCallError as err:
				raise LVMError(f'Could not create volume group {name}: {err.message}', err.exit_code) from err

		return self.group_info(name, mapper)

	def create_volume(
		self,
		group: VolumeGroup,
		name: str,
		size: Size | Allocation,
		fs_type: FilesystemType | None = None,
	) -> LogicalVolume:
		if group.get_volume(name):
			raise LVMError(f'Logical volume {name} already exists in {group.name}')

		if group.has_remaining_volume and isinstance(size, Allocation):
			raise LVMError(f'Only one remaining-space volume per group, {group.name} already has one')

		if group.has_remaining_volume or group.free.bytes == 0:
			raise LVMError(f'Volume group {group.name} has no free space left for {name}')

		cmd = ['lvcreate', '--yes']

		if isinstance(size, Allocation):
			cmd.extend(('-l', size.value))
			free_after = Size(0, Unit.B)
		else:
			length = group.round_to_extents(size)

			if length > group.free:
				raise LVMError(
					f'Logical volume {name} needs {length.format_highest()}, '
					f'only {group.free.format_highest()} left in {group.name}'
				)

			cmd.extend(('-L', f'{length.format_size(Unit.B, include_unit=False)}B'))
			free_after = Size(group.free.bytes - length.bytes, Unit.B)
			size = length

		cmd.extend(('-n', name, group.name))

		debug(f'Creating volume: {" ".join(cmd)}')

		try:
			SysCommand(cmd)
		except SysCallError as err:
			raise LVMError(f'Could not create logical volume {name}: {err.message}', err.exit_code) from err

		volume = LogicalVolume(name=name, vg_name=group.name, length=size, fs_type=fs_type)
		group.volumes.append(volume)
		group.free = free_after

		return volume

	def deactivate_group(self, group: VolumeGroup | str) -> None:
		name = group.name if isinstance(group, VolumeGroup) else group

		debug(f'Deactivating volume group {name}')

		try:
			SysCommand(['vgchange', '-an', name])
		except SysCallError as err:
			raise LVMError(f'Could not deactivate volume group {name}: {err.message}', err.exit_code) from err
