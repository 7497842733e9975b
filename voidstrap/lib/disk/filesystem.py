from pathlib import Path

from ..exceptions import FormatError, SysCallError
from ..general import SysCommand
from ..models.device import FilesystemType
from ..output import debug, error, info


class FilesystemProvisioner:
	def format(
		self,
		path: Path,
		fs_type: FilesystemType,
		options: list[str] | None = None,
		label: str | None = None,
	) -> None:
		mkfs_type = fs_type.value
		command = None
		fs_options = []
		label_flag = '-L'

		match fs_type:
			case FilesystemType.Xfs:
				# Force overwrite
				fs_options.append('-f')
			case FilesystemType.Ext4:
				# Force create
				fs_options.append('-F')
			case FilesystemType.Fat32:
				mkfs_type = 'fat'
				# Set FAT size
				fs_options.extend(('-F', '32'))
				label_flag = '-n'
			case FilesystemType.LinuxSwap:
				command = 'mkswap'

		if not command:
			command = f'mkfs.{mkfs_type}'

		if label:
			fs_options.extend((label_flag, label))

		cmd = [command, *fs_options, *(options or []), str(path)]

		info(f'Formatting {path} as {fs_type.value}')
		debug('Formatting filesystem:', ' '.join(cmd))

		try:
			SysCommand(cmd)
		except SysCallError as err:
			msg = f'Could not format {path} with {fs_type.value}: {err.message}'
			error(msg)
			raise FormatError(msg, err.exit_code) from err
