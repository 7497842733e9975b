from pathlib import Path

from pydantic import BaseModel

from ..exceptions import InvalidDeviceError, SysCallError
from ..general import SysCommand
from ..models.device import LsblkInfo
from ..output import debug


class LsblkOutput(BaseModel):
	blockdevices: list[LsblkInfo]


def _fetch_lsblk_info(dev_path: Path | str | None = None) -> LsblkOutput:
	cmd = ['lsblk', '--json', '--bytes', '--paths', '--output', ','.join(LsblkInfo.fields())]

	if dev_path:
		cmd.append(str(dev_path))

	try:
		worker = SysCommand(cmd)
	except SysCallError as err:
		# Get the output minus the message/info from lsblk if it returns a non-zero exit code.
		if err.worker_log:
			debug(f'Error calling lsblk: {err.worker_log.decode()}')

		if dev_path:
			raise InvalidDeviceError(f'Failed to read disk "{dev_path}" with lsblk') from err

		raise err

	output = worker.output(remove_cr=False)
	return LsblkOutput.model_validate_json(output)


def get_lsblk_info(dev_path: Path | str) -> LsblkInfo:
	infos = _fetch_lsblk_info(dev_path)

	if infos.blockdevices:
		return infos.blockdevices[0]

	raise InvalidDeviceError(f'lsblk failed to retrieve information for "{dev_path}"')


def get_all_lsblk_info() -> list[LsblkInfo]:
	return _fetch_lsblk_info().blockdevices


def get_lsblk_by_mountpoint(mountpoint: Path, as_prefix: bool = False) -> list[LsblkInfo]:
	def _check(infos: list[LsblkInfo]) -> list[LsblkInfo]:
		devices = []
		for entry in infos:
			if as_prefix:
				matches = [m for m in entry.mountpoints if m == mountpoint or mountpoint in m.parents]
				if matches:
					devices += [entry]
			elif mountpoint in entry.mountpoints:
				devices += [entry]

			if len(entry.children) > 0:
				if len(match := _check(entry.children)) > 0:
					devices += match

		return devices

	all_info = get_all_lsblk_info()
	return _check(all_info)


def udev_sync() -> None:
	try:
		SysCommand('udevadm settle')
	except SysCallError as err:
		debug(f'Failed to synchronize with udev: {err}')
