from pathlib import Path

import pytest

from conftest import FakeCommands, lsblk_device, lsblk_output
from voidstrap.lib.disk.mount import MountOrchestrator
from voidstrap.lib.exceptions import MountError
from voidstrap.lib.models.device import FilesystemType
from voidstrap.lib.models.mount import MountEntry, MountPlan


def _plan(target: Path) -> MountPlan:
	return MountPlan.ordered(
		[
			MountEntry(Path('/dev/void/home'), target / 'home', FilesystemType.Xfs, ('noatime',)),
			MountEntry(Path('/dev/sda1'), target / 'boot', FilesystemType.Fat32, ('noatime', 'iocharset=utf8')),
			MountEntry(Path('/dev/void/root'), target, FilesystemType.Xfs),
		],
	)


def test_mount_in_order(commands: FakeCommands, tmp_path: Path) -> None:
	target = tmp_path / 'mnt'

	MountOrchestrator().mount(_plan(target))

	assert commands.lines == [
		f'mount -t xfs /dev/void/root {target}',
		f'mount -o noatime,iocharset=utf8 -t vfat /dev/sda1 {target}/boot',
		f'mount -o noatime -t xfs /dev/void/home {target}/home',
	]
	assert (target / 'boot').is_dir()
	assert (target / 'home').is_dir()


def test_mount_failure_stops(commands: FakeCommands, tmp_path: Path) -> None:
	commands.on('mount', '/dev/sda1', output=b'mount: wrong fs type', exit_code=32)

	with pytest.raises(MountError) as exc_info:
		MountOrchestrator().mount(_plan(tmp_path))

	assert exc_info.value.exit_code == 32
	assert len(commands.find('mount')) == 2


def test_unusable_mountpoint(commands: FakeCommands, tmp_path: Path) -> None:
	(tmp_path / 'boot').write_text('not a directory')

	with pytest.raises(MountError, match='Could not create mountpoint'):
		MountOrchestrator().mount(_plan(tmp_path))


def test_swap_failures_become_warnings(commands: FakeCommands) -> None:
	commands.on('swapon', exit_code=255)
	commands.on('swapoff', exit_code=255)

	mounts = MountOrchestrator()
	mounts.activate_swap([Path('/dev/sda2')])
	mounts.deactivate_swap([Path('/dev/sda2')])

	assert len(mounts.warnings) == 2
	assert 'enable swap' in str(mounts.warnings[0])


def test_unmount_all(commands: FakeCommands) -> None:
	mounted = lsblk_device(
		'/dev/sda',
		10 * 1024**3,
		children=[lsblk_device('/dev/sda1', 1024**3, dev_type='part', mountpoints=['/mnt/boot'])],
	)
	commands.on('lsblk', output=lsblk_output(mounted))

	mounts = MountOrchestrator()
	mounts.unmount_all(Path('/mnt'))

	assert commands.find('umount') == [['umount', '-R', '/mnt']]
	assert mounts.warnings == []


def test_unmount_all_nothing_mounted(commands: FakeCommands) -> None:
	other = lsblk_device('/dev/sda', 10 * 1024**3, mountpoints=['/mnt2'])
	commands.on('lsblk', output=lsblk_output(other))

	MountOrchestrator().unmount_all(Path('/mnt'))

	assert commands.programs() == ['lsblk']


def test_unmount_failure_is_a_warning(commands: FakeCommands) -> None:
	mounted = lsblk_device('/dev/sda', 10 * 1024**3, mountpoints=['/mnt'])
	commands.on('lsblk', output=lsblk_output(mounted))
	commands.on('umount', output=b'umount: /mnt: target is busy.', exit_code=32)

	mounts = MountOrchestrator()
	mounts.unmount_all(Path('/mnt'))

	assert len(mounts.warnings) == 1
	assert 'target is busy' in str(mounts.warnings[0])


def test_unmount_all_twice(commands: FakeCommands) -> None:
	mounted = lsblk_device('/dev/sda', 10 * 1024**3, mountpoints=['/mnt'])
	commands.on('lsblk', output=lsblk_output(mounted))

	def unmounted(argv: list[str]) -> bytes:
		commands.on('lsblk', output=lsblk_output(lsblk_device('/dev/sda', 10 * 1024**3)))
		return b''

	commands.on('umount', output=unmounted)

	mounts = MountOrchestrator()
	mounts.unmount_all(Path('/mnt'))
	mounts.unmount_all(Path('/mnt'))

	assert commands.programs() == ['lsblk', 'umount', 'lsblk']
	assert mounts.warnings == []
