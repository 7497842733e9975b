from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from types import TracebackType

from .disk.encryption import EncryptionProvisioner
from .disk.filesystem import FilesystemProvisioner
from .disk.lvm import VolumeManager
from .disk.mount import MountOrchestrator
from .disk.partitioning import PartitionPlanner
from .disk.validator import DeviceValidator
from .disk.yubikey import YubiKey
from .exceptions import (
	InstallationAborted,
	NonFatalWarning,
	ProvisioningFailed,
	RequirementError,
)
from .general import locate_binary
from .hardware import SysInfo
from .luks import Luks2
from .models.config import InstallConfig
from .models.device import DeviceSpec, FilesystemType, PartitionLayout, PartitionRole, Size, Unit
from .models.encryption import CipherParams, EncryptedContainer, EncryptionSecret
from .models.lvm import ALL_REMAINING, VolumeGroup
from .models.mount import MountEntry, MountPlan
from .models.state import ProvisioningReport, ProvisioningState
from .output import FormattedOutput, debug, error, info, log, logger, warn

REQUIRED_BINARIES = [
	'lsblk',
	'partprobe',
	'udevadm',
	'cryptsetup',
	'pvcreate',
	'vgcreate',
	'vgs',
	'lvcreate',
	'vgchange',
	'mkfs.fat',
	'mkfs.xfs',
	'mkswap',
	'mount',
	'umount',
	'swapon',
	'swapoff',
]

TOKEN_BINARIES = ['ykinfo', 'ykpersonalize', 'ykchalresp']

LUKS_DIR = Path('etc/luks')
CHALLENGE_FILE = LUKS_DIR / 'luks-challenge'
UNLOCK_HELPER = LUKS_DIR / 'unlock-yubikey'
DRACUT_CONF = Path('etc/dracut.conf.d/10-crypt.conf')

_UNLOCK_HELPER_TEMPLATE = """\
#!/bin/sh
challenge=$(cat /{challenge})
response=$(ykchalresp -{slot} "$challenge" 2>/dev/null)

if [ -z "$response" ]; then
	echo "No YubiKey detected, falling back to passphrase..." >&2
	exec /sbin/cryptsetup open --type luks2 "$1" {mapper}
fi

printf '%s' "$response" | /sbin/cryptsetup open --type luks2 --key-file - "$1" {mapper}
"""


def ask_for_confirmation(layout: PartitionLayout) -> bool:
	print(FormattedOutput.as_table(layout.table_data()))
	warn(f'ALL DATA ON {layout.device.path} WILL BE DESTROYED')

	answer = input(f'Type "YES" to partition {layout.device.path}: ')
	return answer.strip() == 'YES'


def _write_file(path: Path, content: str, mode: int) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)

	fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
	with os.fdopen(fd, 'w') as f:
		f.write(content)

	path.chmod(mode)


class Installer:
	"""
	Takes one device from an empty disk to a mounted, encrypted LVM tree.

	Progress is tracked in ``report``. A failure once the partition
	table is being written rolls everything back that is still held
	(swap, mounts, the volume group, the container) and is raised as
	ProvisioningFailed. Failures before that point raise the original
	validation error and leave the disk untouched.
	"""

	def __init__(
		self,
		config: InstallConfig,
		recovery_passphrase: str,
		confirm: Callable[[PartitionLayout], bool] = ask_for_confirmation,
		dry_run: bool = False,
	) -> None:
		self.config = config
		self.target = config.mountpoint
		self.dry_run = dry_run

		self._recovery_passphrase = recovery_passphrase
		self._confirm = confirm

		self.validator = DeviceValidator(config.vg_name)
		self.planner = PartitionPlanner()
		self.encryption = EncryptionProvisioner(config.mapper_name)
		self.volumes = VolumeManager()
		self.filesystems = FilesystemProvisioner()
		self.mounts = MountOrchestrator()
		self.token = YubiKey(config.token_slot) if config.use_token else None

		self.report = ProvisioningReport()
		self.device: DeviceSpec | None = None
		self.layout: PartitionLayout | None = None
		self.group: VolumeGroup | None = None

		self._destructive_started = False
		self._container_open = False
		self._challenge: str | None = None
		self._active_swap: list[Path] = []

	def __enter__(self) -> Installer:
		return self

	def __exit__(self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: TracebackType | None) -> bool | None:
		if exc_type is not None:
			error(str(exc_value))
			log(f'[!] A log file has been created here: {logger.path}', fg='red')

		# Return None to propagate the exception
		return None

	@property
	def state(self) -> ProvisioningState:
		return self.report.state

	def _advance(self, state: ProvisioningState) -> None:
		self.report.state = state
		self.report.last_completed = state
		info(f'Reached state: {state.value}')

	def _warn(self, message: str) -> None:
		warn(message)
		self.report.warnings.append(NonFatalWarning(message))

	def preflight(self) -> None:
		if not SysInfo.is_root():
			raise RequirementError('voidstrap requires root privileges to run')

		if not SysInfo.has_uefi():
			raise RequirementError('The system was not booted in UEFI mode, an EFI system partition cannot be used')

		binaries = list(REQUIRED_BINARIES)

		if any(vol.fs_type == FilesystemType.Ext4 for vol in self.config.volumes):
			binaries.append('mkfs.ext4')

		if self.token:
			binaries.extend(TOKEN_BINARIES)

		missing = []
		for name in binaries:
			try:
				locate_binary(name)
			except RequirementError:
				missing.append(name)

		if missing:
			raise RequirementError(f'Required programs are missing: {", ".join(missing)}')

		if EncryptedContainer(self.config.device, self.config.mapper_name).is_open():
			raise RequirementError(f'{self.config.mapper_dev} is already active, close it before provisioning')

		if self.config.vg_name in self.volumes.group_names():
			raise RequirementError(f'A volume group named "{self.config.vg_name}" already exists, deactivate or rename it first')

		if self.token:
			self.token.detect()

	def plan(self) -> PartitionLayout:
		self.device = self.validator.validate(self.config.device)

		self.layout = self.planner.plan(
			self.device,
			Size(self.config.boot_size_mib, Unit.MiB),
			Size(self.config.swap_size_mib, Unit.MiB),
		)

		self._advance(ProvisioningState.Planned)
		return self.layout

	def provision(self) -> ProvisioningReport:
		self.preflight()
		layout = self.plan()

		if self.dry_run:
			print(FormattedOutput.as_table(layout.table_data()))
			info('Dry run, nothing was written')
			return self.report

		if not self._confirm(layout):
			raise InstallationAborted(f'Partitioning of {layout.device.path} was declined')

		self._destructive_started = True

		try:
			self._provision(layout)
		except Exception as err:
			last_state = self.report.last_completed
			exit_code = getattr(err, 'exit_code', None)

			error(f'Provisioning failed after "{last_state.value}": {err}')
			self.rollback()

			self.report.exit_code = exit_code
			raise ProvisioningFailed(last_state, err, exit_code) from err

		info(f'{self.config.device} is ready, the target is mounted at {self.target}')
		return self.report

	def _provision(self, layout: PartitionLayout) -> None:
		self.planner.apply(layout)
		self._advance(ProvisioningState.PartitionsWritten)

		self._setup_encryption(layout)
		self._advance(ProvisioningState.ContainerOpen)

		self._setup_lvm()
		self._advance(ProvisioningState.VolumesCreated)

		self._format_filesystems(layout)
		self._advance(ProvisioningState.Formatted)

		plan = self.mount_plan()
		self.mounts.mount(plan)
		self._advance(ProvisioningState.Mounted)

		self.mounts.activate_swap(plan.swap)
		self._active_swap = list(plan.swap)
		self._collect_mount_warnings()

		self.write_target_config(layout)

	def _system_partition(self, layout: PartitionLayout) -> Path:
		if (system := layout.by_role(PartitionRole.System)) is None:
			raise ValueError('Layout has no system partition')
		return layout.path_of(system)

	def _token_response(self) -> bytearray | None:
		if not self.token:
			return None

		if self.config.program_token:
			self.token.program_slot()

		self._challenge = self.token.generate_challenge()
		return self.token.response(self._challenge)

	def _setup_encryption(self, layout: PartitionLayout) -> None:
		partition = self._system_partition(layout)

		token_response = self._token_response()
		secret = EncryptionSecret.generate(token_response, self.config.key_blob_length)

		try:
			self.encryption.format(partition, secret, CipherParams())
			self.encryption.add_recovery_key(partition, secret, self._recovery_passphrase)

			if token_response:
				self.encryption.enroll_token_key(partition, secret, token_response)

			self.encryption.open(partition, secret)
			self._container_open = True
		finally:
			secret.wipe()
			if token_response:
				token_response[:] = bytes(len(token_response))

	def _setup_lvm(self) -> None:
		self.group = self.volumes.create_group(self.config.mapper_dev, self.config.vg_name)

		for vol in self.config.volumes:
			length = ALL_REMAINING if vol.size_mib is None else Size(vol.size_mib, Unit.MiB)
			self.volumes.create_volume(self.group, vol.name, length, vol.fs_type)

	def _format_filesystems(self, layout: PartitionLayout) -> None:
		if boot := layout.by_role(PartitionRole.Boot):
			self.filesystems.format(layout.path_of(boot), FilesystemType.Fat32, label=self.config.boot_label)

		if swap := layout.by_role(PartitionRole.Swap):
			self.filesystems.format(layout.path_of(swap), FilesystemType.LinuxSwap, label=self.config.swap_label)

		for vol in self.config.volumes:
			options = self.config.xfs_options if vol.fs_type == FilesystemType.Xfs else []
			dev_path = Path(f'/dev/{self.config.vg_name}/{vol.name}')
			self.filesystems.format(dev_path, vol.fs_type, options, label=vol.fs_label)

	def _target_path(self, mountpoint: Path) -> Path:
		return self.target / mountpoint.relative_to(mountpoint.anchor)

	def mount_plan(self) -> MountPlan:
		if self.layout is None:
			raise ValueError('No partition layout has been planned')

		entries = []
		swap = []

		for vol in self.config.volumes:
			dev_path = Path(f'/dev/{self.config.vg_name}/{vol.name}')

			if vol.fs_type.is_swap():
				swap.append(dev_path)
			elif vol.mountpoint:
				entries.append(
					MountEntry(
						source=dev_path,
						target=self._target_path(vol.mountpoint),
						fs_type=vol.fs_type,
						options=tuple(vol.mount_options),
						label=vol.fs_label,
					)
				)

		if boot := self.layout.by_role(PartitionRole.Boot):
			entries.append(
				MountEntry(
					source=self.layout.path_of(boot),
					target=self._target_path(self.config.boot_mountpoint),
					fs_type=FilesystemType.Fat32,
					options=tuple(self.config.boot_mount_options),
					label=self.config.boot_label,
				)
			)

		if swap_part := self.layout.by_role(PartitionRole.Swap):
			swap.insert(0, self.layout.path_of(swap_part))

		return MountPlan.ordered(entries, swap)

	def _collect_mount_warnings(self) -> None:
		self.report.warnings.extend(self.mounts.warnings)
		self.mounts.warnings.clear()

	def _fstab(self, plan: MountPlan) -> str:
		lines = []

		for entry in plan:
			mountpoint = Path('/') / entry.target.relative_to(self.target)

			if entry.fs_type == FilesystemType.Fat32:
				options = ','.join(entry.options)
				fs_passno = 2
			else:
				options = ','.join(('defaults', *entry.options))
				fs_passno = 0

			lines.append(f'LABEL={entry.label} {mountpoint} {entry.fs_type.fs_type_mount} {options} 0 {fs_passno}')

		swap_options = ','.join(self.config.swap_options)

		if self.layout and self.layout.by_role(PartitionRole.Swap):
			lines.append(f'LABEL={self.config.swap_label} none swap {swap_options} 0 0')

		for vol in self.config.volumes:
			if vol.fs_type.is_swap():
				lines.append(f'LABEL={vol.fs_label} none swap {swap_options} 0 0')

		return '\n'.join(lines) + '\n'

	def _dracut_conf(self) -> str:
		lines = ['add_dracutmodules+=" crypt lvm "']

		if self.token:
			lines.append(f'install_items+=" /{UNLOCK_HELPER} /{CHALLENGE_FILE} /usr/bin/ykchalresp "')

		lines.extend(('compress="zstd"', 'hostonly="yes"'))
		return '\n'.join(lines) + '\n'

	def write_target_config(self, layout: PartitionLayout) -> None:
		"""
		Storage related configuration of the target: fstab, crypttab,
		the dracut crypt module and, with a token, the unlock helper
		and the stored challenge.
		"""
		info(f'Writing storage configuration to {self.target}')

		etc = self.target / 'etc'
		etc.mkdir(parents=True, exist_ok=True)

		fstab = self._fstab(self.mount_plan())
		(etc / 'fstab').write_text(fstab)
		debug(f'fstab:\n{fstab}')

		crypttab = etc / 'crypttab'
		crypttab.write_text('')
		Luks2(self._system_partition(layout), self.config.mapper_name).crypttab(crypttab, self.config.crypttab_options)

		_write_file(self.target / DRACUT_CONF, self._dracut_conf(), 0o644)

		if self.token and self._challenge:
			_write_file(self.target / CHALLENGE_FILE, f'{self._challenge}\n', 0o600)

			helper = _UNLOCK_HELPER_TEMPLATE.format(
				challenge=CHALLENGE_FILE,
				slot=self.config.token_slot,
				mapper=self.config.mapper_name,
			)
			_write_file(self.target / UNLOCK_HELPER, helper, 0o700)

	def _release(self, close_container: bool) -> None:
		"""
		Gives up everything the run still holds, innermost first.
		Every step is attempted even if an earlier one failed.
		"""
		steps: list[tuple[str, Callable[[], None]]] = [
			('disable swap', lambda: self.mounts.deactivate_swap(self._active_swap)),
			('unmount target', lambda: self.mounts.unmount_all(self.target)),
		]

		# only a group created by this run is ours to deactivate
		if self.group is not None:
			steps.append(('deactivate volume group', lambda: self.volumes.deactivate_group(self.config.vg_name)))

		if close_container:
			steps.append(('close container', lambda: self.encryption.close(self.config.mapper_name)))

		for name, step in steps:
			try:
				step()
			except Exception as err:
				self._warn(f'Could not {name}: {err}')

		self._active_swap = []
		self._container_open = False
		self.group = None
		self._collect_mount_warnings()

	def rollback(self) -> None:
		self.report.state = ProvisioningState.RollingBack
		warn(f'Rolling back, the partition table on {self.config.device} is left in place')

		if self._destructive_started:
			self._release(self._container_open)

		self.report.state = ProvisioningState.Failed

	def teardown(self) -> None:
		"""
		Unmounts the target and closes the container once the caller is
		done with the mounted tree.
		"""
		info(f'Releasing {self.target}')

		if not self._active_swap and self.layout:
			self._active_swap = self.mount_plan().swap

		self._release(close_container=True)
