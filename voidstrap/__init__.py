"""Void Linux storage provisioning - encrypted LVM on a YubiKey protected LUKS2 container."""

import sys
import textwrap
import traceback

from .lib.args import ConfigHandler
from .lib.disk.utils import get_all_lsblk_info
from .lib.exceptions import InstallationAborted, ProvisioningFailed, RequirementError, SysCallError, ValidationError
from .lib.hardware import SysInfo
from .lib.installer import Installer, ask_for_confirmation
from .lib.models.device import PartitionLayout
from .lib.output import FormattedOutput, debug, error, info, log, logger, warn


def _log_sys_info() -> None:
	# Log various information about hardware before starting the installation. This might assist in troubleshooting
	debug(f'Hardware model detected: {SysInfo.product_name()}; UEFI mode: {SysInfo.has_uefi()}')
	debug(f'Processor model detected: {SysInfo.cpu_model()}')
	debug(f'Memory statistics: {SysInfo.mem_total()} kB total installed')

	# For support reasons, we'll log the disk layout pre installation to match against post-installation layout
	try:
		devices = get_all_lsblk_info()
		debug(f'Disk states before installing:\n{[d.model_dump_json() for d in devices]}')
	except (SysCallError, RequirementError) as err:
		warn(f'Could not return disk layouts: {err}')


def _confirm_silently(layout: PartitionLayout) -> bool:
	info(f'--silent given, partitioning {layout.device.path} without asking')
	return True


def main(argv: list[str] | None = None) -> int:
	"""
	This can either be run as the installed application: voidstrap
	OR straight as a module: python -m voidstrap
	"""
	handler = ConfigHandler(argv)
	args = handler.args

	_log_sys_info()

	passphrase = '' if args.dry_run else handler.recovery_passphrase()

	confirm = _confirm_silently if args.silent else ask_for_confirmation

	with Installer(handler.config, passphrase, confirm=confirm, dry_run=args.dry_run) as installer:
		report = installer.provision()

	for warning in report.warnings:
		warn(f'Warning: {warning}')

	if not args.dry_run:
		log(f'Storage provisioned, install the base system into {handler.config.mountpoint}', fg='green')

	return 0


def _error_message(exc: Exception) -> None:
	err = ''.join(traceback.format_exception(exc))
	error(err)

	text = textwrap.dedent(
		f"""\
		voidstrap experienced the above error. The log file is "{logger.path}",
		every executed command is listed in "{logger.directory / 'cmd_history.txt'}".
		"""
	)
	warn(text)


def run_as_a_module() -> None:
	rc = 0

	try:
		rc = main()
	except InstallationAborted as err:
		info(str(err))
		rc = 1
	except ValidationError as err:
		error(str(err))
		rc = 1
	except ProvisioningFailed as err:
		_error_message(err)
		rc = err.exit_code or 1
	except Exception as err:
		_error_message(err)
		rc = 1

	sys.exit(rc)


__all__ = [
	'FormattedOutput',
	'Installer',
	'SysInfo',
	'debug',
	'error',
	'info',
	'log',
	'main',
	'run_as_a_module',
	'warn',
]
