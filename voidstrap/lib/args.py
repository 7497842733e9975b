import argparse
import getpass
import json
from argparse import ArgumentParser
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

from pydantic.dataclasses import dataclass as p_dataclass

from .exceptions import RequirementError, ValidationError
from .models.config import InstallConfig
from .output import debug, logger, warn


@p_dataclass
class Arguments:
	config: Path | None = None
	creds: Path | None = None
	device: Path | None = None
	mountpoint: Path | None = None
	silent: bool = False
	dry_run: bool = False
	debug: bool = False
	no_token: bool = False


class ConfigHandler:
	def __init__(self, argv: list[str] | None = None) -> None:
		self._parser: ArgumentParser = self._define_arguments()
		self._args: Arguments = self._parse_args(argv)

		config = self._parse_config()
		self._encryption_password: str | None = config.pop('encryption_password', None)

		try:
			self._config = InstallConfig.model_validate(config)
		except ValueError as err:
			raise ValidationError(f'Invalid configuration: {err}') from err

	@property
	def config(self) -> InstallConfig:
		return self._config

	@property
	def args(self) -> Arguments:
		return self._args

	def print_help(self) -> None:
		self._parser.print_help()

	def _get_version(self) -> str:
		try:
			return version('voidstrap')
		except PackageNotFoundError:
			return 'voidstrap version not found'

	def _define_arguments(self) -> ArgumentParser:
		parser = ArgumentParser(prog='voidstrap', formatter_class=argparse.ArgumentDefaultsHelpFormatter)
		parser.add_argument(
			'-v',
			'--version',
			action='version',
			default=False,
			version='%(prog)s ' + self._get_version(),
		)
		parser.add_argument(
			'--config',
			type=Path,
			nargs='?',
			default=None,
			help='JSON configuration file',
		)
		parser.add_argument(
			'--creds',
			type=Path,
			nargs='?',
			default=None,
			help='JSON credentials file holding the "encryption_password" recovery passphrase',
		)
		parser.add_argument(
			'--device',
			type=Path,
			nargs='?',
			default=None,
			help='Block device to provision, overrides the configuration file',
		)
		parser.add_argument(
			'--mountpoint',
			type=Path,
			nargs='?',
			default=None,
			help='Define an alternate mount point for installation',
		)
		parser.add_argument(
			'--silent',
			action='store_true',
			default=False,
			help='WARNING: Disables all prompts for input and confirmation. If no configuration is provided, this is ignored',
		)
		parser.add_argument(
			'--dry-run',
			'--dry_run',
			action='store_true',
			default=False,
			help='Validates the device and prints the partition layout instead of performing an installation',
		)
		parser.add_argument(
			'--debug',
			action='store_true',
			default=False,
			help='Prints debug output to the terminal',
		)
		parser.add_argument(
			'--no-token',
			action='store_true',
			default=False,
			help='Do not use a YubiKey, the container is unlocked with the key blob and recovery passphrase only',
		)

		return parser

	def _parse_args(self, argv: list[str] | None) -> Arguments:
		argparse_args = vars(self._parser.parse_args(argv))
		args: Arguments = Arguments(**argparse_args)

		# Installation can't be silent if config is not passed
		if args.config is None:
			args.silent = False

		if args.debug:
			logger.verbose = True

		return args

	def _parse_config(self) -> dict[str, Any]:
		config: dict[str, Any] = {}

		if self._args.config is not None:
			config.update(json.loads(self._read_file(self._args.config)))

		if self._args.creds is not None:
			creds = json.loads(self._read_file(self._args.creds))
			if password := creds.get('encryption_password'):
				config['encryption_password'] = password

		if self._args.device is not None:
			config['device'] = self._args.device

		if self._args.mountpoint is not None:
			config['mountpoint'] = self._args.mountpoint

		if self._args.no_token:
			config['use_token'] = False

		debug(f'Configuration keys: {sorted(k for k in config if k != "encryption_password")}')

		return config

	def _read_file(self, path: Path) -> str:
		if not path.exists():
			raise RequirementError(f'Could not find file {path}')

		return path.read_text()

	def recovery_passphrase(self) -> str:
		"""
		The backup passphrase for the LUKS container, taken from the
		credentials file or asked for interactively.
		"""
		if self._encryption_password:
			return self._encryption_password

		if self._args.silent:
			raise RequirementError('No encryption_password in the credentials file and --silent forbids prompting')

		while True:
			passphrase = getpass.getpass('Recovery passphrase for the encrypted disk: ')
			if not passphrase:
				warn('The passphrase cannot be empty')
				continue

			if getpass.getpass('Repeat the passphrase: ') == passphrase:
				self._encryption_password = passphrase
				return passphrase

			warn('The passphrases did not match')
