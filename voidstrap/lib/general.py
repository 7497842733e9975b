from __future__ import annotations

import os
import re
import shlex
import stat
import subprocess
import time
from collections.abc import Iterator
from shutil import which
from typing import override

from .exceptions import RequirementError, SysCallError
from .output import debug, logger

# https://stackoverflow.com/a/43627833/929999
_VT100_ESCAPE_REGEX = r'\x1B\[[?0-9;]*[a-zA-Z]'


def locate_binary(name: str) -> str:
	if path := which(name):
		return path
	raise RequirementError(f'Binary {name} does not exist.')


def clear_vt100_escape_codes_from_str(data: str) -> str:
	return re.sub(_VT100_ESCAPE_REGEX, '', data)


def _log_cmd(cmd: list[str]) -> None:
	history_logfile = logger.directory / 'cmd_history.txt'

	change_perm = False
	if history_logfile.exists() is False:
		change_perm = True

	try:
		history_logfile.parent.mkdir(parents=True, exist_ok=True)

		with history_logfile.open('a') as cmd_log:
			cmd_log.write(f'{time.time()} {cmd}\n')

		if change_perm:
			history_logfile.chmod(stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP)
	except (PermissionError, FileNotFoundError):
		# If history_logfile does not exist, ignore the error
		pass


def _exec(
	cmd: list[str],
	input_data: bytes | None = None,
	environment_vars: dict[str, str] | None = None,
) -> subprocess.CompletedProcess[bytes]:
	"""
	The one place where external programs get started.
	stdout and stderr are merged so error output ends up in the trace log.
	"""
	if cmd and not cmd[0].startswith(('/', './')):
		cmd = [locate_binary(cmd[0]), *cmd[1:]]

	_log_cmd(cmd)

	# define the standard locale for command outputs
	env = {**os.environ, 'LC_ALL': 'C', **(environment_vars or {})}

	return subprocess.run(
		cmd,
		input=input_data,
		stdout=subprocess.PIPE,
		stderr=subprocess.STDOUT,
		env=env,
		check=False,
	)


class SysCommand:
	def __init__(
		self,
		cmd: str | list[str],
		input_data: bytes | None = None,
		environment_vars: dict[str, str] | None = None,
	):
		if isinstance(cmd, str):
			cmd = shlex.split(cmd)

		self.cmd = cmd
		self.started = time.time()

		result = _exec(list(cmd), input_data=input_data, environment_vars=environment_vars)

		self.ended = time.time()
		self._trace_log: bytes = result.stdout or b''
		self._exit_code: int = result.returncode

		if self._exit_code != 0:
			raise SysCallError(
				f'{self.cmd} exited with abnormal exit code [{self._exit_code}]: {str(self)[-500:]}',
				self._exit_code,
				worker_log=self._trace_log,
			)

	def __iter__(self) -> Iterator[bytes]:
		for line in self._trace_log.splitlines():
			if line:
				yield line + b'\n'

	@override
	def __str__(self) -> str:
		return self._trace_log.decode('utf-8', errors='backslashreplace')

	@override
	def __repr__(self) -> str:
		return self.decode('UTF-8', errors='backslashreplace') or ''

	def decode(self, encoding: str = 'utf-8', errors: str = 'backslashreplace', strip: bool = True) -> str:
		val = self._trace_log.decode(encoding, errors=errors)

		if strip:
			return val.strip()
		return val

	def output(self, remove_cr: bool = True) -> bytes:
		if remove_cr:
			return self._trace_log.replace(b'\r\n', b'\n')

		return self._trace_log

	@property
	def exit_code(self) -> int:
		return self._exit_code

	@property
	def trace_log(self) -> bytes:
		return self._trace_log


def command_succeeds(cmd: str | list[str]) -> bool:
	try:
		SysCommand(cmd)
		return True
	except SysCallError as err:
		debug(f'{cmd} failed with exit code {err.exit_code}')
		return False
