import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class Logger:
	def __init__(self, path: Path = Path('/var/log/voidstrap')) -> None:
		self._path = path
		self.verbose = False

	@property
	def path(self) -> Path:
		return self._path / 'install.log'

	@property
	def directory(self) -> Path:
		return self._path

	def _check_permissions(self) -> None:
		log_file = self.path

		try:
			self._path.mkdir(exist_ok=True, parents=True)
			log_file.touch(exist_ok=True)

			with log_file.open('a') as f:
				f.write('')
		except PermissionError:
			# Fallback to creating the log file in the current folder
			self._path = Path('./').absolute()

			warn(f'Not enough permission to place log file at {log_file}, creating it in {self.path} instead')

	def log(self, level: int, content: str) -> None:
		self._check_permissions()

		with self.path.open('a') as f:
			ts = _timestamp()
			level_name = logging.getLevelName(level)
			f.write(f'[{ts}] - {level_name} - {content}\n')


logger = Logger()


class FormattedOutput:
	@classmethod
	def as_table(cls, raw_data: list[dict[str, Any]], capitalize: bool = False) -> str:
		"""
		Renders a list of records sharing the same keys as a text table,
		numbers right aligned. The output is meant for a print statement.
		"""
		column_width: dict[str, int] = {}
		for record in raw_data:
			for k, v in record.items():
				column_width.setdefault(k, 0)
				column_width[k] = max([column_width[k], len(str(v)), len(k)])

		# create the header lines
		output = ''
		key_list = []
		for key, width in column_width.items():
			key = key.replace('_', ' ')

			if capitalize:
				key = key.capitalize()

			key_list.append(key.ljust(width))

		output += ' | '.join(key_list) + '\n'
		output += '-' * len(output) + '\n'

		# create the data lines
		for record in raw_data:
			obj_data = []
			for key, width in column_width.items():
				value = record.get(key, '')

				if isinstance(value, int | float):
					obj_data.append(str(value).rjust(width))
				else:
					obj_data.append(str(value).ljust(width))

			output += ' | '.join(obj_data) + '\n'

		return output


def _supports_color() -> bool:
	"""
	Return True if the running system's terminal supports color,
	and False otherwise.
	"""
	supported_platform = sys.platform != 'win32' or 'ANSICON' in os.environ

	is_a_tty = hasattr(sys.stdout, 'isatty') and sys.stdout.isatty()
	return supported_platform and is_a_tty


class Font(Enum):
	bold = '1'
	italic = '3'
	underscore = '4'


_COLORS = {
	'black': '0',
	'red': '1',
	'green': '2',
	'yellow': '3',
	'blue': '4',
	'magenta': '5',
	'cyan': '6',
	'white': '7',
	'gray': '8;5;246',
}


def _stylize_output(text: str, fg: str, font: list[Font] = []) -> str:
	codes = [f'3{_COLORS[fg]}'] + [f.value for f in font]
	ansi = ';'.join(codes)
	return f'\033[{ansi}m{text}\033[0m'


def _timestamp() -> str:
	now = datetime.now(tz=UTC)
	return now.strftime('%Y-%m-%d %H:%M:%S')


def info(*msgs: str, level: int = logging.INFO, fg: str = 'white', font: list[Font] = []) -> None:
	log(*msgs, level=level, fg=fg, font=font)


def debug(*msgs: str, level: int = logging.DEBUG, fg: str = 'white', font: list[Font] = []) -> None:
	log(*msgs, level=level, fg=fg, font=font)


def error(*msgs: str, level: int = logging.ERROR, fg: str = 'red', font: list[Font] = []) -> None:
	log(*msgs, level=level, fg=fg, font=font)


def warn(*msgs: str, level: int = logging.WARNING, fg: str = 'yellow', font: list[Font] = []) -> None:
	log(*msgs, level=level, fg=fg, font=font)


def log(*msgs: str, level: int = logging.INFO, fg: str = 'white', font: list[Font] = []) -> None:
	text = ' '.join([str(x) for x in msgs])

	logger.log(level, text)

	if level == logging.DEBUG and not logger.verbose:
		return

	if _supports_color():
		text = _stylize_output(text, fg, font)

	print(text)
