from .encryption import EncryptionProvisioner
from .filesystem import FilesystemProvisioner
from .lvm import VolumeManager
from .mount import MountOrchestrator
from .partitioning import PartitionPlanner
from .utils import get_all_lsblk_info, get_lsblk_by_mountpoint, get_lsblk_info, udev_sync
from .validator import DeviceValidator
from .yubikey import YubiKey

__all__ = [
	'DeviceValidator',
	'EncryptionProvisioner',
	'FilesystemProvisioner',
	'MountOrchestrator',
	'PartitionPlanner',
	'VolumeManager',
	'YubiKey',
	'get_all_lsblk_info',
	'get_lsblk_by_mountpoint',
	'get_lsblk_info',
	'udev_sync',
]
