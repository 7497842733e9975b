from .config import InstallConfig, VolumeConfig
from .device import (
	DeviceSpec,
	FilesystemType,
	LsblkInfo,
	PartitionDescriptor,
	PartitionGUID,
	PartitionLayout,
	PartitionRole,
	SectorSize,
	Size,
	Unit,
)
from .encryption import CipherParams, EncryptedContainer, EncryptionSecret
from .lvm import ALL_REMAINING, Allocation, LogicalVolume, VolumeGroup
from .mount import MountEntry, MountPlan
from .state import ProvisioningReport, ProvisioningState

__all__ = [
	'ALL_REMAINING',
	'Allocation',
	'CipherParams',
	'DeviceSpec',
	'EncryptedContainer',
	'EncryptionSecret',
	'FilesystemType',
	'InstallConfig',
	'LogicalVolume',
	'LsblkInfo',
	'MountEntry',
	'MountPlan',
	'PartitionDescriptor',
	'PartitionGUID',
	'PartitionLayout',
	'PartitionRole',
	'ProvisioningReport',
	'ProvisioningState',
	'SectorSize',
	'Size',
	'Unit',
	'VolumeConfig',
	'VolumeGroup',
]
