"""Configuration management for treeprint scans."""

import hashlib
import os
from enum import Enum
from typing import Any, List

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from treeprint.exceptions import ConfigError

DEFAULT_ALGORITHM = "sha256"
DEFAULT_BLOCK_SIZE = 1024 * 1024
MIN_BLOCK_SIZE = 4 * 1024
MAX_BLOCK_SIZE = 1024 * 1024 * 1024


class TrustPolicy(str, Enum):
    """Whether unchanged size and modification time are enough to reuse a digest.

    - metadata: copy the previous digest when size and mtime match (fast, may miss
      content changes that preserve both)
    - rehash: always hash every file
    """

    METADATA = "metadata"
    ALWAYS_REHASH = "rehash"


class LinkPolicy(str, Enum):
    """How symbolic links are recorded."""

    HASH_TARGET = "hash_target"
    RECORD = "record"
    SKIP = "skip"


class SpecialPolicy(str, Enum):
    """How devices, sockets and pipes are recorded."""

    RECORD = "record"
    SKIP = "skip"


class DriveType(str, Enum):
    """Storage the tree lives on. Parallel reads hurt spinning disks."""

    SSD = "ssd"
    HDD = "hdd"


def supported_algorithms() -> List[str]:
    """Fixed-length digest algorithms available on every platform."""
    return sorted(a for a in hashlib.algorithms_guaranteed if not a.startswith("shake_"))


def _default_workers() -> int:
    return os.cpu_count() or 1


class ScanConfig(BaseSettings):
    """Options for building a fingerprint.

    Values come from the environment (TREEPRINT_*), an optional .env file, and
    explicit overrides. The resulting object is passed to the builder; nothing
    in the core reads process-wide settings.
    """

    algorithm: str = Field(default=DEFAULT_ALGORITHM, description="hashlib digest name")
    block_size: int = Field(default=DEFAULT_BLOCK_SIZE, description="Read size in bytes")
    block_digests: bool = Field(default=False, description="Keep one digest per block")
    trust: TrustPolicy = Field(default=TrustPolicy.METADATA)
    links: LinkPolicy = Field(default=LinkPolicy.RECORD)
    special: SpecialPolicy = Field(default=SpecialPolicy.SKIP)
    follow_symlinks: bool = Field(default=False, description="Descend into linked directories")
    ignore_patterns: List[str] = Field(default_factory=list)
    drive: DriveType = Field(default=DriveType.SSD)
    workers: int = Field(default_factory=_default_workers)
    queue_size: int = Field(default=0, description="Work queue bound, 0 means 4 x workers")

    model_config = SettingsConfigDict(
        env_prefix="TREEPRINT_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Only fixed-length digests can identify content."""
        name = v.strip().lower().replace("-", "_")
        if name == "sha2_256":
            name = "sha256"
        if name not in supported_algorithms():
            raise ValueError(
                f"Unsupported digest algorithm '{v}' (choose from {', '.join(supported_algorithms())})"
            )
        return name

    @field_validator("block_size")
    @classmethod
    def validate_block_size(cls, v: int) -> int:
        if v < MIN_BLOCK_SIZE or v > MAX_BLOCK_SIZE:
            raise ValueError(f"block_size must be between {MIN_BLOCK_SIZE} and {MAX_BLOCK_SIZE}")
        if v & (v - 1):
            raise ValueError("block_size must be a power of two")
        return v

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("workers must be at least 1")
        return v

    @field_validator("queue_size")
    @classmethod
    def validate_queue_size(cls, v: int) -> int:
        if v < 0:
            raise ValueError("queue_size cannot be negative")
        return v

    @model_validator(mode="after")
    def apply_drive_type(self) -> "ScanConfig":
        # one reader at a time on spinning disks
        if self.drive == DriveType.HDD:
            self.workers = 1
        if self.queue_size == 0:
            self.queue_size = self.workers * 4
        return self

    @property
    def digest_size(self) -> int:
        return hashlib.new(self.algorithm).digest_size


def load_config(**overrides: Any) -> ScanConfig:
    """
    Build a ScanConfig from the environment plus explicit overrides.

    None values in overrides are ignored so CLI options left unset fall back
    to the environment or defaults.

    Raises:
        ConfigError: If any value is invalid
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    try:
        return ScanConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
