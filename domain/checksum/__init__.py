"""Checksum domain exports."""
from .hash_chain import chain, digest
from .engine import CHECKSUM_FIELDS, ChecksumEngine, ChecksumKind, FieldSpec

__all__ = ["chain", "digest", "CHECKSUM_FIELDS", "ChecksumEngine", "ChecksumKind", "FieldSpec"]
