"""Checksums stored alongside each ledger entry, formatted as "<algorithm>.<hex digest>"."""

from __future__ import annotations

import dataclasses
import hashlib
import hmac


DEFAULT_ALGORITHM = "sha256"
SUPPORTED_ALGORITHMS = ("sha256", "sha384", "sha512")


@dataclasses.dataclass(frozen=True)
class ParsedChecksum:
    algorithm: str
    hash: str


def calculate_checksum(content: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    digest = hashlib.new(algorithm, content.encode("utf-8")).hexdigest()
    return f"{algorithm}.{digest}"


def parse_checksum(checksum: str) -> ParsedChecksum:
    # Older ledger entries used ':' as the separator.
    for sep in (".", ":"):
        algorithm, found, digest = checksum.partition(sep)
        if found and algorithm and digest:
            return ParsedChecksum(algorithm=algorithm.lower(), hash=digest.lower())
    raise ValueError(f"Invalid checksum format: {checksum!r}")


def verify_checksum(content: str, checksum: str) -> bool:
    parsed = parse_checksum(checksum)
    expected = calculate_checksum(content, parsed.algorithm)
    return hmac.compare_digest(parse_checksum(expected).hash, parsed.hash)
