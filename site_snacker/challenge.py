"""Bot-challenge detection as an ordered list of pluggable signature checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional


@dataclass(frozen=True)
class ChallengeSignature:
    """A named predicate that recognises one kind of interstitial page."""

    name: str
    matches: Callable[[str], bool]


def marker_signature(marker: str) -> ChallengeSignature:
    """Signature that fires when ``marker`` appears anywhere in the body."""
    return ChallengeSignature(name=marker, matches=lambda body: marker in body)


class ChallengeDetector:
    """Runs signatures in order and reports the first one that matches."""

    def __init__(self, signatures: Iterable[ChallengeSignature] = ()) -> None:
        self._signatures: List[ChallengeSignature] = list(signatures)

    @classmethod
    def from_markers(cls, markers: Iterable[str]) -> "ChallengeDetector":
        return cls(marker_signature(marker) for marker in markers)

    @property
    def signatures(self) -> List[ChallengeSignature]:
        return list(self._signatures)

    def add(self, signature: ChallengeSignature) -> None:
        self._signatures.append(signature)

    def detect(self, body: Optional[str]) -> Optional[str]:
        """Return the name of the first matching signature, if any."""
        if not body:
            return None
        for signature in self._signatures:
            if signature.matches(body):
                return signature.name
        return None
