from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

BRANCH_REF_PREFIX = "refs/heads/"
TAG_REF_PREFIX = "refs/tags/"


class RefKind(str, Enum):
    BRANCH = "branch"
    TAG = "tag"


class InvalidRefError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class PushEvent:
    """A push to a branch or a tag.

    Events are created once per push, evaluated once by the gate and then
    discarded. They never carry state beyond the ref itself.
    """

    ref_kind: RefKind
    ref_name: str

    @property
    def full_ref(self) -> str:
        prefix = TAG_REF_PREFIX if self.ref_kind is RefKind.TAG else BRANCH_REF_PREFIX
        return f"{prefix}{self.ref_name}"

    @property
    def is_tag(self) -> bool:
        return self.ref_kind is RefKind.TAG

    @staticmethod
    def from_ref(ref: str) -> PushEvent:
        """Build an event from a fully qualified ref such as ``refs/tags/v1.2.3``."""

        ref = ref.strip()
        for prefix, kind in ((BRANCH_REF_PREFIX, RefKind.BRANCH), (TAG_REF_PREFIX, RefKind.TAG)):
            if ref.startswith(prefix):
                name = ref[len(prefix) :]
                if not name:
                    raise InvalidRefError(f"Ref has an empty name: {ref!r}")
                return PushEvent(ref_kind=kind, ref_name=name)
        raise InvalidRefError(f"Not a branch or tag ref: {ref!r}")

    @staticmethod
    def from_github_env(env: Mapping[str, str]) -> PushEvent:
        """Build an event from the variables a GitHub Actions runner exports.

        ``GITHUB_REF_TYPE`` + ``GITHUB_REF_NAME`` are preferred; ``GITHUB_REF``
        is the fallback for runners that only export the full ref.
        """

        ref_type = env.get("GITHUB_REF_TYPE", "").strip()
        ref_name = env.get("GITHUB_REF_NAME", "").strip()
        if ref_type and ref_name:
            try:
                kind = RefKind(ref_type)
            except ValueError:
                raise InvalidRefError(f"Unknown GITHUB_REF_TYPE: {ref_type!r}") from None
            return PushEvent(ref_kind=kind, ref_name=ref_name)

        ref = env.get("GITHUB_REF", "")
        if not ref.strip():
            raise InvalidRefError("GITHUB_REF is not set")
        return PushEvent.from_ref(ref)

    def to_json(self) -> dict[str, object]:
        return {"ref_kind": self.ref_kind.value, "ref_name": self.ref_name}
