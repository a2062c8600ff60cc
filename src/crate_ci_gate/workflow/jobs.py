from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from .events import PushEvent, RefKind


class JobName(str, Enum):
    CHECK = "check"
    TEST = "test"
    CLIPPY = "clippy"
    PUBLISH = "publish"


CI_JOBS: frozenset[str] = frozenset({JobName.CHECK.value, JobName.TEST.value, JobName.CLIPPY.value})
ALL_JOBS: frozenset[str] = CI_JOBS | {JobName.PUBLISH.value}

CARGO_ARGS: tuple[str, ...] = ("--all-features", "--verbose")
REGISTRY_TOKEN_SECRET = "CARGO_REGISTRY_TOKEN"
DEFAULT_RUNNER = "ubuntu-22.04"
SHELL: tuple[str, ...] = ("sh", "-e", "-c")


class UnsupportedConditionError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class JobCondition:
    """A job-level ``if:`` gate on the ref kind.

    ``ref_kind=None`` means the job always runs.
    """

    ref_kind: RefKind | None = None
    negate: bool = False

    def evaluate(self, event: PushEvent) -> bool:
        if self.ref_kind is None:
            return True
        return (event.ref_kind is self.ref_kind) != self.negate


ALWAYS = JobCondition()
TAG_ONLY = JobCondition(ref_kind=RefKind.TAG)

_EXPRESSION_WRAPPER = re.compile(r"^\$\{\{\s*(.*?)\s*\}\}$")
_REF_TYPE_COMPARISON = re.compile(r"""^github\.ref_type\s*(==|!=)\s*'([a-z]+)'$""")
_REF_PREFIX_CHECK = re.compile(r"""^startsWith\(\s*github\.ref\s*,\s*'(refs/(?:tags|heads)/)'\s*\)$""")


def parse_condition(expression: str | None) -> JobCondition:
    """Parse the small subset of ``if:`` expressions that gate on the ref kind.

    Supported forms::

        github.ref_type == 'tag'
        github.ref_type != 'branch'
        startsWith(github.ref, 'refs/tags/')
        ${{ <any of the above> }}
    """

    if expression is None:
        return ALWAYS
    text = expression.strip()
    if not text:
        return ALWAYS
    wrapped = _EXPRESSION_WRAPPER.match(text)
    if wrapped:
        text = wrapped.group(1)

    comparison = _REF_TYPE_COMPARISON.match(text)
    if comparison:
        op, value = comparison.groups()
        try:
            kind = RefKind(value)
        except ValueError:
            raise UnsupportedConditionError(f"Unknown ref type in condition: {value!r}") from None
        return JobCondition(ref_kind=kind, negate=op == "!=")

    prefix = _REF_PREFIX_CHECK.match(text)
    if prefix:
        kind = RefKind.TAG if prefix.group(1) == "refs/tags/" else RefKind.BRANCH
        return JobCondition(ref_kind=kind)

    raise UnsupportedConditionError(f"Unsupported job condition: {expression!r}")


@dataclass(frozen=True, slots=True)
class JobSpec:
    """A named unit of work delegated to external commands.

    ``commands`` run in order, one per step; the job stops at the first
    non-zero exit.
    """

    name: str
    commands: tuple[tuple[str, ...], ...]
    condition: JobCondition = ALWAYS
    needs: tuple[str, ...] = ()
    components: tuple[str, ...] = ()
    secrets: tuple[str, ...] = ()
    runs_on: str = DEFAULT_RUNNER
    env: dict[str, str] = field(default_factory=dict, hash=False)

    def selected_for(self, event: PushEvent) -> bool:
        return self.condition.evaluate(event)


def cargo_command(subcommand: str, args: tuple[str, ...] = CARGO_ARGS) -> tuple[str, ...]:
    return ("cargo", subcommand, *args)


def shell_command(script: str) -> tuple[str, ...]:
    """Run a `run:` script the way a hosted runner does: through the shell, exiting on error."""
    return (*SHELL, script)


def default_jobs() -> tuple[JobSpec, ...]:
    """The four jobs of the crate workflow.

    ``publish`` carries explicit prerequisite edges on the three CI jobs so it
    never races ahead of them.
    """

    return (
        JobSpec(name=JobName.CHECK.value, commands=(cargo_command("check"),)),
        JobSpec(name=JobName.TEST.value, commands=(cargo_command("test"),)),
        JobSpec(
            name=JobName.CLIPPY.value,
            commands=(cargo_command("clippy"),),
            components=("clippy",),
        ),
        JobSpec(
            name=JobName.PUBLISH.value,
            commands=(cargo_command("publish"),),
            condition=TAG_ONLY,
            needs=(JobName.CHECK.value, JobName.TEST.value, JobName.CLIPPY.value),
            secrets=(REGISTRY_TOKEN_SECRET,),
        ),
    )
