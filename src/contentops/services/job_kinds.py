"""
Per-kind capabilities.

Jobs share one claim/credit/publish core; what differs per kind is the unit
cost, whether processing needs the external two-phase bridge, and which
adapter handles submit/poll/publish. The kind tag on Job/JobItem selects the
entry here; there is no subclass per kind.
"""

from dataclasses import dataclass

from contentops.models.job import JobKind

TEXT_ATTRIBUTES = ("name", "description", "seoTitle", "seoDescription")


@dataclass(frozen=True)
class KindCapabilities:
    kind: JobKind
    credits_per_item: int
    # True: RUNNING -> PROCESSING -> DONE/FAILED via submit + poll
    two_phase: bool
    label: str


KIND_CAPABILITIES = {
    JobKind.TEXT_OPTIMIZATION: KindCapabilities(
        kind=JobKind.TEXT_OPTIMIZATION,
        credits_per_item=1,
        two_phase=False,
        label="Text optimization",
    ),
    JobKind.IMAGE_OPTIMIZATION: KindCapabilities(
        kind=JobKind.IMAGE_OPTIMIZATION,
        credits_per_item=15,
        two_phase=True,
        label="Image optimization",
    ),
    JobKind.BLOG_GENERATION: KindCapabilities(
        kind=JobKind.BLOG_GENERATION,
        credits_per_item=25,
        two_phase=True,
        label="Blog generation",
    ),
}


def capabilities_for(kind: JobKind | str) -> KindCapabilities:
    return KIND_CAPABILITIES[JobKind(kind)]
