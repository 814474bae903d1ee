from prometheus_client import Counter, Gauge

items_claimed_total = Counter(
    "contentops_items_claimed_total",
    "Number of job items claimed by workers",
)

claim_conflicts_total = Counter(
    "contentops_claim_conflicts_total",
    "Number of claim attempts lost to another worker",
)

items_finished_total = Counter(
    "contentops_items_finished_total",
    "Number of job items that reached a terminal state",
    ["kind", "status"],
)

generation_submits_total = Counter(
    "contentops_generation_submits_total",
    "Number of requests submitted to external generation providers",
    ["kind"],
)

credits_reserved_total = Counter(
    "contentops_credits_reserved_total",
    "Credits reserved at job creation",
)

insufficient_credits_total = Counter(
    "contentops_insufficient_credits_total",
    "Job creations rejected for insufficient credits",
)

publish_total = Counter(
    "contentops_publish_total",
    "Publish attempts by outcome",
    ["outcome"],
)

stale_claims = Gauge(
    "contentops_stale_claims",
    "Claimed items older than the staleness threshold at last check",
)
