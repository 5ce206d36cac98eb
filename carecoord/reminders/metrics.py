from prometheus_client import Counter


reminders_created_total = Counter(
    "medication_reminders_created_total",
    "Total medication reminders created via API",
)

reminders_triggered_manually_total = Counter(
    "medication_reminders_triggered_manually_total",
    "Total manual send-now triggers",
)

scheduler_scans_total = Counter(
    "reminder_scheduler_scans_total",
    "Total scheduler scan cycles",
)

scheduler_dispatched_total = Counter(
    "reminder_scheduler_dispatched_total",
    "Total reminders dispatched by scheduler",
)

scheduler_claim_conflicts_total = Counter(
    "reminder_scheduler_claim_conflicts_total",
    "Due reminders skipped because another writer claimed them first",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total dispatches whose primary channel delivered",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total dispatches whose primary channel failed or timed out",
)

reminders_channel_failed_total = Counter(
    "reminders_channel_failed_total",
    "Per-channel delivery failures",
    ["channel"],
)
