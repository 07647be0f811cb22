"""Queue-backed agent orchestration.

- ``QueueProcessor`` leases queue messages, runs the named agent on the entry,
  persists merged metadata and progress, and enqueues the next step or
  finalizes the entry.
- ``PipelineService`` is the trigger surface: create/submit/reprocess entries,
  drain the queue, and list queue items for dashboards.
- Failures are classified deterministically; only transient capability
  failures are retried, with exponential backoff and jitter.
"""
