"""
Job Queue — Durable named queues shared by schedulers, the API and workers.

- Producers enqueue jobs (optionally delayed, optionally with a unique id)
- QueueWorker consumes with bounded concurrency, retries with backoff
- Supports Redis (production) and an in-memory backend (dev/tests)
"""
