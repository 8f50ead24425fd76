"""
Ingestion pipeline components for GlobalKZ leaderboard data.

This package contains everything between the remote API and storage:

Modules:
    proxy_pool: Round-robin egress routes with forced rotation
    resolver: Cached get-or-create resolution of players, maps and servers
    checkpoint: Durable per-stream checkpoints (database or JSON file)
    base: Abstract ingestion stream contract
    streams: Records, bans, players, servers and maps streams
    runner: Controller state machine driving one stream
    cli: Command-line entry point

Subpackages:
    extractors: Rate-limited HTTP fetcher with tagged results
    transformers: Field coercion and payload normalization
    loaders: Idempotent batch writes and best-time merges

Architecture:
    Each batch flows through five phases:

    1. Fetch - one window of requests, fanned out over the proxy pool
    2. Normalize - coerce payloads, reject unusable ones, drop duplicates
    3. Resolve - map natural keys to surrogate ids, creating missing ones
    4. Write - insert records and merge personal bests in one transaction
    5. Checkpoint - persist the next cursor once the batch has committed

    A crash at any point resumes from the last committed checkpoint; writes
    are idempotent, so a replayed batch changes nothing.

Usage:
    from ingestion.cli import main
    from ingestion.runner import IngestionController
    from ingestion.streams import build_stream

Example:
    stream = build_stream("records")
    async with RateLimitedFetcher(ProxyPool.from_settings()) as fetcher:
        controller = IngestionController(
            stream=stream,
            fetcher=fetcher,
            session_maker=session_maker,
            checkpoint_store=DatabaseCheckpointStore(session_maker),
        )
        stats = await controller.run()

Error Handling:
    Components raise exceptions from core.exceptions. Fetch failures come
    back as tagged FetchResult values rather than exceptions, storage errors
    are retried by the controller, and only checkpoint or startup failures
    end the run.
"""

__all__ = [
    "ProxyPool",
    "RateLimitedFetcher",
    "EntityResolver",
    "BatchWriter",
    "CheckpointStore",
    "DatabaseCheckpointStore",
    "FileCheckpointStore",
    "IngestionStream",
    "IngestionController",
    "build_stream",
]
