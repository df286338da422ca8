"""
Chat completion and orchestration services.

The orchestrator decides which providers to call and composes their output;
provider clients own their own caching, retries and rate limits.
"""
