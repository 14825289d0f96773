"""Agent task orchestration: single-flight dispatch to an external assistant.

The assistant is an opaque text-in/text-out process. It is reached either by
spawning it directly or, in sandboxed deployments where spawning is not
possible, through a file mailbox watched by a helper process. Exactly one
task is active per editing session; a new submit kills the previous one and
late events from killed tasks are discarded by generation.
"""
