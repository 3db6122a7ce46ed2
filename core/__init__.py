"""
Core business logic

This package holds the game's stateful logic:
- State machines: every session status / round phase change goes through them
- Managers: session, round and participant lifecycles
- Mode controller: preliminary / finals switch and end-of-game detection
- Timeout reaper: inactivity handling
- Locks: concurrency control helpers
"""
