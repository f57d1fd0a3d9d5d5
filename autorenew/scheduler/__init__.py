"""Scheduler module for the renewal loops.

Schedule overview (all interval jobs on the asyncio loop):
  - every 60 s - Expiration scan and dispatch
  - every 30 s - Automation heartbeat (login check, health record)
  - every 60 s - Automation watchdog (browser restart)
  - every 10 s - Task worker (one pending renewal task)
"""
