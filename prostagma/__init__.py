"""
Prostagma — build-agent coordination over a shared cache and trigger service.

Two roles:
  coordination_server — holds the file cache and trigger counters (Flask)
  agent               — polls a trigger and runs a build script on increase
"""

__version__ = "0.1.0"
