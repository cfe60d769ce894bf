"""
HomePilot - voice and text command console for a smart-home dashboard

This is the root package for HomePilot, containing shared utilities and the
command console used to drive smart-home devices by voice or typed text.

Core modules:
- console: Wake word handling, intent classification, target resolution and
  device command dispatch
- utils: Environment parsing and small async helpers
- datetime_utils: Timestamp parsing and spoken time/delay descriptions
"""

__version__ = "0.4.2"
