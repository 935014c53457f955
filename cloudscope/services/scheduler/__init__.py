"""
Scheduler Service - Package Entry Point
"""

from .orchestrator import JOB_IDS, SchedulerOrchestrator

__all__ = ["JOB_IDS", "SchedulerOrchestrator"]
