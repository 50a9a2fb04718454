"""
Background Jobs for Copilot Value.

This module contains scheduled and background jobs:
- query: per-organization polling of seats, metrics, teams and members
- schedule: in-process cron scheduling
- metrics_cron: the scheduled metrics job and its CLI entry point
"""
