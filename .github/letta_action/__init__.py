"""Letta Code GitHub Action scripts."""
