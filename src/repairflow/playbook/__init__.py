"""Estimate playbook: phase implementations and the phase sequencer."""
