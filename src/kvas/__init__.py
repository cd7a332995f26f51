"""KVAS - load tester for key-value store clusters on ephemeral VMs."""

__version__ = "0.1.0"
