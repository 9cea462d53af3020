"""
service-install: install an executable as a systemd or cron service.
"""

__version__ = "0.1.0"
