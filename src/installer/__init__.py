"""Installs a resolved graph from wheels."""

from .installer import InstallReport, Installer, supported_tags

__all__ = ["InstallReport", "Installer", "supported_tags"]
