"""ScriptGraph CLI: dependency graph and quality analysis for PowerShell script collections."""

__version__ = "0.1.0"
