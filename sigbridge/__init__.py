"""SigBridge - mail-flow rule deployment connector for email signatures."""

__version__ = "1.0.0"
