"""
secret-agent - a local secret broker for the AI agent era.

Reference credentials by name without ever handing their values to an agent.

Features:
- exec: Run commands with secrets templated or injected (output is redacted)
- import/create: Store secrets via piped input, hidden prompt or generation
- list: Show stored names (no values)
- get: Show metadata, or the value behind an explicit unsafe flag

Secrets live in an AES-256-GCM encrypted SQLite vault keyed from the OS
keychain, a key file or a passphrase.
"""

__version__ = "0.3.0"
