"""
kvenv: run commands with secrets from a secret store as environment variables.

Backends: AWS Secrets Manager, Azure Key Vault, Google Secret Manager,
HashiCorp Vault (KV v2).
"""

__version__ = "0.1.0"
