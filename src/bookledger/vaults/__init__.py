from bookledger.vaults.file import FileVault

__all__ = ["FileVault"]
