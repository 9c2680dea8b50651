"""
AssetGate HTTP service: FastAPI app, SQLite persistence, caller tokens,
IPFS/Arweave document storage and web3 chain queries around the core
`assetgate` package.
"""

__version__ = "1.0.0"
