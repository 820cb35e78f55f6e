"""Convergence signal engine for Hyperliquid wallets."""
