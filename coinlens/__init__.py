"""CoinLens: crypto market data and AI commentary behind a best-effort TTL cache."""
