"""
Integrations Package

External service integrations:
- Market data providers (Binance REST, synthetic fallback)
"""
