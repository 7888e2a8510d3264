"""Core shared logic: models, indicators, errors and the store protocol.

This package contains pure business logic with no I/O dependencies
(no database or network access). It is shared between the data
collection layer (app/) and the backtesting system (backtest/).
"""
